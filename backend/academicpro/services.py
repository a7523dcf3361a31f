"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and the authorization rules of each aggregate. Services are
intentionally thin: they validate, check the caller's relationship to
the entity (owner, creator, admin or member), then persist through a
repository. Failures are raised as `errors.ServiceError` subclasses so
the HTTP layer can map them to status codes in one place.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .errors import BadInputError, ConflictError, ForbiddenError, NotFoundError, StaleWriteError

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
logger = logging.getLogger("academicpro.services")


def _log_event(name: str, **fields) -> None:
    logger.info("%s %s", name, json.dumps(fields, ensure_ascii=True, default=str))


def user_brief(user: Optional[models.User], with_last_name: bool = True) -> Optional[dict]:
    """Public display fields of a user (never the hash)."""
    if user is None:
        return None
    out = {'id': user.id, 'first_name': user.first_name, 'email': user.email}
    if with_last_name:
        out['last_name'] = user.last_name
    return out


def _clean(value: Optional[str]) -> str:
    return value.strip() if isinstance(value, str) else ''


class AuthService:
    """Account operations: signup, login, profile and lookup."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, first_name: str, last_name: str, email: str, password: str, confirm_password: str) -> models.User:
        """Create a new user with a hashed password.

        Raises `BadInputError` on a confirmation mismatch and
        `ConflictError` when the email is already registered.
        """
        if password != confirm_password:
            raise BadInputError('Passwords do not match')
        email = email.strip().lower()
        if self.user_repo.get_by_email(email):
            raise ConflictError('User already exists')
        user = models.User(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email,
            password_hash=PWD_CTX.hash(password),
        )
        user = self.user_repo.create(user)
        _log_event('user_registered', user_id=user.id)
        return user

    def authenticate(self, email: str, password: str) -> Optional[models.User]:
        """Verify credentials; returns `None` for unknown email or wrong password."""
        user = self.user_repo.get_by_email(email.strip().lower())
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return user

    @staticmethod
    def create_token(user: models.User) -> str:
        """Return a signed JWT carrying the user id."""
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {'user_id': user.id, 'exp': int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    def session_payload(self, user: models.User) -> dict:
        """Response body for signup/login: identity, display name and token."""
        return {
            'id': user.id,
            'first_name': user.first_name,
            'last_name': user.last_name,
            'username': user.username,
            'email': user.email,
            'access_token': self.create_token(user),
        }

    @staticmethod
    def profile(user: models.User) -> dict:
        return {
            'id': user.id,
            'first_name': user.first_name,
            'last_name': user.last_name,
            'username': user.username,
            'email': user.email,
            'mobile_number': user.mobile_number,
            'profile_pic': user.profile_pic,
            'location': user.location,
            'created_at': user.created_at,
        }

    def update_profile(self, user: models.User, changes: dict) -> models.User:
        """Apply non-empty profile fields and an optional password change."""
        password = changes.pop('password', None)
        confirm = changes.pop('confirm_password', None)
        if password:
            if password != confirm:
                raise BadInputError('New passwords do not match')
            user.password_hash = PWD_CTX.hash(password)
        email = _clean(changes.pop('email', None)).lower()
        if email and email != user.email:
            other = self.user_repo.get_by_email(email)
            if other and other.id != user.id:
                raise ConflictError('Email is already in use')
            user.email = email
        for field in ('first_name', 'last_name', 'mobile_number', 'location', 'profile_pic'):
            value = _clean(changes.get(field))
            if value:
                setattr(user, field, value)
        return self.user_repo.save(user)

    def lookup(self, email: str) -> models.User:
        """Resolve an email address to a user for member invitations."""
        email = _clean(email).lower()
        if not email:
            raise BadInputError('email query parameter is required')
        user = self.user_repo.get_by_email(email)
        if not user:
            raise NotFoundError('User not found')
        return user


class NoteService:
    """Owner-only CRUD for personal notes."""
    def __init__(self, session: Session):
        self.session = session
        self.note_repo = repositories.NoteRepository(session)

    def _owned(self, user: models.User, note_id: int, action: str) -> models.Note:
        note = self.note_repo.get(note_id)
        if not note:
            raise NotFoundError('Note not found')
        if note.user_id != user.id:
            raise ForbiddenError(f'Not authorized to {action} this note')
        return note

    def list_notes(self, user: models.User) -> List[models.Note]:
        return self.note_repo.list_for_user(user.id)

    def create(self, user: models.User, title: str, content: str, status: models.Status = models.Status.TODO) -> models.Note:
        title, content = _clean(title), _clean(content)
        if not title or not content:
            raise BadInputError('Please add a title and content')
        note = models.Note(title=title, content=content, status=status, user_id=user.id)
        return self.note_repo.create(note)

    def get(self, user: models.User, note_id: int) -> models.Note:
        return self._owned(user, note_id, 'view')

    def update(self, user: models.User, note_id: int, changes: dict) -> models.Note:
        """Update title, content and/or status in place.

        Any status may follow any other; the value itself was already
        checked against `Status` by the request schema.
        """
        note = self._owned(user, note_id, 'update')
        title = _clean(changes.get('title'))
        content = changes.get('content')
        if title:
            note.title = title
        if content and content.strip():
            note.content = content.strip()
        if changes.get('status') is not None:
            note.status = models.Status(changes['status'])
        return self.note_repo.save(note)

    def delete(self, user: models.User, note_id: int) -> None:
        note = self._owned(user, note_id, 'delete')
        self.note_repo.delete(note)


class CourseService:
    """Shared course catalog; only the creator may edit or delete."""
    def __init__(self, session: Session):
        self.session = session
        self.course_repo = repositories.CourseRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def view(self, course: models.Course, creator: Optional[models.User] = None) -> dict:
        """Course fields with the creator expanded to display data."""
        if creator is None and course.added_by is not None:
            creator = self.user_repo.get(course.added_by)
        added_by = None
        if creator is not None:
            added_by = {'id': creator.id, 'first_name': creator.first_name, 'last_name': creator.last_name}
        return {
            'id': course.id,
            'title': course.title,
            'code': course.code,
            'description': course.description,
            'added_by': added_by,
            'created_at': course.created_at,
            'updated_at': course.updated_at,
        }

    def _owned(self, user: models.User, course_id: int, action: str) -> models.Course:
        course = self.course_repo.get(course_id)
        if not course:
            raise NotFoundError('Course not found')
        # a course without a recorded creator is editable by no one
        if course.added_by is None or course.added_by != user.id:
            raise ForbiddenError(f'Not authorized to {action} this course')
        return course

    def list_courses(self) -> List[dict]:
        courses = self.course_repo.list_all()
        creators = self.user_repo.get_many(c.added_by for c in courses if c.added_by is not None)
        return [self.view(c, creators.get(c.added_by)) for c in courses]

    def create(self, user: models.User, title: str, code: str, description: Optional[str] = None) -> dict:
        title, code = _clean(title), _clean(code)
        if not title or not code:
            raise BadInputError('Course title and code are required')
        if self.course_repo.get_by_code(code):
            raise ConflictError('A course with this code already exists')
        course = models.Course(title=title, code=code, description=description, added_by=user.id)
        course = self.course_repo.create(course)
        return self.view(course, user)

    def get(self, course_id: int) -> dict:
        course = self.course_repo.get(course_id)
        if not course:
            raise NotFoundError('Course not found')
        return self.view(course)

    def update(self, user: models.User, course_id: int, changes: dict) -> dict:
        """Replace non-empty title/code; description replaces whenever sent."""
        course = self._owned(user, course_id, 'edit')
        title, code = _clean(changes.get('title')), _clean(changes.get('code'))
        if code and code != course.code:
            if self.course_repo.get_by_code(code):
                raise ConflictError('A course with this code already exists')
            course.code = code
        if title:
            course.title = title
        if 'description' in changes:
            course.description = changes['description']
        course = self.course_repo.save(course)
        return self.view(course)

    def delete(self, user: models.User, course_id: int) -> None:
        course = self._owned(user, course_id, 'delete')
        self.course_repo.delete(course)


class GroupService:
    """Group membership, assignment and discussion rules.

    Admin-only: delete, assignment fields, project status, add/remove
    member. Member-only: read and post discussion. The admin is a member
    from creation on and can never be removed, only the whole group can
    be deleted.
    """
    def __init__(self, session: Session):
        self.session = session
        self.group_repo = repositories.GroupRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def _load(self, group_id: int) -> models.Group:
        group = self.group_repo.get(group_id)
        if not group:
            raise NotFoundError('Group not found')
        return group

    @staticmethod
    def _require_admin(group: models.Group, user: models.User, message: str) -> None:
        if group.admin_id != user.id:
            raise ForbiddenError(message)

    def view(self, group: models.Group) -> dict:
        """Full group representation with users expanded in one lookup."""
        member_ids = self.group_repo.member_ids(group.id)
        discussions = self.group_repo.list_discussions(group.id)
        users = self.user_repo.get_many([group.admin_id, *member_ids, *(d.user_id for d in discussions)])
        return {
            'id': group.id,
            'name': group.name,
            'description': group.description,
            'admin': user_brief(users.get(group.admin_id)),
            'members': [user_brief(users[uid]) for uid in member_ids if uid in users],
            'assignment_title': group.assignment_title,
            'deadline': group.deadline,
            'project_status': group.project_status,
            'version': group.version,
            'discussions': [self._discussion_view(d, users.get(d.user_id)) for d in discussions],
            'created_at': group.created_at,
            'updated_at': group.updated_at,
        }

    @staticmethod
    def _discussion_view(discussion: models.Discussion, author: Optional[models.User]) -> dict:
        return {
            'id': discussion.id,
            'text': discussion.text,
            'user': user_brief(author, with_last_name=False),
            'created_at': discussion.created_at,
        }

    def create(self, user: models.User, name: str, description: Optional[str] = None) -> dict:
        name = _clean(name)
        if not name:
            raise BadInputError('Group name is required')
        if self.group_repo.get_by_name(name):
            raise ConflictError('A group with this name already exists')
        group = models.Group(name=name, description=description, admin_id=user.id)
        group = self.group_repo.create(group)
        _log_event('group_created', group_id=group.id, admin_id=user.id)
        return self.view(group)

    def list_groups(self, user: models.User) -> List[dict]:
        """Summaries of the caller's groups, newest first."""
        groups = self.group_repo.list_for_member(user.id)
        admins = self.user_repo.get_many(g.admin_id for g in groups)
        counts = self.group_repo.member_counts(g.id for g in groups)
        return [
            {
                'id': g.id,
                'name': g.name,
                'description': g.description,
                'admin': user_brief(admins.get(g.admin_id)),
                'member_count': counts.get(g.id, 0),
                'assignment_title': g.assignment_title,
                'deadline': g.deadline,
                'project_status': g.project_status,
            }
            for g in groups
        ]

    def get(self, user: models.User, group_id: int) -> dict:
        group = self._load(group_id)
        if not self.group_repo.is_member(group.id, user.id):
            raise ForbiddenError('Not authorized to view this group')
        return self.view(group)

    def delete(self, user: models.User, group_id: int) -> None:
        group = self._load(group_id)
        self._require_admin(group, user, 'Only the admin can delete the group')
        self.group_repo.delete(group)
        _log_event('group_deleted', group_id=group_id, admin_id=user.id)

    def _conditional_update(self, group: models.Group, expected_version: Optional[int], values: dict) -> models.Group:
        if expected_version is None:
            expected_version = group.version
        group_id = group.id
        if not self.group_repo.update_fields(group_id, expected_version, values):
            _log_event('stale_group_write', group_id=group_id, expected_version=expected_version)
            raise StaleWriteError('Group was modified by another request; reload and retry')
        self.session.refresh(group)
        return group

    def update_details(self, user: models.User, group_id: int, changes: dict) -> dict:
        """Update assignment title, deadline and/or description (admin only).

        `changes` holds only the fields the client sent; an explicit
        `deadline: None` clears the deadline.
        """
        group = self._load(group_id)
        self._require_admin(group, user, 'Only the admin can update assignment details')
        version = changes.pop('version', None)
        values = {k: v for k, v in changes.items() if k in ('assignment_title', 'deadline', 'description')}
        if 'assignment_title' in values and values['assignment_title'] is None:
            values['assignment_title'] = ''
        deadline = values.get('deadline')
        if deadline is not None:
            # stored as UTC; naive input is taken to be UTC already
            if deadline.tzinfo is None:
                values['deadline'] = deadline.replace(tzinfo=timezone.utc)
            else:
                values['deadline'] = deadline.astimezone(timezone.utc)
        group = self._conditional_update(group, version, values)
        return {
            'id': group.id,
            'assignment_title': group.assignment_title,
            'deadline': group.deadline,
            'description': group.description,
            'version': group.version,
        }

    def update_status(self, user: models.User, group_id: int, status: models.Status, version: Optional[int] = None) -> dict:
        """Set the project status. Admin only; any status may follow any other."""
        group = self._load(group_id)
        self._require_admin(group, user, 'Only the admin can change the assignment status')
        group = self._conditional_update(group, version, {'project_status': models.Status(status)})
        return {'message': 'Status updated', 'project_status': group.project_status, 'version': group.version}

    def add_member(self, user: models.User, group_id: int, member_id: int) -> dict:
        group = self._load(group_id)
        self._require_admin(group, user, 'Only the admin can add members')
        # member lists are classroom sized, a scan is fine here; the unique
        # constraint still catches a concurrent duplicate insert
        if member_id in self.group_repo.member_ids(group.id):
            raise ConflictError('User is already a member')
        new_member = self.user_repo.get(member_id)
        if not new_member:
            raise NotFoundError('User not found')
        self.group_repo.add_member(group.id, member_id)
        _log_event('member_added', group_id=group.id, member_id=member_id)
        return user_brief(new_member)

    def remove_member(self, user: models.User, group_id: int, member_id: int) -> None:
        group = self._load(group_id)
        self._require_admin(group, user, 'Only the admin can remove members')
        if member_id == group.admin_id:
            raise BadInputError('Admin cannot be removed')
        removed = self.group_repo.remove_member(group.id, member_id)
        _log_event('member_removed', group_id=group.id, member_id=member_id, removed=removed)

    def add_discussion(self, user: models.User, group_id: int, text: str) -> dict:
        """Append an entry authored by the caller; returns only that entry."""
        group = self._load(group_id)
        if not self.group_repo.is_member(group.id, user.id):
            raise ForbiddenError('You are not a member of this group')
        text = _clean(text)
        if not text:
            raise BadInputError('Discussion text is required')
        discussion = self.group_repo.add_discussion(
            models.Discussion(group_id=group.id, user_id=user.id, text=text)
        )
        return self._discussion_view(discussion, user)


class DashboardService:
    """Per-user overview counters for the dashboard page."""
    def __init__(self, session: Session):
        self.session = session
        self.note_repo = repositories.NoteRepository(session)
        self.group_repo = repositories.GroupRepository(session)

    def summary(self, user: models.User) -> dict:
        counts = self.note_repo.count_by_status(user.id)
        return {
            'total_tasks': sum(counts.values()),
            'completed_tasks': counts.get(models.Status.DONE, 0),
            'in_progress_tasks': counts.get(models.Status.IN_PROGRESS, 0),
            'todo_tasks': counts.get(models.Status.TODO, 0),
            'total_groups': self.group_repo.count_for_member(user.id),
        }
