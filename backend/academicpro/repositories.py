"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
notes, courses, groups). Repositories return SQLModel objects and
perform commits/refreshes where appropriate.
"""

from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import models
from .errors import ConflictError


class _Repository:
    def __init__(self, session: Session):
        self.session = session

    def _commit_unique(self, message: str) -> None:
        """Commit, turning a unique-constraint violation into `ConflictError`.

        Covers the window between a service-level existence check and the
        insert, when another request wins the race.
        """
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(message)


class UserRepository(_Repository):
    """CRUD operations for `User` objects."""

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self._commit_unique("User already exists")
        self.session.refresh(user)
        return user

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def get_many(self, user_ids: Iterable[int]) -> Dict[int, models.User]:
        """Load several users in one query, keyed by id.

        Ids without a matching row are simply absent from the result.
        """
        ids = set(user_ids)
        if not ids:
            return {}
        stmt = select(models.User).where(models.User.id.in_(ids))
        return {u.id: u for u in self.session.exec(stmt).all()}

    def save(self, user: models.User) -> models.User:
        user.updated_at = models.utcnow()
        self.session.add(user)
        self._commit_unique("Email is already in use")
        self.session.refresh(user)
        return user


class NoteRepository(_Repository):
    """CRUD operations for `Note` objects."""

    def create(self, note: models.Note) -> models.Note:
        self.session.add(note)
        self.session.commit()
        self.session.refresh(note)
        return note

    def get(self, note_id: int) -> Optional[models.Note]:
        return self.session.get(models.Note, note_id)

    def list_for_user(self, user_id: int) -> List[models.Note]:
        """Return all notes owned by `user_id`, newest first."""
        stmt = (
            select(models.Note)
            .where(models.Note.user_id == user_id)
            .order_by(models.Note.created_at.desc(), models.Note.id.desc())
        )
        return self.session.exec(stmt).all()

    def save(self, note: models.Note) -> models.Note:
        note.updated_at = models.utcnow()
        self.session.add(note)
        self.session.commit()
        self.session.refresh(note)
        return note

    def delete(self, note: models.Note) -> None:
        self.session.delete(note)
        self.session.commit()

    def count_by_status(self, user_id: int) -> Dict[models.Status, int]:
        """Return `{status: count}` for the user's notes (missing statuses omitted)."""
        stmt = (
            select(models.Note.status, func.count(models.Note.id))
            .where(models.Note.user_id == user_id)
            .group_by(models.Note.status)
        )
        return {models.Status(status): count for status, count in self.session.exec(stmt).all()}


class CourseRepository(_Repository):
    """CRUD operations for `Course` objects."""

    def create(self, course: models.Course) -> models.Course:
        self.session.add(course)
        self._commit_unique("A course with this code already exists")
        self.session.refresh(course)
        return course

    def get(self, course_id: int) -> Optional[models.Course]:
        return self.session.get(models.Course, course_id)

    def get_by_code(self, code: str) -> Optional[models.Course]:
        stmt = select(models.Course).where(models.Course.code == code)
        return self.session.exec(stmt).first()

    def list_all(self) -> List[models.Course]:
        """Return every course, newest first."""
        stmt = select(models.Course).order_by(models.Course.created_at.desc(), models.Course.id.desc())
        return self.session.exec(stmt).all()

    def save(self, course: models.Course) -> models.Course:
        course.updated_at = models.utcnow()
        self.session.add(course)
        self._commit_unique("A course with this code already exists")
        self.session.refresh(course)
        return course

    def delete(self, course: models.Course) -> None:
        self.session.delete(course)
        self.session.commit()


class GroupRepository(_Repository):
    """Persistence for groups and their member and discussion rows.

    Members and discussions are stored one row each, so adding or
    removing one never rewrites the rest of the collection.
    """

    def create(self, group: models.Group) -> models.Group:
        """Persist a new group together with its admin's membership row."""
        self.session.add(group)
        try:
            self.session.flush()
        except IntegrityError:
            self.session.rollback()
            raise ConflictError("A group with this name already exists")
        self.session.add(models.GroupMember(group_id=group.id, user_id=group.admin_id))
        self._commit_unique("A group with this name already exists")
        self.session.refresh(group)
        return group

    def get(self, group_id: int) -> Optional[models.Group]:
        return self.session.get(models.Group, group_id)

    def get_by_name(self, name: str) -> Optional[models.Group]:
        stmt = select(models.Group).where(models.Group.name == name)
        return self.session.exec(stmt).first()

    def list_for_member(self, user_id: int) -> List[models.Group]:
        """Return the groups `user_id` belongs to, newest first."""
        stmt = (
            select(models.Group)
            .join(models.GroupMember, models.GroupMember.group_id == models.Group.id)
            .where(models.GroupMember.user_id == user_id)
            .order_by(models.Group.created_at.desc(), models.Group.id.desc())
        )
        return self.session.exec(stmt).all()

    def count_for_member(self, user_id: int) -> int:
        stmt = select(func.count(models.GroupMember.id)).where(models.GroupMember.user_id == user_id)
        return self.session.exec(stmt).one()

    def member_ids(self, group_id: int) -> List[int]:
        """Return member user ids in the order they joined."""
        stmt = (
            select(models.GroupMember.user_id)
            .where(models.GroupMember.group_id == group_id)
            .order_by(models.GroupMember.id)
        )
        return list(self.session.exec(stmt).all())

    def member_counts(self, group_ids: Iterable[int]) -> Dict[int, int]:
        ids = set(group_ids)
        if not ids:
            return {}
        stmt = (
            select(models.GroupMember.group_id, func.count(models.GroupMember.id))
            .where(models.GroupMember.group_id.in_(ids))
            .group_by(models.GroupMember.group_id)
        )
        return {gid: count for gid, count in self.session.exec(stmt).all()}

    def is_member(self, group_id: int, user_id: int) -> bool:
        stmt = select(models.GroupMember.id).where(
            models.GroupMember.group_id == group_id,
            models.GroupMember.user_id == user_id,
        )
        return self.session.exec(stmt).first() is not None

    def add_member(self, group_id: int, user_id: int) -> models.GroupMember:
        """Insert a membership row.

        Raises `ConflictError` when the unique (group, user) pair already
        exists, which also covers two concurrent inserts of the same user.
        """
        member = models.GroupMember(group_id=group_id, user_id=user_id)
        self.session.add(member)
        self._commit_unique("User is already a member")
        self.session.refresh(member)
        return member

    def remove_member(self, group_id: int, user_id: int) -> int:
        """Delete a membership row and return the number of rows removed."""
        stmt = delete(models.GroupMember).where(
            models.GroupMember.group_id == group_id,
            models.GroupMember.user_id == user_id,
        )
        result = self.session.exec(stmt)
        self.session.commit()
        return result.rowcount

    def add_discussion(self, discussion: models.Discussion) -> models.Discussion:
        self.session.add(discussion)
        self.session.commit()
        self.session.refresh(discussion)
        return discussion

    def list_discussions(self, group_id: int) -> List[models.Discussion]:
        """Return the group's discussion log in posting order."""
        stmt = (
            select(models.Discussion)
            .where(models.Discussion.group_id == group_id)
            .order_by(models.Discussion.id)
        )
        return self.session.exec(stmt).all()

    def update_fields(self, group_id: int, expected_version: int, values: dict) -> bool:
        """Conditionally update scalar group fields.

        The UPDATE only matches while the stored version equals
        `expected_version` and bumps it on success. Returns False when no
        row matched (the group changed or disappeared since it was read).
        """
        stmt = (
            update(models.Group)
            .where(models.Group.id == group_id, models.Group.version == expected_version)
            .values(**values, version=models.Group.version + 1, updated_at=models.utcnow())
        )
        result = self.session.exec(stmt)
        self.session.commit()
        return result.rowcount == 1

    def delete(self, group: models.Group) -> None:
        """Delete a group and every member and discussion row it owns."""
        self.session.exec(delete(models.Discussion).where(models.Discussion.group_id == group.id))
        self.session.exec(delete(models.GroupMember).where(models.GroupMember.group_id == group.id))
        self.session.delete(group)
        self.session.commit()
