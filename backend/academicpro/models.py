"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Relationships are stored as plain integer ids; display data (names,
emails) is expanded by the services in a separate lookup step.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Status(str, Enum):
    """Three-valued workflow label shared by notes and group projects.

    There is no transition graph: any value may follow any other.
    """
    TODO = "To do"
    IN_PROGRESS = "In progress"
    DONE = "Done"


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `email`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    """
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    first_name: str
    last_name: str
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    mobile_number: str = ""
    profile_pic: str = "/images/default_avatar.png"
    location: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def username(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Note(SQLModel, table=True):
    """A personal task card on the owner's board."""
    __tablename__ = "notes"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    content: str
    status: Status = Field(default=Status.TODO)
    user_id: int = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Course(SQLModel, table=True):
    """A catalog entry. `added_by` is None when no creator was recorded."""
    __tablename__ = "courses"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    code: str = Field(index=True, nullable=False, unique=True)
    description: Optional[str] = None
    added_by: Optional[int] = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Group(SQLModel, table=True):
    """A collaboration group with one admin and a single assignment.

    `version` is bumped by every conditional update of the scalar fields
    and is used to reject writes based on a stale read.
    """
    __tablename__ = "groups"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, nullable=False, unique=True)
    description: Optional[str] = None
    admin_id: int = Field(foreign_key="users.id")
    assignment_title: str = ""
    deadline: Optional[datetime] = None
    project_status: Status = Field(default=Status.TODO)
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class GroupMember(SQLModel, table=True):
    """Membership row; the unique pair keeps members unique per group."""
    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_member"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="groups.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    joined_at: datetime = Field(default_factory=utcnow)


class Discussion(SQLModel, table=True):
    """An append-only discussion entry inside a group."""
    __tablename__ = "discussions"

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="groups.id", index=True)
    user_id: int = Field(foreign_key="users.id")
    text: str
    created_at: datetime = Field(default_factory=utcnow)
