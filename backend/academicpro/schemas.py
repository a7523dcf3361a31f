"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and validate every request body at
the boundary, before any store interaction. Validation failures are
reported to the caller as 400 responses naming the offending field.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import Status


class SignupIn(BaseModel):
    """Payload for account creation."""
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)
    confirm_password: str


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateIn(BaseModel):
    """Partial profile update; empty strings leave the field unchanged."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    mobile_number: Optional[str] = None
    location: Optional[str] = None
    profile_pic: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6)
    confirm_password: Optional[str] = None

    @field_validator('email', 'password', 'confirm_password', mode='before')
    @classmethod
    def blank_as_unset(cls, value):
        # a blank input means unchanged
        if isinstance(value, str) and not value.strip():
            return None
        return value


class NoteIn(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    status: Status = Status.TODO


class NoteUpdateIn(BaseModel):
    """Partial note update. `status` must be one of the three labels.

    Blank `title` or `content` keeps the current value.
    """
    title: Optional[str] = None
    content: Optional[str] = None
    status: Optional[Status] = None


class CourseIn(BaseModel):
    title: str = ""
    code: str = ""
    description: Optional[str] = None


class CourseUpdateIn(BaseModel):
    title: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None


class GroupIn(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None


class GroupDetailsIn(BaseModel):
    """Assignment field update.

    Only fields present in the body are applied, so `"deadline": null`
    clears the deadline while omitting it keeps the current value.
    `version`, when sent, must match the group's current version.
    """
    assignment_title: Optional[str] = None
    deadline: Optional[datetime] = None
    description: Optional[str] = None
    version: Optional[int] = None


class AssignmentStatusIn(BaseModel):
    assignment_status: Status
    version: Optional[int] = None


class MemberIn(BaseModel):
    member_id: int


class DiscussionIn(BaseModel):
    text: str = Field(min_length=1)
