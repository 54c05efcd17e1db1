"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
"""

from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, date, timezone
from typing import List


def _now():
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """A registered professor or student.

    Fields:
    - `email`: unique login name
    - `role`: ``professor`` or ``student``
    - `password_hash`: hashed password string (never store plaintext)
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    name: str = ""
    role: str = Field(default="student")
    password_hash: str
    created_at: datetime = Field(default_factory=_now)


class ClassRoom(SQLModel, table=True):
    """A class owned by a professor; students join it with `code`."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    code: str = Field(index=True, unique=True)
    join_code_expires_at: Optional[datetime] = None
    professor_id: int = Field(foreign_key='user.id')
    created_at: datetime = Field(default_factory=_now)


class ClassMember(SQLModel, table=True):
    """Membership of a user in a class, with the role they hold there."""
    id: Optional[int] = Field(default=None, primary_key=True)
    class_id: int = Field(foreign_key='classroom.id', index=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    role: str = "student"
    joined_at: datetime = Field(default_factory=_now)


class Project(SQLModel, table=True):
    """A project inside a class."""
    id: Optional[int] = Field(default=None, primary_key=True)
    class_id: int = Field(foreign_key='classroom.id', index=True)
    name: str
    description: Optional[str] = None
    due_date: Optional[date] = None
    assignment_mode: str = "teacher_assigns"
    grouping_strategy: str = "manual"
    created_at: datetime = Field(default_factory=_now)


class StudentStrength(SQLModel, table=True):
    """Survey ratings (0-5) a student gave themselves; one row per user."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', unique=True)
    research_rating: int = 0
    writing_rating: int = 0
    design_rating: int = 0
    technical_rating: int = 0
    updated_at: datetime = Field(default_factory=_now)


class ProjectGroup(SQLModel, table=True):
    """A named group of students working on a project."""
    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key='project.id', index=True)
    name: str
    position: int = 0
    members: List['GroupMember'] = Relationship(back_populates='group')


class GroupMember(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key='projectgroup.id', index=True)
    user_id: int = Field(foreign_key='user.id')
    group: Optional[ProjectGroup] = Relationship(back_populates='members')


class Task(SQLModel, table=True):
    """A personal task, optionally tied to a project."""
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    status: str = "todo"
    due_date: Optional[datetime] = None
    project_id: Optional[int] = Field(default=None, foreign_key='project.id')
    assigned_to: int = Field(foreign_key='user.id', index=True)
    created_at: datetime = Field(default_factory=_now)


class ActivityLog(SQLModel, table=True):
    """An entry in a project's activity feed."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id')
    project_id: int = Field(foreign_key='project.id', index=True)
    group_id: Optional[int] = Field(default=None, foreign_key='projectgroup.id')
    action_type: str
    entity_id: Optional[str] = None
    entity_title: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
