"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests.
"""

from datetime import date, datetime
from pydantic import BaseModel, Field
from typing import List, Optional


class RegisterIn(BaseModel):
    """Payload for user registration."""
    email: str
    password: str
    name: str = ""
    role: str = "student"


class LoginIn(BaseModel):
    email: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str


class RoleIn(BaseModel):
    role: str


class ClassIn(BaseModel):
    name: str = Field(min_length=1)


class JoinClassIn(BaseModel):
    code: str = Field(min_length=1)


class ProjectIn(BaseModel):
    """Request format for creating a project inside a class."""
    name: str = Field(min_length=1)
    description: Optional[str] = None
    due_date: Optional[date] = None
    assignment_mode: str = "teacher_assigns"
    grouping_strategy: str = "manual"


class SkillRating(BaseModel):
    """One answered survey question, e.g. ``{"name": "Research", "rating": 4}``."""
    name: str
    rating: int = Field(default=0, ge=0, le=5)


class SurveyIn(BaseModel):
    skills: List[SkillRating]


class ManualGroupIn(BaseModel):
    name: str
    member_ids: List[int] = []


class GroupingIn(BaseModel):
    """Grouping request; `groups` is used in manual mode, `group_size` in automatic mode."""
    mode: str
    groups: List[ManualGroupIn] = []
    group_size: Optional[int] = None


class TaskIn(BaseModel):
    title: str = Field(min_length=1)
    status: str = "todo"
    due_date: Optional[datetime] = None
    project_id: Optional[int] = None


class TaskUpdate(BaseModel):
    """Partial task update; only provided fields change."""
    title: Optional[str] = None
    status: Optional[str] = None
    due_date: Optional[datetime] = None


class ActivityIn(BaseModel):
    """Activity entry logged by a client, e.g. a task completed inside a group."""
    project_id: int
    group_id: int
    action_type: str
    entity_id: Optional[str] = None
    entity_title: Optional[str] = None
