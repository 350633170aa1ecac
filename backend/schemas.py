from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional, List

from models import UserRole, ProjectStatus, TaskPriority, TaskStatus


# Auth schemas
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=100)
    role: UserRole = UserRole.user


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MessageResponse(BaseModel):
    message: str


# User schemas
class UserSummary(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class User(UserSummary):
    role: UserRole
    created_at: datetime

    class Config:
        from_attributes = True


# Team schemas
class TeamCreate(BaseModel):
    name: str = Field(..., max_length=255)
    description: Optional[str] = None


class Team(BaseModel):
    id: int
    name: str
    description: str = ""
    lead_id: int
    lead: Optional[UserSummary] = None
    member_ids: List[int] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TeamMemberCreate(BaseModel):
    user_id: int


class TeamMemberResponse(BaseModel):
    id: int
    team_id: int
    user_id: int
    user: UserSummary
    created_at: datetime

    class Config:
        from_attributes = True


class TeamWithMembers(Team):
    members: List[TeamMemberResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


# Project schemas
class ProjectCreate(BaseModel):
    name: str = Field(..., max_length=255)
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None


class Project(BaseModel):
    id: int
    name: str
    description: str = ""
    status: ProjectStatus
    team_id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Task schemas
class TaskCreate(BaseModel):
    title: str = Field(..., max_length=255)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    assignee_ids: List[int] = Field(default_factory=list)
    observer_ids: List[int] = Field(default_factory=list)
    parent_id: Optional[int] = None
    related_task_ids: List[int] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    """Partial update; only fields present in the request body are applied."""
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    assignee_ids: Optional[List[int]] = None
    observer_ids: Optional[List[int]] = None
    parent_id: Optional[int] = None
    related_task_ids: Optional[List[int]] = None


class TaskStub(BaseModel):
    id: int
    task_number: int
    title: str

    class Config:
        from_attributes = True


class SubtaskStub(TaskStub):
    status: TaskStatus

    class Config:
        from_attributes = True


class Task(BaseModel):
    id: int
    task_number: int
    title: str
    description: str = ""
    priority: TaskPriority
    status: TaskStatus
    project_id: int
    author_id: Optional[int] = None
    author: Optional[UserSummary] = None
    assignees: List[UserSummary] = Field(default_factory=list)
    observers: List[UserSummary] = Field(default_factory=list)
    parent_id: Optional[int] = None
    parent: Optional[TaskStub] = None
    subtasks: List[SubtaskStub] = Field(default_factory=list)
    related_tasks: List[TaskStub] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
