"""
Request payloads and view models.

Stored rows use snake_case columns; everything on the wire is camelCase.
The ``*_view`` helpers are the only place rows are turned into JSON shapes.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import new_id

Gender = Literal["male", "female"]
FitnessLevel = Literal["beginner", "intermediary", "advanced", "pro"]


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # Normalize ISO 8601 with possible trailing Z
    v = value.replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(v)
    except ValueError:
        return None


def _check_iso(value: Optional[str]) -> Optional[str]:
    if value is not None and parse_iso(value) is None:
        raise ValueError("must be an ISO 8601 date")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --------- Workouts ---------

class WorkoutSet(CamelModel):
    id: str = Field(default_factory=new_id)
    weight: float = Field(..., ge=0)
    reps: int = Field(..., ge=0)


class Exercise(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1)
    category: Optional[str] = None
    sets: List[WorkoutSet] = []


class WorkoutCreate(CamelModel):
    date: str
    duration: int = Field(..., ge=0)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_active: Optional[bool] = None
    exercises: List[Exercise] = []
    notes: Optional[str] = None

    @field_validator("date", "start_time", "end_time")
    @classmethod
    def check_dates(cls, value: Optional[str]) -> Optional[str]:
        return _check_iso(value)


class WorkoutUpdate(CamelModel):
    date: Optional[str] = None
    duration: Optional[int] = Field(None, ge=0)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_active: Optional[bool] = None
    exercises: Optional[List[Exercise]] = None
    notes: Optional[str] = None

    @field_validator("date", "start_time", "end_time")
    @classmethod
    def check_dates(cls, value: Optional[str]) -> Optional[str]:
        return _check_iso(value)


class ExerciseCreate(CamelModel):
    name: str = Field(..., min_length=1)
    category: Optional[str] = None


class SetCreate(CamelModel):
    weight: float = Field(..., ge=0)
    reps: int = Field(..., ge=0)


class WorkoutOut(CamelModel):
    id: str
    user_id: str
    date: str
    duration: int
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_active: Optional[bool] = None
    exercises: List[Exercise] = []
    notes: Optional[str] = None


# --------- Profiles ---------

class ProfileCreate(CamelModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    gender: Optional[Gender] = None
    profile_picture: Optional[str] = None
    fitness_level: Optional[FitnessLevel] = None
    notifications_enabled: bool = True
    created_at: Optional[str] = None

    @field_validator("created_at")
    @classmethod
    def check_dates(cls, value: Optional[str]) -> Optional[str]:
        return _check_iso(value)


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = Field(None, min_length=1)
    gender: Optional[Gender] = None
    profile_picture: Optional[str] = None
    fitness_level: Optional[FitnessLevel] = None
    notifications_enabled: Optional[bool] = None
    created_at: Optional[str] = None

    @field_validator("created_at")
    @classmethod
    def check_dates(cls, value: Optional[str]) -> Optional[str]:
        return _check_iso(value)


class ProfileOut(CamelModel):
    id: str
    user_id: str
    name: str
    email: str
    gender: Optional[Gender] = None
    profile_picture: Optional[str] = None
    fitness_level: Optional[FitnessLevel] = None
    notifications_enabled: bool
    created_at: str


class EffectiveProfile(CamelModel):
    name: str
    email: str
    profile_picture: Optional[str] = None
    source: Literal["profile", "auth"]


# --------- Weight ---------

class WeightEntryCreate(CamelModel):
    date: str
    weight: float = Field(..., gt=0)
    note: Optional[str] = None
    photo_id: Optional[str] = None

    @field_validator("date")
    @classmethod
    def check_dates(cls, value: Optional[str]) -> Optional[str]:
        return _check_iso(value)


class WeightEntryUpdate(CamelModel):
    date: Optional[str] = None
    weight: Optional[float] = Field(None, gt=0)
    note: Optional[str] = None
    photo_id: Optional[str] = None

    @field_validator("date")
    @classmethod
    def check_dates(cls, value: Optional[str]) -> Optional[str]:
        return _check_iso(value)


class WeightEntryOut(CamelModel):
    id: str
    user_id: str
    date: str
    weight: float
    note: Optional[str] = None
    photo_id: Optional[str] = None
    photo_url: Optional[str] = None


class WeightGoalIn(CamelModel):
    target_weight: float = Field(..., gt=0)
    weekly_goal: float
    start_date: str
    start_weight: float = Field(..., gt=0)

    @field_validator("start_date")
    @classmethod
    def check_dates(cls, value: Optional[str]) -> Optional[str]:
        return _check_iso(value)


class WeightGoalOut(CamelModel):
    id: str
    user_id: str
    target_weight: float
    weekly_goal: float
    start_date: str
    start_weight: float


class WeightStats(CamelModel):
    current_weight: Optional[float] = None
    start_weight: Optional[float] = None
    change: float = 0.0
    target_weight: Optional[float] = None
    remaining: Optional[float] = None
    progress: Optional[float] = None


# --------- Auth ---------

class SignUpIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8)


class SignInIn(BaseModel):
    email: EmailStr
    password: str


class AuthUser(CamelModel):
    id: str
    name: str
    email: str
    image: Optional[str] = None


class SessionInfo(CamelModel):
    id: str
    token: str
    created_at: datetime
    expires_at: datetime


class SessionOut(BaseModel):
    user: AuthUser
    session: SessionInfo


# --------- Mapping ---------

def workout_view(doc: Any) -> WorkoutOut:
    return WorkoutOut(**doc.model_dump())


def profile_view(doc: Any) -> ProfileOut:
    return ProfileOut(**doc.model_dump())


def weight_goal_view(doc: Any) -> WeightGoalOut:
    return WeightGoalOut(**doc.model_dump())


def weight_entry_view(doc: Any, photo_url: Optional[str] = None) -> WeightEntryOut:
    return WeightEntryOut(**doc.model_dump(), photo_url=photo_url)


def auth_user_view(user: Any) -> AuthUser:
    return AuthUser(id=user.id, name=user.name, email=user.email, image=user.image)


def defined_fields(payload: BaseModel) -> Dict[str, Any]:
    """Fields the caller actually supplied, dropping nulls."""
    return payload.model_dump(exclude_unset=True, exclude_none=True)
