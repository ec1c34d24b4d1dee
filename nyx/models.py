from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, Index, text
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, also on backends that store them naive (SQLite)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime for a UTC column")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def utc_column(index: bool = False) -> Column:
    return Column(UTCDateTime(), nullable=False, index=index)


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True, unique=True)
    name: str
    email: str = Field(index=True)
    gender: Optional[str] = None
    profile_picture: Optional[str] = None
    fitness_level: Optional[str] = None
    notifications_enabled: bool = True
    created_at: str = Field(index=True)


class Workout(SQLModel, table=True):
    __tablename__ = "workouts"
    __table_args__ = (
        # at most one active workout per user
        Index(
            "uq_workouts_active_user",
            "user_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    date: str = Field(index=True)
    duration: int = 0
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_active: Optional[bool] = None
    # embedded exercises and their sets; always reassigned, never mutated in place
    exercises: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    notes: Optional[str] = None


class WeightEntry(SQLModel, table=True):
    __tablename__ = "weightEntries"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    date: str = Field(index=True)
    weight: float
    note: Optional[str] = None
    photo_id: Optional[str] = None


class WeightGoal(SQLModel, table=True):
    __tablename__ = "weightGoals"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True, unique=True)
    target_weight: float
    weekly_goal: float
    start_date: str
    start_weight: float


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    image: Optional[str] = None
    password_hash: Optional[str] = None
    google_sub: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())


class AuthSession(SQLModel, table=True):
    __tablename__ = "sessions"

    id: str = Field(default_factory=new_id, primary_key=True)
    token: str = Field(index=True, unique=True)
    user_id: str = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    expires_at: datetime = Field(sa_column=utc_column(index=True))


class StoredFile(SQLModel, table=True):
    __tablename__ = "files"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    content_type: str = "application/octet-stream"
    size: int
    path: str
    # jti of the signed upload URL; each URL stores one file
    upload_jti: Optional[str] = Field(default=None, index=True, unique=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
