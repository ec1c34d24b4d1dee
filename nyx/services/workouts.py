from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..db import session_dependency
from ..errors import Conflict, NotFound
from ..models import Workout, new_id
from ..schemas import (
    AuthUser,
    Exercise,
    ExerciseCreate,
    SetCreate,
    WorkoutCreate,
    WorkoutOut,
    WorkoutUpdate,
    defined_fields,
    parse_iso,
    workout_view,
)
from .auth import current_identity, require_identity
from .common import ensure_owner, now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workouts", tags=["workouts"])


async def _active_workout(session: AsyncSession, user_id: str) -> Optional[Workout]:
    result = await session.exec(
        select(Workout).where(Workout.user_id == user_id, Workout.is_active == True)  # noqa: E712
    )
    return result.first()


async def _ensure_single_active(session: AsyncSession, user_id: str, workout_id: Optional[str] = None) -> None:
    active = await _active_workout(session, user_id)
    if active is not None and active.id != workout_id:
        raise Conflict("Another workout is already active")


async def _save(session: AsyncSession, doc: Workout) -> WorkoutOut:
    session.add(doc)
    try:
        await session.commit()
    except IntegrityError:
        # the partial unique index on active workouts caught a concurrent write
        await session.rollback()
        raise Conflict("Another workout is already active")
    await session.refresh(doc)
    return workout_view(doc)


async def _owned(session: AsyncSession, identity: Optional[AuthUser], workout_id: str) -> Workout:
    identity = require_identity(identity)
    return ensure_owner(await session.get(Workout, workout_id), identity, "Workout")


def _find_exercise(exercises: List[Dict[str, Any]], exercise_id: str) -> int:
    for idx, ex in enumerate(exercises):
        if ex.get("id") == exercise_id:
            return idx
    raise NotFound("Exercise not found")


async def list_workouts(session: AsyncSession, identity: Optional[AuthUser]) -> List[WorkoutOut]:
    if identity is None:
        return []
    result = await session.exec(select(Workout).where(Workout.user_id == identity.id))
    return [workout_view(w) for w in result.all()]


async def list_recent_workouts(
    session: AsyncSession, identity: Optional[AuthUser], limit: int = 5
) -> List[WorkoutOut]:
    if identity is None:
        return []
    result = await session.exec(
        select(Workout).where(Workout.user_id == identity.id).order_by(Workout.date.desc()).limit(limit)
    )
    return [workout_view(w) for w in result.all()]


async def get_workout(session: AsyncSession, workout_id: str) -> Optional[WorkoutOut]:
    doc = await session.get(Workout, workout_id)
    return workout_view(doc) if doc else None


async def get_active_workout(session: AsyncSession, identity: Optional[AuthUser]) -> Optional[WorkoutOut]:
    if identity is None:
        return None
    doc = await _active_workout(session, identity.id)
    return workout_view(doc) if doc else None


async def create_workout(session: AsyncSession, identity: Optional[AuthUser], payload: WorkoutCreate) -> WorkoutOut:
    identity = require_identity(identity)
    if payload.is_active:
        await _ensure_single_active(session, identity.id)
    fields = payload.model_dump()
    doc = Workout(user_id=identity.id, **fields)
    return await _save(session, doc)


async def update_workout(
    session: AsyncSession, identity: Optional[AuthUser], workout_id: str, payload: WorkoutUpdate
) -> WorkoutOut:
    doc = await _owned(session, identity, workout_id)
    updates = defined_fields(payload)
    if updates.get("is_active"):
        await _ensure_single_active(session, doc.user_id, doc.id)
    for key, value in updates.items():
        setattr(doc, key, value)
    return await _save(session, doc)


async def delete_workout(session: AsyncSession, identity: Optional[AuthUser], workout_id: str) -> str:
    doc = await _owned(session, identity, workout_id)
    await session.delete(doc)
    await session.commit()
    return workout_id


async def start_workout(session: AsyncSession, identity: Optional[AuthUser]) -> WorkoutOut:
    """Start a new session, or hand back the one already in progress."""
    identity = require_identity(identity)
    active = await _active_workout(session, identity.id)
    if active is not None:
        return workout_view(active)
    now = now_iso()
    doc = Workout(
        user_id=identity.id,
        date=now,
        duration=0,
        start_time=now,
        is_active=True,
        exercises=[],
    )
    try:
        out = await _save(session, doc)
    except Conflict:
        active = await _active_workout(session, identity.id)
        if active is None:
            raise
        return workout_view(active)
    logger.info("workouts: started workout %s for user %s", out.id, identity.id)
    return out


async def end_workout(session: AsyncSession, identity: Optional[AuthUser], workout_id: str) -> WorkoutOut:
    doc = await _owned(session, identity, workout_id)
    end = now_iso()
    started = parse_iso(doc.start_time) or parse_iso(doc.date)
    finished = parse_iso(end)
    if started is not None and finished is not None:
        if started.tzinfo is None:
            started = started.replace(tzinfo=finished.tzinfo)
        doc.duration = max(0, int((finished - started).total_seconds()))
    doc.is_active = False
    doc.end_time = end
    out = await _save(session, doc)
    logger.info("workouts: ended workout %s after %ss", out.id, out.duration)
    return out


async def add_exercise(
    session: AsyncSession, identity: Optional[AuthUser], workout_id: str, payload: ExerciseCreate
) -> WorkoutOut:
    doc = await _owned(session, identity, workout_id)
    exercise = Exercise(id=new_id(), name=payload.name.strip(), category=payload.category, sets=[])
    doc.exercises = list(doc.exercises) + [exercise.model_dump()]
    return await _save(session, doc)


async def remove_exercise(
    session: AsyncSession, identity: Optional[AuthUser], workout_id: str, exercise_id: str
) -> WorkoutOut:
    doc = await _owned(session, identity, workout_id)
    exercises = list(doc.exercises)
    del exercises[_find_exercise(exercises, exercise_id)]
    doc.exercises = exercises
    return await _save(session, doc)


async def add_set(
    session: AsyncSession, identity: Optional[AuthUser], workout_id: str, exercise_id: str, payload: SetCreate
) -> WorkoutOut:
    doc = await _owned(session, identity, workout_id)
    exercises = [dict(ex) for ex in doc.exercises]
    idx = _find_exercise(exercises, exercise_id)
    new_set = {"id": new_id(), "weight": payload.weight, "reps": payload.reps}
    exercises[idx]["sets"] = list(exercises[idx].get("sets") or []) + [new_set]
    doc.exercises = exercises
    return await _save(session, doc)


async def remove_set(
    session: AsyncSession, identity: Optional[AuthUser], workout_id: str, exercise_id: str, set_id: str
) -> WorkoutOut:
    doc = await _owned(session, identity, workout_id)
    exercises = [dict(ex) for ex in doc.exercises]
    idx = _find_exercise(exercises, exercise_id)
    sets = list(exercises[idx].get("sets") or [])
    remaining = [s for s in sets if s.get("id") != set_id]
    if len(remaining) == len(sets):
        raise NotFound("Set not found")
    exercises[idx]["sets"] = remaining
    doc.exercises = exercises
    return await _save(session, doc)


# --------- Routes ---------

@router.get("", response_model=List[WorkoutOut])
async def list_workouts_route(
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await list_workouts(session, identity)


@router.get("/recent", response_model=List[WorkoutOut])
async def recent_workouts_route(
    limit: int = Query(5, ge=1, le=100),
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await list_recent_workouts(session, identity, limit)


@router.get("/active", response_model=Optional[WorkoutOut])
async def active_workout_route(
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await get_active_workout(session, identity)


@router.post("/start", response_model=WorkoutOut)
async def start_workout_route(
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await start_workout(session, identity)


@router.get("/{workout_id}", response_model=Optional[WorkoutOut])
async def get_workout_route(workout_id: str, session: AsyncSession = Depends(session_dependency)):
    return await get_workout(session, workout_id)


@router.post("", response_model=WorkoutOut)
async def create_workout_route(
    payload: WorkoutCreate,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await create_workout(session, identity, payload)


@router.patch("/{workout_id}", response_model=WorkoutOut)
async def update_workout_route(
    workout_id: str,
    payload: WorkoutUpdate,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await update_workout(session, identity, workout_id, payload)


@router.delete("/{workout_id}")
async def delete_workout_route(
    workout_id: str,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return {"id": await delete_workout(session, identity, workout_id)}


@router.post("/{workout_id}/end", response_model=WorkoutOut)
async def end_workout_route(
    workout_id: str,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await end_workout(session, identity, workout_id)


@router.post("/{workout_id}/exercises", response_model=WorkoutOut)
async def add_exercise_route(
    workout_id: str,
    payload: ExerciseCreate,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await add_exercise(session, identity, workout_id, payload)


@router.delete("/{workout_id}/exercises/{exercise_id}", response_model=WorkoutOut)
async def remove_exercise_route(
    workout_id: str,
    exercise_id: str,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await remove_exercise(session, identity, workout_id, exercise_id)


@router.post("/{workout_id}/exercises/{exercise_id}/sets", response_model=WorkoutOut)
async def add_set_route(
    workout_id: str,
    exercise_id: str,
    payload: SetCreate,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await add_set(session, identity, workout_id, exercise_id, payload)


@router.delete("/{workout_id}/exercises/{exercise_id}/sets/{set_id}", response_model=WorkoutOut)
async def remove_set_route(
    workout_id: str,
    exercise_id: str,
    set_id: str,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await remove_set(session, identity, workout_id, exercise_id, set_id)
