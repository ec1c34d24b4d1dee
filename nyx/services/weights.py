from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..db import session_dependency
from ..errors import NotFound
from ..models import StoredFile, WeightEntry, WeightGoal
from ..schemas import (
    AuthUser,
    WeightEntryCreate,
    WeightEntryOut,
    WeightEntryUpdate,
    WeightGoalIn,
    WeightGoalOut,
    WeightStats,
    defined_fields,
    weight_entry_view,
    weight_goal_view,
)
from .auth import current_identity, require_identity
from .common import ensure_owner
from .storage import get_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/weights", tags=["weights"])


def _view(doc: WeightEntry) -> WeightEntryOut:
    return weight_entry_view(doc, photo_url=get_url(doc.photo_id))


async def _check_photo(session: AsyncSession, identity: AuthUser, photo_id: Optional[str]) -> None:
    """A photo must be an upload that belongs to the caller."""
    if photo_id:
        ensure_owner(await session.get(StoredFile, photo_id), identity, "File")


# --------- Entries ---------

async def list_weight_entries(
    session: AsyncSession, identity: Optional[AuthUser], limit: int = 100
) -> List[WeightEntryOut]:
    """Caller's entries, newest date first."""
    if identity is None:
        return []
    result = await session.exec(
        select(WeightEntry)
        .where(WeightEntry.user_id == identity.id)
        .order_by(WeightEntry.date.desc())
        .limit(limit)
    )
    return [_view(e) for e in result.all()]


async def get_weight_entry(session: AsyncSession, entry_id: str) -> Optional[WeightEntryOut]:
    doc = await session.get(WeightEntry, entry_id)
    return _view(doc) if doc else None


async def log_weight(
    session: AsyncSession, identity: Optional[AuthUser], payload: WeightEntryCreate
) -> WeightEntryOut:
    identity = require_identity(identity)
    await _check_photo(session, identity, payload.photo_id)
    doc = WeightEntry(user_id=identity.id, **payload.model_dump())
    session.add(doc)
    await session.commit()
    await session.refresh(doc)
    logger.info("weights: logged %s for user %s", doc.weight, identity.id)
    return _view(doc)


async def update_weight_entry(
    session: AsyncSession, identity: Optional[AuthUser], entry_id: str, payload: WeightEntryUpdate
) -> WeightEntryOut:
    identity = require_identity(identity)
    doc = ensure_owner(await session.get(WeightEntry, entry_id), identity, "Weight entry")
    await _check_photo(session, identity, payload.photo_id)
    for key, value in defined_fields(payload).items():
        setattr(doc, key, value)
    session.add(doc)
    await session.commit()
    await session.refresh(doc)
    return _view(doc)


async def delete_weight_entry(session: AsyncSession, identity: Optional[AuthUser], entry_id: str) -> str:
    identity = require_identity(identity)
    doc = ensure_owner(await session.get(WeightEntry, entry_id), identity, "Weight entry")
    await session.delete(doc)
    await session.commit()
    return entry_id


# --------- Goal ---------

async def _goal_for(session: AsyncSession, user_id: str) -> Optional[WeightGoal]:
    result = await session.exec(select(WeightGoal).where(WeightGoal.user_id == user_id))
    return result.first()


async def set_weight_goal(session: AsyncSession, identity: Optional[AuthUser], payload: WeightGoalIn) -> WeightGoalOut:
    identity = require_identity(identity)
    doc = await _goal_for(session, identity.id)
    if doc is None:
        doc = WeightGoal(user_id=identity.id, **payload.model_dump())
    else:
        for key, value in payload.model_dump().items():
            setattr(doc, key, value)
    session.add(doc)
    await session.commit()
    await session.refresh(doc)
    return weight_goal_view(doc)


async def get_weight_goal(session: AsyncSession, identity: Optional[AuthUser]) -> Optional[WeightGoalOut]:
    if identity is None:
        return None
    doc = await _goal_for(session, identity.id)
    return weight_goal_view(doc) if doc else None


async def delete_weight_goal(session: AsyncSession, identity: Optional[AuthUser]) -> str:
    identity = require_identity(identity)
    doc = await _goal_for(session, identity.id)
    if doc is None:
        raise NotFound("Weight goal not found")
    await session.delete(doc)
    await session.commit()
    return doc.id


async def weight_stats(session: AsyncSession, identity: Optional[AuthUser]) -> WeightStats:
    if identity is None:
        return WeightStats()
    result = await session.exec(
        select(WeightEntry).where(WeightEntry.user_id == identity.id).order_by(WeightEntry.date)
    )
    entries = result.all()
    goal = await _goal_for(session, identity.id)
    if not entries:
        return WeightStats(target_weight=goal.target_weight if goal else None)

    current = entries[-1].weight
    start = goal.start_weight if goal else entries[0].weight
    stats = WeightStats(current_weight=current, start_weight=start, change=round(current - start, 1))
    if goal is not None:
        stats.target_weight = goal.target_weight
        stats.remaining = round(goal.target_weight - current, 1)
        span = goal.target_weight - goal.start_weight
        if span:
            progress = (current - goal.start_weight) / span * 100
            stats.progress = round(min(100.0, max(0.0, progress)), 1)
        else:
            stats.progress = 100.0
    return stats


# --------- Routes ---------

@router.get("", response_model=List[WeightEntryOut])
async def list_weights_route(
    limit: int = Query(100, ge=1, le=1000),
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await list_weight_entries(session, identity, limit)


@router.post("", response_model=WeightEntryOut)
async def log_weight_route(
    payload: WeightEntryCreate,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await log_weight(session, identity, payload)


@router.get("/goal", response_model=Optional[WeightGoalOut])
async def get_goal_route(
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await get_weight_goal(session, identity)


@router.put("/goal", response_model=WeightGoalOut)
async def set_goal_route(
    payload: WeightGoalIn,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await set_weight_goal(session, identity, payload)


@router.delete("/goal")
async def delete_goal_route(
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return {"id": await delete_weight_goal(session, identity)}


@router.get("/stats", response_model=WeightStats)
async def stats_route(
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await weight_stats(session, identity)


@router.get("/{entry_id}", response_model=Optional[WeightEntryOut])
async def get_weight_route(entry_id: str, session: AsyncSession = Depends(session_dependency)):
    return await get_weight_entry(session, entry_id)


@router.patch("/{entry_id}", response_model=WeightEntryOut)
async def update_weight_route(
    entry_id: str,
    payload: WeightEntryUpdate,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await update_weight_entry(session, identity, entry_id, payload)


@router.delete("/{entry_id}")
async def delete_weight_route(
    entry_id: str,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return {"id": await delete_weight_entry(session, identity, entry_id)}
