from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fastapi import APIRouter, Depends, Query
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..db import session_dependency
from ..models import Workout
from ..schemas import AuthUser, parse_iso
from .auth import current_identity

router = APIRouter(prefix="/stats", tags=["stats"])


async def _workouts_for(session: AsyncSession, identity: Optional[AuthUser]) -> List[Workout]:
    if identity is None:
        return []
    result = await session.exec(select(Workout).where(Workout.user_id == identity.id))
    return list(result.all())


def _workout_day(w: Workout) -> Optional[date]:
    parsed = parse_iso(w.date)
    return parsed.date() if parsed else None


def _iter_sets(w: Workout) -> Iterable[Tuple[Dict[str, Any], Dict[str, Any]]]:
    for ex in w.exercises or []:
        for s in ex.get("sets") or []:
            yield ex, s


def _set_volume(s: Dict[str, Any]) -> float:
    try:
        return float(s.get("weight") or 0) * int(s.get("reps") or 0)
    except (TypeError, ValueError):
        return 0.0


def weekly_attendance(workouts: List[Workout], today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Sunday-start current week, one entry per day."""
    today = today or date.today()
    # date.weekday(): Monday=0, so shift to a Sunday start
    start_of_week = today - timedelta(days=(today.weekday() + 1) % 7)
    days_with = {_workout_day(w) for w in workouts}
    week = []
    for i in range(7):
        day = start_of_week + timedelta(days=i)
        week.append({
            "date": day.isoformat(),
            "hasWorkout": day in days_with,
            "isToday": day == today,
        })
    return week


def week_streaks(workouts: List[Workout], today: Optional[date] = None) -> Tuple[int, int]:
    """Current and longest runs of consecutive ISO weeks with at least one workout."""
    days = [d for d in (_workout_day(w) for w in workouts) if d is not None]
    if not days:
        return 0, 0
    workout_weeks = sorted(set((d.isocalendar()[0], d.isocalendar()[1]) for d in days))

    # Count consecutive weeks from now going back
    today = today or date.today()
    current_year, current_week, _ = today.isocalendar()
    temp_year, temp_week = current_year, current_week
    current = 0
    while (temp_year, temp_week) in workout_weeks:
        current += 1
        temp_date = date.fromisocalendar(temp_year, temp_week, 1) - timedelta(weeks=1)
        temp_year, temp_week, _ = temp_date.isocalendar()

    longest = 1
    streak = 1
    for i in range(1, len(workout_weeks)):
        prev_date = date.fromisocalendar(workout_weeks[i - 1][0], workout_weeks[i - 1][1], 1)
        curr_date = date.fromisocalendar(workout_weeks[i][0], workout_weeks[i][1], 1)
        if (curr_date - prev_date).days <= 7:
            streak += 1
            longest = max(longest, streak)
        else:
            streak = 1
    return current, longest


def summarize(workouts: List[Workout], today: Optional[date] = None) -> Dict[str, Any]:
    exercise_names = set()
    total_sets = 0
    total_volume = 0.0
    for w in workouts:
        for ex in w.exercises or []:
            exercise_names.add((ex.get("name") or "").strip().lower())
        for _, s in _iter_sets(w):
            total_sets += 1
            total_volume += _set_volume(s)
    exercise_names.discard("")

    weeks_current, weeks_longest = week_streaks(workouts, today)
    return {
        "totalWorkouts": len(workouts),
        "totalExercises": len(exercise_names),
        "totalSets": total_sets,
        "totalVolume": round(total_volume, 1),
        "totalDuration": sum(w.duration or 0 for w in workouts),
        "weeksCurrent": weeks_current,
        "weeksLongest": weeks_longest,
    }


def top_exercises(workouts: List[Workout], limit: int = 10) -> List[Dict[str, Any]]:
    counts: Dict[str, Dict[str, Any]] = {}
    for w in workouts:
        seen_in_workout = set()
        for ex in w.exercises or []:
            name = (ex.get("name") or "").strip()
            key = name.lower()
            if not key or key in seen_in_workout:
                continue
            seen_in_workout.add(key)
            item = counts.setdefault(key, {"name": name, "count": 0})
            item["count"] += 1
    return sorted(counts.values(), key=lambda x: x["count"], reverse=True)[:limit]


def workout_split(workouts: List[Workout]) -> List[Dict[str, Any]]:
    """Workout count, exercise count and volume per exercise category."""
    split_workouts: Dict[str, set] = {}
    split_exercises: Dict[str, int] = {}
    split_volume: Dict[str, float] = {}
    for w in workouts:
        for ex in w.exercises or []:
            category = (ex.get("category") or "Other").strip() or "Other"
            split_workouts.setdefault(category, set()).add(w.id)
            split_exercises[category] = split_exercises.get(category, 0) + 1
            split_volume[category] = split_volume.get(category, 0.0) + sum(
                _set_volume(s) for s in ex.get("sets") or []
            )

    splits = [
        {
            "name": category,
            "workoutCount": len(split_workouts[category]),
            "exerciseCount": split_exercises[category],
            "totalVolume": round(split_volume[category], 1),
        }
        for category in split_workouts
    ]
    splits.sort(key=lambda x: x["workoutCount"], reverse=True)
    return splits


# --------- Routes ---------

@router.get("/weekly-attendance")
async def weekly_attendance_route(
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
) -> Dict[str, Any]:
    workouts = await _workouts_for(session, identity)
    return {"days": weekly_attendance(workouts)}


@router.get("/summary")
async def summary_route(
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
) -> Dict[str, Any]:
    return summarize(await _workouts_for(session, identity))


@router.get("/top-exercises")
async def top_exercises_route(
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
) -> Dict[str, Any]:
    return {"exercises": top_exercises(await _workouts_for(session, identity), limit)}


@router.get("/workout-split")
async def workout_split_route(
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
) -> Dict[str, Any]:
    return {"splits": workout_split(await _workouts_for(session, identity))}
