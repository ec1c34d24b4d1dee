from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import Field, field_validator

from ..schemas import AuthUser, CamelModel
from ..settings import get_settings
from .auth import current_identity, require_identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/preferences", tags=["preferences"])

FontTheme = Literal["night-runner", "powerhouse", "premium"]
AttendanceVariant = Literal["pill", "circle", "bar"]

BODY_PARTS = [
    {"id": "chest", "label": "Chest"},
    {"id": "back", "label": "Back"},
    {"id": "legs", "label": "Legs", "subParts": ["Quads", "Hamstrings", "Glutes", "Calves"]},
    {"id": "arms", "label": "Arms", "subParts": ["Biceps", "Triceps", "Forearms"]},
    {"id": "shoulders", "label": "Shoulders"},
    {"id": "cardio", "label": "Cardio"},
    {"id": "abs", "label": "Abs"},
    {"id": "full_body", "label": "Full Body"},
]
BODY_PART_IDS = {p["id"] for p in BODY_PARTS}

MIN_REST_SECONDS = 30
MAX_REST_SECONDS = 300


class ClientStateStore:
    """Per-user JSON blobs kept in one file, like device local storage."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if self.path.exists():
            try:
                with open(self.path, "r") as f:
                    data = json.load(f)
                    if isinstance(data, dict):
                        return data
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("state: could not read %s (%s), starting empty", self.path, e)
        return {}

    def get(self, user_id: str, key: str, default: Any = None) -> Any:
        return self._load().get(user_id, {}).get(key, default)

    def all_for(self, user_id: str) -> Dict[str, Any]:
        return dict(self._load().get(user_id, {}))

    def set(self, user_id: str, key: str, value: Any) -> None:
        data = self._load()
        bucket = data.setdefault(user_id, {})
        if value is None:
            bucket.pop(key, None)
        else:
            bucket[key] = value
        with open(self.path, "w") as f:
            json.dump(data, f)


class Preferences(CamelModel):
    font_theme: FontTheme = "night-runner"
    attendance_variant: AttendanceVariant = "pill"
    rest_timer_duration: int = Field(180, ge=MIN_REST_SECONDS, le=MAX_REST_SECONDS)
    last_body_parts: List[str] = []
    seen_tooltips: List[str] = []


class PreferencesUpdate(CamelModel):
    font_theme: Optional[FontTheme] = None
    attendance_variant: Optional[AttendanceVariant] = None
    rest_timer_duration: Optional[int] = Field(None, ge=MIN_REST_SECONDS, le=MAX_REST_SECONDS)
    last_body_parts: Optional[List[str]] = None

    @field_validator("last_body_parts")
    @classmethod
    def known_body_parts(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is not None:
            unknown = [v for v in value if v not in BODY_PART_IDS]
            if unknown:
                raise ValueError(f"unknown body parts: {', '.join(unknown)}")
        return value


PREFERENCE_KEYS = ("font_theme", "attendance_variant", "rest_timer_duration", "last_body_parts", "seen_tooltips")


def load_preferences(store: ClientStateStore, user_id: str) -> Preferences:
    stored = store.all_for(user_id)
    values: Dict[str, Any] = {"rest_timer_duration": get_settings().default_rest_timer_seconds}
    values.update({k: stored[k] for k in PREFERENCE_KEYS if k in stored})
    try:
        return Preferences(**values)
    except ValueError:
        # stored blobs are not versioned; fall back to defaults on anything unreadable
        logger.warning("state: discarding invalid preferences for user %s", user_id)
        return Preferences(rest_timer_duration=get_settings().default_rest_timer_seconds)


def update_preferences(store: ClientStateStore, user_id: str, payload: PreferencesUpdate) -> Preferences:
    for key, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        store.set(user_id, key, value)
    return load_preferences(store, user_id)


def mark_tooltip_seen(store: ClientStateStore, user_id: str, tooltip: str) -> bool:
    """Record a one-time tooltip. Returns True the first time only."""
    seen = list(store.get(user_id, "seen_tooltips", []) or [])
    if tooltip in seen:
        return False
    seen.append(tooltip)
    store.set(user_id, "seen_tooltips", seen)
    return True


def get_client_state(request: Request) -> ClientStateStore:
    return request.app.state.client_state


# --------- Routes ---------

@router.get("", response_model=Preferences)
async def get_preferences_route(
    store: ClientStateStore = Depends(get_client_state),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    identity = require_identity(identity)
    return load_preferences(store, identity.id)


@router.patch("", response_model=Preferences)
async def update_preferences_route(
    payload: PreferencesUpdate,
    request: Request,
    store: ClientStateStore = Depends(get_client_state),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    identity = require_identity(identity)
    prefs = update_preferences(store, identity.id, payload)
    if payload.rest_timer_duration is not None:
        await request.app.state.rest_timers.set_duration(identity.id, prefs.rest_timer_duration)
    return prefs


@router.get("/body-parts")
async def body_parts_route() -> List[Dict[str, Any]]:
    return BODY_PARTS


@router.delete("/tooltips")
async def reset_tooltips_route(
    store: ClientStateStore = Depends(get_client_state),
    identity: Optional[AuthUser] = Depends(current_identity),
) -> Dict[str, bool]:
    identity = require_identity(identity)
    store.set(identity.id, "seen_tooltips", None)
    return {"ok": True}
