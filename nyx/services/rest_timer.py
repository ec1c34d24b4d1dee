"""
Restart-safe rest timer.

A ``RestTimer`` is a plain countdown driven by ``tick()`` once per second.
While running it remembers the wall-clock time it expects to finish at, so a
timer restored after a restart picks up the time that is really left, and one
that ran out while nobody was watching completes immediately.

``RestTimerService`` keeps one timer per user, persists their state in the
client state store and drives running timers with an APScheduler interval job.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import APIRouter, Depends, Request

from ..schemas import AuthUser, CamelModel
from .auth import current_identity, require_identity
from .notifications import NotificationDispatcher, rest_over_notification
from .preferences import ClientStateStore, load_preferences, mark_tooltip_seen

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rest-timer", tags=["rest-timer"])

STORAGE_KEY = "rest_timer"
TOOLTIP_ID = "rest-timer"

Clock = Callable[[], int]


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class TimerState:
    time_left: int
    is_active: bool
    expected_end_time: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeLeft": self.time_left,
            "isActive": self.is_active,
            "expectedEndTime": self.expected_end_time,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["TimerState"]:
        if not isinstance(data, dict):
            return None
        try:
            end = data.get("expectedEndTime")
            return cls(
                time_left=int(data.get("timeLeft", 0)),
                is_active=bool(data.get("isActive", False)),
                expected_end_time=int(end) if end is not None else None,
            )
        except (TypeError, ValueError):
            logger.warning("rest-timer: ignoring unreadable saved state")
            return None


class RestTimer:
    def __init__(self, duration: int, clock: Clock = wall_clock_ms) -> None:
        self.duration = duration
        self.time_left = duration
        self.is_active = False
        self.expected_end_time: Optional[int] = None
        self._clock = clock

    @property
    def remaining(self) -> int:
        return self.time_left

    def state(self) -> TimerState:
        return TimerState(self.time_left, self.is_active, self.expected_end_time)

    def restore(self, saved: Optional[TimerState]) -> bool:
        """Load saved state. Returns True if it expired while nobody was ticking it."""
        if saved is None:
            self.time_left = self.duration
            self.is_active = False
            self.expected_end_time = None
            return False
        if saved.is_active and saved.expected_end_time:
            remaining = max(0, math.floor((saved.expected_end_time - self._clock()) / 1000 + 0.5))
            if remaining > 0:
                self.time_left = remaining
                self.is_active = True
                self.expected_end_time = saved.expected_end_time
                return False
            self._finish()
            return True
        self.time_left = saved.time_left
        self.is_active = False
        self.expected_end_time = None
        return False

    def start(self) -> None:
        if self.time_left == 0:
            self.time_left = self.duration
        self.is_active = True
        self.expected_end_time = self._clock() + self.time_left * 1000

    def stop(self) -> None:
        self.is_active = False
        self.expected_end_time = None

    def toggle(self) -> None:
        if self.is_active:
            self.stop()
        else:
            self.start()

    def reset(self) -> None:
        self.stop()
        self.time_left = self.duration

    def set_duration(self, seconds: int) -> None:
        self.duration = seconds
        # a finished timer keeps showing zero until it is toggled again
        if not self.is_active and self.time_left != 0:
            self.time_left = seconds

    def tick(self) -> bool:
        """Advance one second. Returns True on the tick that completes the countdown."""
        if not self.is_active:
            return False
        if self.time_left <= 1:
            self._finish()
            return True
        self.time_left -= 1
        return False

    def _finish(self) -> None:
        self.time_left = 0
        self.stop()


class RestTimerOut(CamelModel):
    time_left: int
    is_active: bool
    expected_end_time: Optional[int] = None
    duration: int
    show_tooltip: bool = False


def timer_view(timer: RestTimer, show_tooltip: bool = False) -> RestTimerOut:
    return RestTimerOut(
        time_left=timer.time_left,
        is_active=timer.is_active,
        expected_end_time=timer.expected_end_time,
        duration=timer.duration,
        show_tooltip=show_tooltip,
    )


class RestTimerService:
    def __init__(
        self,
        store: ClientStateStore,
        dispatcher: NotificationDispatcher,
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Clock = wall_clock_ms,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.clock = clock
        self._timers: Dict[str, RestTimer] = {}

    @staticmethod
    def job_id(user_id: str) -> str:
        return f"rest-timer:{user_id}"

    async def timer_for(self, user_id: str) -> RestTimer:
        timer = self._timers.get(user_id)
        if timer is not None:
            return timer
        duration = load_preferences(self.store, user_id).rest_timer_duration
        timer = RestTimer(duration, clock=self.clock)
        self._timers[user_id] = timer
        saved = TimerState.from_dict(self.store.get(user_id, STORAGE_KEY))
        if timer.restore(saved):
            logger.info("rest-timer: user %s timer ran out while away", user_id)
            await self._complete(user_id, timer)
        elif timer.is_active:
            self._arm(user_id)
        return timer

    async def toggle(self, user_id: str) -> RestTimerOut:
        timer = await self.timer_for(user_id)
        show_tooltip = mark_tooltip_seen(self.store, user_id, TOOLTIP_ID)
        timer.toggle()
        self._persist(user_id, timer)
        if timer.is_active:
            self._arm(user_id)
        else:
            self._disarm(user_id)
        return timer_view(timer, show_tooltip=show_tooltip)

    async def reset(self, user_id: str) -> RestTimerOut:
        timer = await self.timer_for(user_id)
        timer.reset()
        self._persist(user_id, timer)
        self._disarm(user_id)
        return timer_view(timer)

    async def set_duration(self, user_id: str, seconds: int) -> RestTimerOut:
        timer = await self.timer_for(user_id)
        timer.set_duration(seconds)
        self._persist(user_id, timer)
        return timer_view(timer)

    async def tick(self, user_id: str) -> None:
        timer = self._timers.get(user_id)
        if timer is None or not timer.is_active:
            self._disarm(user_id)
            return
        if timer.tick():
            await self._complete(user_id, timer)

    async def _complete(self, user_id: str, timer: RestTimer) -> None:
        self._persist(user_id, timer)
        self._disarm(user_id)
        logger.info("rest-timer: completed for user %s", user_id)
        await self.dispatcher.dispatch(user_id, rest_over_notification())

    def _persist(self, user_id: str, timer: RestTimer) -> None:
        self.store.set(user_id, STORAGE_KEY, timer.state().to_dict())

    def _arm(self, user_id: str) -> None:
        if self.scheduler is None:
            return
        self.scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=1),
            args=[user_id],
            id=self.job_id(user_id),
            replace_existing=True,
        )

    def _disarm(self, user_id: str) -> None:
        if self.scheduler is None:
            return
        if self.scheduler.get_job(self.job_id(user_id)) is not None:
            self.scheduler.remove_job(self.job_id(user_id))


def get_rest_timers(request: Request) -> RestTimerService:
    return request.app.state.rest_timers


# --------- Routes ---------

@router.get("", response_model=RestTimerOut)
async def get_timer_route(
    timers: RestTimerService = Depends(get_rest_timers),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    identity = require_identity(identity)
    return timer_view(await timers.timer_for(identity.id))


@router.post("/toggle", response_model=RestTimerOut)
async def toggle_timer_route(
    timers: RestTimerService = Depends(get_rest_timers),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    identity = require_identity(identity)
    return await timers.toggle(identity.id)


@router.post("/reset", response_model=RestTimerOut)
async def reset_timer_route(
    timers: RestTimerService = Depends(get_rest_timers),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    identity = require_identity(identity)
    return await timers.reset(identity.id)
