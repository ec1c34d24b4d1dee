from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, TypeVar

from ..errors import NotAuthorized, NotFound
from ..schemas import AuthUser

T = TypeVar("T")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def ensure_owner(doc: Optional[T], identity: AuthUser, label: str) -> T:
    """Reject before any write unless ``doc`` exists and belongs to ``identity``."""
    if doc is None:
        raise NotFound(f"{label} not found")
    if getattr(doc, "user_id") != identity.id:
        raise NotAuthorized()
    return doc
