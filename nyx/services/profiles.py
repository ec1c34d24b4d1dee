from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..db import session_dependency
from ..errors import Conflict
from ..models import Profile
from ..schemas import (
    AuthUser,
    EffectiveProfile,
    ProfileCreate,
    ProfileOut,
    ProfileUpdate,
    defined_fields,
    profile_view,
)
from .auth import current_identity, require_identity
from .common import ensure_owner, now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profiles", tags=["profiles"])


async def _profile_for(session: AsyncSession, user_id: str) -> Optional[Profile]:
    result = await session.exec(select(Profile).where(Profile.user_id == user_id))
    return result.first()


async def list_profiles(session: AsyncSession, identity: Optional[AuthUser]) -> List[ProfileOut]:
    if identity is None:
        return []
    result = await session.exec(select(Profile).where(Profile.user_id == identity.id))
    return [profile_view(p) for p in result.all()]


async def get_profile(session: AsyncSession, profile_id: str) -> Optional[ProfileOut]:
    doc = await session.get(Profile, profile_id)
    return profile_view(doc) if doc else None


async def create_profile(session: AsyncSession, identity: Optional[AuthUser], payload: ProfileCreate) -> ProfileOut:
    identity = require_identity(identity)
    if await _profile_for(session, identity.id) is not None:
        raise Conflict("Profile already exists")
    fields = payload.model_dump()
    fields["created_at"] = fields.get("created_at") or now_iso()
    doc = Profile(user_id=identity.id, **fields)
    session.add(doc)
    await session.commit()
    await session.refresh(doc)
    return profile_view(doc)


async def update_profile(
    session: AsyncSession, identity: Optional[AuthUser], profile_id: str, payload: ProfileUpdate
) -> ProfileOut:
    identity = require_identity(identity)
    doc = ensure_owner(await session.get(Profile, profile_id), identity, "Profile")
    for key, value in defined_fields(payload).items():
        setattr(doc, key, value)
    session.add(doc)
    await session.commit()
    await session.refresh(doc)
    return profile_view(doc)


async def delete_profile(session: AsyncSession, identity: Optional[AuthUser], profile_id: str) -> str:
    identity = require_identity(identity)
    doc = ensure_owner(await session.get(Profile, profile_id), identity, "Profile")
    await session.delete(doc)
    await session.commit()
    return profile_id


async def get_current_profile(session: AsyncSession, identity: Optional[AuthUser]) -> Optional[ProfileOut]:
    if identity is None:
        return None
    doc = await _profile_for(session, identity.id)
    return profile_view(doc) if doc else None


async def upsert_current_profile(
    session: AsyncSession, identity: Optional[AuthUser], payload: ProfileUpdate
) -> ProfileOut:
    """
    Save the caller's profile.

    The first save creates it, seeded from the auth identity; later saves
    patch only the supplied fields. The provider email is kept in sync
    on every save.
    """
    identity = require_identity(identity)
    updates = defined_fields(payload)
    doc = await _profile_for(session, identity.id)
    if doc is None:
        seed = {
            "name": identity.name or identity.email,
            "email": identity.email,
            "profile_picture": identity.image,
            "notifications_enabled": True,
            "created_at": now_iso(),
        }
        seed.update(updates)
        seed["email"] = identity.email
        doc = Profile(user_id=identity.id, **seed)
        logger.info("profiles: created profile for user %s", identity.id)
    else:
        for key, value in updates.items():
            setattr(doc, key, value)
        doc.email = identity.email
    session.add(doc)
    await session.commit()
    await session.refresh(doc)
    return profile_view(doc)


def effective_profile(profile: Optional[ProfileOut], identity: Optional[AuthUser]) -> EffectiveProfile:
    def _clean(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    auth_name = _clean(identity.name) if identity else None
    auth_email = _clean(identity.email) if identity else None
    auth_image = _clean(identity.image) if identity else None

    if profile is not None:
        return EffectiveProfile(
            name=profile.name,
            email=profile.email,
            profile_picture=profile.profile_picture or auth_image,
            source="profile",
        )
    return EffectiveProfile(
        name=auth_name or auth_email or "User",
        email=auth_email or "",
        profile_picture=auth_image,
        source="auth",
    )


# --------- Routes ---------

@router.get("", response_model=List[ProfileOut])
async def list_profiles_route(
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await list_profiles(session, identity)


@router.get("/current", response_model=Optional[ProfileOut])
async def current_profile_route(
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await get_current_profile(session, identity)


@router.put("/current", response_model=ProfileOut)
async def upsert_current_profile_route(
    payload: ProfileUpdate,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await upsert_current_profile(session, identity, payload)


@router.get("/effective", response_model=EffectiveProfile)
async def effective_profile_route(
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return effective_profile(await get_current_profile(session, identity), identity)


@router.get("/{profile_id}", response_model=Optional[ProfileOut])
async def get_profile_route(profile_id: str, session: AsyncSession = Depends(session_dependency)):
    return await get_profile(session, profile_id)


@router.post("", response_model=ProfileOut)
async def create_profile_route(
    payload: ProfileCreate,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await create_profile(session, identity, payload)


@router.patch("/{profile_id}", response_model=ProfileOut)
async def update_profile_route(
    profile_id: str,
    payload: ProfileUpdate,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return await update_profile(session, identity, profile_id, payload)


@router.delete("/{profile_id}")
async def delete_profile_route(
    profile_id: str,
    session: AsyncSession = Depends(session_dependency),
    identity: Optional[AuthUser] = Depends(current_identity),
):
    return {"id": await delete_profile(session, identity, profile_id)}
