from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import jwt
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..db import session_dependency
from ..errors import NotFound, UploadFailed, ValidationFailed
from ..models import StoredFile
from ..schemas import AuthUser
from ..settings import get_settings
from .auth import current_identity, require_identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/storage", tags=["storage"])

UPLOAD_PURPOSE = "upload"


def storage_dir() -> Path:
    path = Path(get_settings().storage_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def generate_upload_url(identity: Optional[AuthUser]) -> str:
    """Signed, short-lived URL the client can POST a file body to."""
    identity = require_identity(identity)
    settings = get_settings()
    claims = {
        "sub": identity.id,
        "purpose": UPLOAD_PURPOSE,
        "jti": uuid.uuid4().hex,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=settings.upload_url_ttl_seconds),
    }
    token = jwt.encode(claims, settings.secret_key, algorithm="HS256")
    return f"{settings.public_base_url.rstrip('/')}/api/storage/upload?token={token}"


def _verify_upload_token(token: str) -> Tuple[str, str]:
    """Check a signed upload URL token. Returns the owner id and the URL's jti."""
    try:
        claims = jwt.decode(token, get_settings().secret_key, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise UploadFailed("Upload URL expired")
    except jwt.InvalidTokenError:
        raise UploadFailed("Invalid upload URL")
    if claims.get("purpose") != UPLOAD_PURPOSE or not claims.get("sub") or not claims.get("jti"):
        raise UploadFailed("Invalid upload URL")
    return claims["sub"], claims["jti"]


async def read_upload_body(request: Request, limit: int) -> bytes:
    """Read the request body, giving up as soon as it passes ``limit`` bytes."""
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise ValidationFailed("Upload too large")
    chunks: List[bytes] = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > limit:
            raise ValidationFailed("Upload too large")
        chunks.append(chunk)
    return b"".join(chunks)


async def _jti_used(session: AsyncSession, jti: str) -> bool:
    result = await session.exec(select(StoredFile.id).where(StoredFile.upload_jti == jti))
    return result.first() is not None


async def store_upload(session: AsyncSession, token: str, body: bytes, content_type: Optional[str]) -> str:
    user_id, jti = _verify_upload_token(token)
    if not body:
        raise ValidationFailed("Empty upload")
    if len(body) > get_settings().max_upload_bytes:
        raise ValidationFailed("Upload too large")
    if await _jti_used(session, jti):
        raise UploadFailed("Upload URL already used")

    record = StoredFile(
        user_id=user_id,
        content_type=content_type or "application/octet-stream",
        size=len(body),
        path="",
        upload_jti=jti,
    )
    target = storage_dir() / record.id
    target.write_bytes(body)
    record.path = str(target)
    session.add(record)
    try:
        await session.commit()
    except IntegrityError:
        # another upload with the same URL committed first
        await session.rollback()
        target.unlink(missing_ok=True)
        raise UploadFailed("Upload URL already used")
    logger.info("storage: stored %s bytes as %s", record.size, record.id)
    return record.id


def get_url(storage_id: Optional[str]) -> Optional[str]:
    if not storage_id:
        return None
    return f"{get_settings().public_base_url.rstrip('/')}/api/storage/{storage_id}"


# --------- Routes ---------

@router.post("/upload-url")
async def upload_url_route(identity: Optional[AuthUser] = Depends(current_identity)) -> Dict[str, str]:
    return {"uploadUrl": generate_upload_url(identity)}


@router.post("/upload")
async def upload_route(
    request: Request,
    token: str = Query(...),
    session: AsyncSession = Depends(session_dependency),
) -> Dict[str, str]:
    _verify_upload_token(token)
    body = await read_upload_body(request, get_settings().max_upload_bytes)
    storage_id = await store_upload(session, token, body, request.headers.get("content-type"))
    return {"storageId": storage_id}


@router.get("/{storage_id}")
async def download_route(storage_id: str, session: AsyncSession = Depends(session_dependency)) -> FileResponse:
    record = await session.get(StoredFile, storage_id)
    if record is None or not Path(record.path).exists():
        raise NotFound("File not found")
    return FileResponse(record.path, media_type=record.content_type)
