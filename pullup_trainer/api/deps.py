"""FastAPI dependencies: current user id from JWT, per-request services, If-Match parsing."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pullup_trainer.core.auth import decode_token
from pullup_trainer.core.errors import PreconditionRequiredError, ValidationFailedError
from pullup_trainer.core.feature_flags import FeatureFlags, get_feature_flags
from pullup_trainer.db.session import get_db
from pullup_trainer.services.generation import GenerationService
from pullup_trainer.services.generators import SessionGenerator, get_generator
from pullup_trainer.services.lifecycle import SessionLifecycle


async def get_current_user_id(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = auth_header[7:].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return str(user_id)


def get_session_lifecycle(
    session: Annotated[AsyncSession, Depends(get_db)],
) -> SessionLifecycle:
    return SessionLifecycle(session)


def get_generation_service(
    session: Annotated[AsyncSession, Depends(get_db)],
    generator: Annotated[SessionGenerator, Depends(get_generator)],
    flags: Annotated[FeatureFlags, Depends(get_feature_flags)],
) -> GenerationService:
    return GenerationService(session, generator=generator, flags=flags)


def require_if_match(if_match: Annotated[str | None, Header()] = None) -> int:
    """Version the client last saw, from If-Match: "3" (weak W/"3" and bare 3 accepted)."""
    if if_match is None or not if_match.strip():
        raise PreconditionRequiredError("If-Match header with the session version is required")
    token = if_match.strip()
    if token.startswith("W/"):
        token = token[2:]
    token = token.strip('"')
    try:
        return int(token)
    except ValueError:
        raise ValidationFailedError(
            "If-Match must carry the session version",
            details={"if_match": [f"Not a session version: {if_match}"]},
        )
