import logging
import secrets
from typing import Annotated, Optional

import firebase_admin
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from sqlalchemy.ext.asyncio import AsyncSession

from reelforge.config import get_settings
from reelforge.models.database import get_db
from reelforge.providers.generation import GenerationProvider, get_provider
from reelforge.services.generation_store import GenerationStore
from reelforge.services.storage_service import StorageService, get_storage_service

settings = get_settings()
logger = logging.getLogger(__name__)

_firebase_app = None


def get_firebase_app() -> firebase_admin.App:
    global _firebase_app
    if _firebase_app is None:
        try:
            _firebase_app = firebase_admin.get_app()
        except ValueError:
            # App not initialized yet
            if settings.firebase_project_id:
                cred = credentials.ApplicationDefault()
                _firebase_app = firebase_admin.initialize_app(
                    cred, {"projectId": settings.firebase_project_id}
                )
            else:
                _firebase_app = firebase_admin.initialize_app()
    return _firebase_app


# auto_error=False so the dev token bypass can run
security = HTTPBearer(auto_error=False)

DEV_TOKEN = "dev-token"


async def get_current_owner(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> str:
    """Resolve the caller's owner id from a Firebase ID token.

    In dev mode a missing token or ``dev-token`` maps to the dev user.
    """
    token = credentials.credentials if credentials else None

    if settings.dev_mode and (token is None or token == DEV_TOKEN):
        return settings.dev_user_id

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        get_firebase_app()
        decoded_token = firebase_auth.verify_id_token(token)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return decoded_token["uid"]


async def require_internal_token(
    x_internal_token: Annotated[Optional[str], Header(alias="X-Internal-Token")] = None,
) -> None:
    """Guard for scheduler-triggered endpoints."""
    if not x_internal_token or not secrets.compare_digest(
        x_internal_token, settings.internal_api_token
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal token",
        )


async def get_store(db: Annotated[AsyncSession, Depends(get_db)]) -> GenerationStore:
    return GenerationStore(db)


CurrentOwner = Annotated[str, Depends(get_current_owner)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Store = Annotated[GenerationStore, Depends(get_store)]
Provider = Annotated[GenerationProvider, Depends(get_provider)]
Storage = Annotated[StorageService, Depends(get_storage_service)]
InternalAuth = Depends(require_internal_token)
