import asyncio
import logging
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from app.config import settings
from app.database import get_db
from app.utils.security import verify_token
from app.models.user import User
from app.services.auth_service import identity_for
from app.services.identity import SessionIdentity
from app.services.notification_center import NotificationCenter, NotificationHub

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


def user_from_token(db: Session, token: str) -> User:
    """Resolve a bearer token to an active user or raise 401/403."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    user_id = verify_token(token)
    if user_id is None:
        raise credentials_exception

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )
    return user


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user"""
    return user_from_token(db, token)


async def get_session_identity(current_user: User = Depends(get_current_user)) -> SessionIdentity:
    return identity_for(current_user)


def get_hub(request: Request) -> NotificationHub:
    return request.app.state.notification_hub


async def get_notification_center(
    identity: SessionIdentity = Depends(get_session_identity),
    hub: NotificationHub = Depends(get_hub),
) -> NotificationCenter:
    """Open (or reuse) the caller's notification center and wait for its first snapshot."""
    center = hub.center_for(identity)
    try:
        await center.wait_ready(timeout=settings.FEED_READY_TIMEOUT)
    except asyncio.TimeoutError:
        # The feed reports loading=true until its sources deliver
        logger.warning(f"Notification feed for {identity.user_id} not ready after {settings.FEED_READY_TIMEOUT}s")
    return center
