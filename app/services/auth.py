"""Session-cookie authentication for the JSON API.

Login itself happens elsewhere (OAuth); this module only resolves the
``session_id`` cookie to an active user.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session
from starlette.requests import Request

from app.models.user import User, UserSession
from db import get_db

SESSION_COOKIE = "session_id"


def _utcnow() -> datetime:
    # Use aware UTC to avoid deprecation, but store naive UTC to match the DB schema
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_session(db: Session, user_id: int, expires_in_minutes: int = 60 * 24) -> UserSession:
    now = _utcnow()
    session = UserSession(
        UserID=user_id,
        CreatedAt=now,
        ExpiresAt=now + timedelta(minutes=expires_in_minutes),
        IsActive=True,
        LastSeen=now,
    )
    db.add(session)
    db.commit()
    return session


def get_session(db: Session, session_id: str) -> Optional[UserSession]:
    session = (
        db.query(UserSession)
        .filter(UserSession.SessionID == str(session_id), UserSession.IsActive)
        .first()
    )
    if session is None:
        return None
    expires_at = getattr(session, "ExpiresAt", None)
    if isinstance(expires_at, datetime) and expires_at <= _utcnow():
        return None
    session.LastSeen = _utcnow()
    db.commit()
    return session


def get_user_id_from_request(request: Request, db: Session) -> Optional[int]:
    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        return None
    session_obj = get_session(db=db, session_id=session_id)
    if not session_obj:
        return None
    uid: Any = getattr(session_obj, "UserID", None)
    try:
        return int(uid) if uid is not None else None
    except (TypeError, ValueError):
        return None


def get_current_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    uid = get_user_id_from_request(request, db)
    if uid is None:
        return None
    return db.query(User).filter(User.UserID == uid, User.IsActive).first()


def require_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Dependency that requires an authenticated user."""
    user = get_current_user(request, db)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user
