"""
Authentication dependencies.

The identity provider is external: it issues a bearer JWT whose `sub` is the
user's stable id. We verify the token and keep a local `users` row in sync so
that every owned record can reference it.
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Optional, Dict
import logging

from core.database import get_db
from core.security import decode_access_token
from models import User

logger = logging.getLogger(__name__)

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)


def sync_user(db: Session, user_id: str, claims: Dict) -> User:
    """Upsert the local mirror of an identity-provider user."""
    user = db.query(User).filter(User.id == user_id).first()
    display_name = claims.get("name")
    email = claims.get("email")

    if user is None:
        user = User(id=user_id, display_name=display_name, email=email)
        try:
            with db.begin_nested():
                db.add(user)
            logger.info(f"Synced new user {user_id}")
        except IntegrityError:
            # Concurrent first request for the same subject
            user = db.query(User).filter(User.id == user_id).one()
        return user

    if (display_name and display_name != user.display_name) or (email and email != user.email):
        user.display_name = display_name or user.display_name
        user.email = email or user.email
        db.flush()
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Get the current authenticated user from JWT token.

    Raises HTTPException if token is missing or invalid.
    """
    # Check if credentials are missing (return 401, not 403)
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(credentials.credentials)

    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    if not user_id or not isinstance(user_id, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    user = sync_user(db, user_id, payload)
    # The streaming turn reads the user row from its own session.
    db.commit()
    return user
