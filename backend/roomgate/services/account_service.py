"""Account resolver - maps external identities to internal users"""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from roomgate.core.errors import AccountResolutionError, ValidationError
from roomgate.models.user import User

logger = logging.getLogger(__name__)


def _normalize_external_id(external_id: Optional[str]) -> str:
    if not isinstance(external_id, str) or not external_id.strip():
        raise ValidationError("External user id is required")
    return external_id.strip()


def find_user(external_id: str, db: Session) -> Optional[User]:
    """Look up a user by external identity. Returns None on first sight."""
    external_id = _normalize_external_id(external_id)
    try:
        return db.query(User).filter(User.external_id == external_id).first()
    except SQLAlchemyError as e:
        logger.error(f"User lookup failed for external id {external_id}: {e}", exc_info=True)
        raise AccountResolutionError("Failed to look up user") from e


def get_or_create_user(external_id: str, email: Optional[str], db: Session) -> User:
    """Return the internal user for an external identity, creating it if needed.

    Lookup-then-insert is not atomic. The unique constraint on
    ``users.external_id`` catches a concurrent first-sight insert; the loser
    rolls back and re-reads the winner's row.

    Raises:
        ValidationError: external id is empty
        AccountResolutionError: lookup or creation failed
    """
    external_id = _normalize_external_id(external_id)
    email = email.strip() if isinstance(email, str) and email.strip() else None

    user = find_user(external_id, db)
    if user:
        if email and not user.email:
            user.email = email
            try:
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                # Email backfill is best-effort; the user still resolves
                logger.warning(f"Failed to backfill email for user {user.id}: {e}")
            else:
                db.refresh(user)
        return user

    user = User(external_id=external_id, email=email)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"User for external id {external_id} created concurrently, re-reading")
        user = find_user(external_id, db)
        if user is None:
            raise AccountResolutionError("Failed to create user")
        return user
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"User creation failed for external id {external_id}: {e}", exc_info=True)
        raise AccountResolutionError("Failed to create user") from e

    db.refresh(user)
    logger.info(f"Created user {user.id} for external id {external_id}")
    return user
