"""Purchase ledger - who may enter which room, and with which password

All mutations are single-row atomic statements (upsert on ``(user_id, room_id)``,
conditional UPDATEs). No application-level locking is used.
"""
import hmac
import logging
import secrets
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roomgate.core.config import settings, DEFAULT_CURRENCY
from roomgate.core.errors import (
    Forbidden, InternalError, InvalidCredentials, InvalidStatusTransition,
    NotFound, ValidationError
)
from roomgate.core.metrics import access_validations_counter, revocations_counter
from roomgate.models.base import generate_id, utcnow
from roomgate.models.processed_payment import ProcessedPayment
from roomgate.models.purchase import (
    Purchase, PURCHASE_STATUS_COMPLETED, PURCHASE_STATUS_FAILED,
    PURCHASE_STATUS_PROCESSING, TERMINAL_STATUSES
)
from roomgate.models.room import Room
from roomgate.models.user import User
from roomgate.services.account_service import find_user, get_or_create_user
from roomgate.services.room_service import assert_owns_room, get_room

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("access")

PASSWORD_BYTES = 4       # 8 hex characters
ACCESS_TOKEN_BYTES = 16  # 32 hex characters


class FeeSplit(NamedTuple):
    platform_fee: int
    creator_share: int


def calculate_fees(amount: int, rate: Optional[Decimal] = None) -> FeeSplit:
    """Split a payment between the platform and the creator.

    The platform fee is rounded half-up to a whole minor unit; the creator
    share absorbs the remainder so the two always sum to ``amount``.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise ValidationError("amount must be a non-negative integer in minor currency units")
    rate = settings.PLATFORM_FEE_RATE if rate is None else Decimal(str(rate))
    platform_fee = int((Decimal(amount) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return FeeSplit(platform_fee=platform_fee, creator_share=amount - platform_fee)


def generate_room_password() -> str:
    return secrets.token_hex(PASSWORD_BYTES).upper()


def generate_access_token() -> str:
    return secrets.token_hex(ACCESS_TOKEN_BYTES)


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise InternalError(f"Upsert not supported for database dialect '{dialect}'")


def get_purchase(purchase_id: str, db: Session) -> Purchase:
    purchase = db.query(Purchase).filter(Purchase.id == purchase_id).first() if purchase_id else None
    if not purchase:
        raise NotFound("Purchase not found")
    return purchase


def find_purchase_by_payment(room_id: str, payment_id: str, db: Session) -> Optional[Purchase]:
    return (
        db.query(Purchase)
        .filter(Purchase.room_id == room_id, Purchase.payment_id == payment_id)
        .first()
    )


def find_processed_payment(payment_id: str, db: Session) -> Optional[ProcessedPayment]:
    return db.query(ProcessedPayment).filter(ProcessedPayment.payment_id == payment_id).first()


def record_payment(
    external_user_id: str,
    room_id: str,
    amount: int,
    currency: Optional[str],
    db: Session,
    payment_id: Optional[str] = None,
    email: Optional[str] = None
) -> Purchase:
    """Record a successful payment as a ``processing`` entitlement.

    Idempotent by ``payment_id``: if this payment already reached a terminal
    status, the purchase it settled is returned untouched, even when a newer
    payment has since overwritten that row. Otherwise the
    buyer is resolved (or created) and the entitlement is upserted on
    ``(user_id, room_id)`` with a fresh password and access token. An upsert
    never clears ``revoked``.

    Raises:
        ValidationError: missing ids or non-positive amount
        NotFound: room does not exist
        AccountResolutionError: buyer could not be resolved
        InternalError: database write failed
    """
    if not isinstance(room_id, str) or not room_id.strip():
        raise ValidationError("roomId is required")
    room_id = room_id.strip()
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("payment amount must be a positive integer")
    currency = (currency or DEFAULT_CURRENCY).strip().lower() or DEFAULT_CURRENCY
    payment_id = payment_id.strip() if isinstance(payment_id, str) and payment_id.strip() else None

    if payment_id:
        existing = find_purchase_by_payment(room_id, payment_id, db)
        if existing and existing.status in TERMINAL_STATUSES:
            logger.info(f"Payment {payment_id} for room {room_id} already {existing.status}, skipping")
            return existing
        processed = find_processed_payment(payment_id, db)
        if processed:
            # Row has since been overwritten by a newer payment; leave it alone
            logger.info(
                f"Payment {payment_id} already {processed.status} as purchase {processed.purchase_id}, skipping"
            )
            return get_purchase(processed.purchase_id, db)

    get_room(room_id, db)
    user = get_or_create_user(external_user_id, email, db)
    fees = calculate_fees(amount)
    now = utcnow()

    values = {
        "id": generate_id(),
        "user_id": user.id,
        "room_id": room_id,
        "password": generate_room_password(),
        "access_token": generate_access_token(),
        "revoked": False,
        "status": PURCHASE_STATUS_PROCESSING,
        "payment_amount": amount,
        "platform_fee": fees.platform_fee,
        "creator_share": fees.creator_share,
        "currency": currency,
        "payment_id": payment_id,
        "created_at": now,
        "updated_at": now,
    }
    insert = _insert_for(db)
    stmt = insert(Purchase).values(**values)
    # On repeat purchase overwrite credentials and payment fields; id, created_at and revoked are kept
    overwrite = {
        key: stmt.excluded[key]
        for key in (
            "password", "access_token", "status", "payment_amount", "platform_fee",
            "creator_share", "currency", "payment_id", "updated_at"
        )
    }
    stmt = stmt.on_conflict_do_update(index_elements=["user_id", "room_id"], set_=overwrite)

    try:
        db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record payment {payment_id} for room {room_id}: {e}", exc_info=True)
        raise InternalError("Failed to create purchase record") from e

    purchase = (
        db.query(Purchase)
        .filter(Purchase.user_id == user.id, Purchase.room_id == room_id)
        .populate_existing()
        .one()
    )
    logger.info(
        f"Recorded purchase {purchase.id} (payment {payment_id}) for user {user.id} in room {room_id}: "
        f"amount={amount} {currency}, platform_fee={fees.platform_fee}, creator_share={fees.creator_share}"
    )
    return purchase


def _transition(purchase_id: str, target: str, db: Session, payment_id: Optional[str] = None) -> Purchase:
    """Move a purchase from processing to a terminal status.

    Re-applying the current terminal status is a no-op; moving between
    terminal statuses raises ``InvalidStatusTransition``.
    """
    purchase = get_purchase(purchase_id, db)
    if payment_id and purchase.payment_id != payment_id:
        raise InvalidStatusTransition(
            f"Purchase {purchase_id} now belongs to payment {purchase.payment_id}, not {payment_id}"
        )
    if purchase.status == target:
        return purchase
    if purchase.status in TERMINAL_STATUSES:
        raise InvalidStatusTransition(f"Purchase is already {purchase.status}")

    query = db.query(Purchase).filter(
        Purchase.id == purchase_id,
        Purchase.status == PURCHASE_STATUS_PROCESSING
    )
    if payment_id:
        query = query.filter(Purchase.payment_id == payment_id)
    try:
        updated = query.update({"status": target, "updated_at": utcnow()}, synchronize_session=False)
        settled_payment_id = payment_id or purchase.payment_id
        if updated and settled_payment_id:
            db.add(ProcessedPayment(
                payment_id=settled_payment_id,
                room_id=purchase.room_id,
                purchase_id=purchase.id,
                status=target,
            ))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to mark purchase {purchase_id} {target}: {e}", exc_info=True)
        raise InternalError("Failed to update purchase status") from e

    db.refresh(purchase)
    if updated == 0 and purchase.status != target:
        # Lost a race with another transition
        raise InvalidStatusTransition(f"Purchase is already {purchase.status}")
    logger.info(f"Purchase {purchase_id} marked {target}")
    return purchase


def mark_completed(purchase_id: str, db: Session, payment_id: Optional[str] = None) -> Purchase:
    return _transition(purchase_id, PURCHASE_STATUS_COMPLETED, db, payment_id=payment_id)


def mark_failed(purchase_id: str, db: Session, payment_id: Optional[str] = None) -> Purchase:
    return _transition(purchase_id, PURCHASE_STATUS_FAILED, db, payment_id=payment_id)


def revoke(purchase_id: str, requesting_external_id: str, db: Session) -> Purchase:
    """Creator-initiated, one-way invalidation of a purchase.

    Raises:
        ValidationError: blank purchase id
        NotFound: purchase or its room does not exist (or vanished mid-update)
        Forbidden: caller does not own the purchase's room
    """
    if not isinstance(purchase_id, str) or not purchase_id.strip():
        raise ValidationError("purchaseId is required")
    purchase_id = purchase_id.strip()

    caller = find_user(requesting_external_id, db)
    purchase = get_purchase(purchase_id, db)
    if caller is None:
        raise Forbidden("You do not own this room")
    assert_owns_room(caller.id, purchase.room_id, db)

    if purchase.revoked:
        return purchase

    try:
        updated = (
            db.query(Purchase)
            .filter(Purchase.id == purchase_id)
            .update({"revoked": True, "updated_at": utcnow()}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to revoke purchase {purchase_id}: {e}", exc_info=True)
        raise InternalError("Failed to revoke") from e

    if updated == 0:
        raise NotFound("Purchase not found")

    db.refresh(purchase)
    revocations_counter.inc()
    logger.info(f"Creator {caller.id} revoked purchase {purchase_id} in room {purchase.room_id}")
    return purchase


def _usable(query):
    """Restrict a purchase query to rows that grant access"""
    query = query.filter(
        Purchase.revoked.is_(False),
        Purchase.status != PURCHASE_STATUS_FAILED
    )
    if settings.REQUIRE_COMPLETED_PAYMENT:
        query = query.filter(Purchase.status == PURCHASE_STATUS_COMPLETED)
    return query


def validate(room_id: str, password: str, db: Session) -> str:
    """Check a room password. Returns the matching purchase id.

    Raises:
        ValidationError: blank room id or password
        InvalidCredentials: no usable purchase with that password
    """
    room_id = room_id.strip() if isinstance(room_id, str) else ""
    password = password.strip() if isinstance(password, str) else ""
    if not room_id or not password:
        raise ValidationError("roomId and password are required")

    candidates = _usable(
        db.query(Purchase.id, Purchase.password).filter(Purchase.room_id == room_id)
    ).all()

    presented = password.encode()
    for purchase_id, stored in candidates:
        if hmac.compare_digest(stored.encode(), presented):
            access_validations_counter.labels(result="success").inc()
            access_logger.info(f"Password accepted for room {room_id} (purchase {purchase_id})")
            return purchase_id

    access_validations_counter.labels(result="invalid").inc()
    access_logger.info(f"Password rejected for room {room_id}")
    raise InvalidCredentials("Incorrect password")


def resolve_by_token(token: str, db: Session) -> Tuple[str, str]:
    """Redeem a deep-link access token into ``(room_id, password)``.

    Raises:
        ValidationError: blank token
        NotFound: unknown, revoked or not yet usable token
    """
    token = token.strip() if isinstance(token, str) else ""
    if not token:
        raise ValidationError("token is required")

    row = _usable(
        db.query(Purchase.room_id, Purchase.password).filter(Purchase.access_token == token)
    ).first()
    if not row:
        raise NotFound("Invalid or revoked token")
    return row.room_id, row.password


def purchase_to_view(purchase: Purchase, room_name: Optional[str], user_email: Optional[str]) -> Dict[str, Any]:
    return {
        "id": purchase.id,
        "roomId": purchase.room_id,
        "roomName": room_name or "Unknown",
        "userId": purchase.user_id,
        "userEmail": user_email,
        "password": purchase.password,
        "revoked": bool(purchase.revoked),
        "status": purchase.status,
        "paymentAmount": purchase.payment_amount,
        "platformFee": purchase.platform_fee,
        "creatorShare": purchase.creator_share,
        "currency": purchase.currency,
        "createdAt": purchase.created_at.isoformat() if purchase.created_at else None,
    }


def list_for_creator(creator_external_id: str, db: Session) -> List[Dict[str, Any]]:
    """Purchases of every room the creator owns, newest first.

    Unknown creators and creators without rooms get an empty list.
    """
    creator = find_user(creator_external_id, db)
    if not creator:
        return []

    rows = (
        db.query(Purchase, Room.name, User.email)
        .join(Room, Purchase.room_id == Room.id)
        .outerjoin(User, Purchase.user_id == User.id)
        .filter(Room.creator_id == creator.id)
        .order_by(Purchase.created_at.desc())
        .all()
    )
    return [purchase_to_view(purchase, room_name, email) for purchase, room_name, email in rows]
