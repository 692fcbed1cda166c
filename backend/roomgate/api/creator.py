"""Creator dashboard routes: purchase listing and revocation"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from roomgate.core.security import require_auth
from roomgate.db.session import get_db
from roomgate.schemas.purchases import RevokePurchaseRequest
from roomgate.services.identity_service import ExternalIdentity
from roomgate.services.ledger_service import list_for_creator, revoke

router = APIRouter(prefix="/api/creator", tags=["creator"])
logger = logging.getLogger(__name__)


@router.get("/purchases")
def list_purchases(identity: ExternalIdentity = Depends(require_auth), db: Session = Depends(get_db)):
    """Purchases across every room the caller owns, newest first"""
    return {"purchases": list_for_creator(identity.id, db)}


@router.post("/purchases/revoke")
def revoke_purchase(
    request_data: RevokePurchaseRequest,
    identity: ExternalIdentity = Depends(require_auth),
    db: Session = Depends(get_db)
):
    revoke(request_data.purchase_id, identity.id, db)
    return {"success": True}
