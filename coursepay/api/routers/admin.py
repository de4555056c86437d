# coursepay/api/routers/admin.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from coursepay.api.dependencies import get_gateway, get_lock_service, get_promo_service
from coursepay.data.database import get_db
from coursepay.domain.errors import PromoCodeError
from coursepay.domain.schemas import PromoCodeCreate, PromoCodeOut
from coursepay.services.lock_service import LockService
from coursepay.services.paymob_client import PaymobClient
from coursepay.services.promo_service import PromoCodeService
from coursepay.tasks.verify_payments import trigger_manual_check

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/promo-codes", response_model=PromoCodeOut, status_code=201)
def create_promo_code(
    payload: PromoCodeCreate,
    promos: PromoCodeService = Depends(get_promo_service),
):
    try:
        return promos.create_promo_code(payload.model_dump())
    except PromoCodeError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/payments/verify-pending")
def verify_pending_payments(
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
    gateway: PaymobClient = Depends(get_gateway),
):
    summary = trigger_manual_check(db, lock_service, gateway)
    if summary is None:
        return {"skipped": True, "reason": "already running"}
    return {"skipped": False, **summary}
