# coursepay/api/routers/purchases.py
import json

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool

from coursepay.api.dependencies import get_purchase_service
from coursepay.domain.errors import (
    CheckoutError,
    PaymentGatewayError,
    PromoCodeError,
    PurchaseNotFoundError,
    UserNotFoundError,
)
from coursepay.domain.schemas import (
    DirectCheckoutIn,
    PaymentResultOut,
    PaymentSessionIn,
    PaymentSessionOut,
    PurchaseHistoryOut,
)
from coursepay.services.purchase_service import PurchaseService
from coursepay.utils.logging import get_logger
from coursepay.utils.settings import is_production

logger = get_logger(__name__)

router = APIRouter(prefix="/purchase", tags=["purchase"])

SIGNATURE_HEADERS = ("x-paymob-signature", "x-signature", "x-hook-signature", "x-paymob-hmac")


@router.post("/checkout/payment", response_model=PaymentSessionOut)
def create_payment_session(
    payload: PaymentSessionIn,
    user_id: int = Query(...),
    svc: PurchaseService = Depends(get_purchase_service),
):
    try:
        return svc.create_payment_session(
            user_id,
            payload.billing_address.model_dump(),
            payload.payment_method,
            payload.promo_code,
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (CheckoutError, PromoCodeError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PaymentGatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/checkout/direct", response_model=PaymentSessionOut)
def direct_checkout(
    payload: DirectCheckoutIn,
    user_id: int = Query(...),
    svc: PurchaseService = Depends(get_purchase_service),
):
    billing = payload.billing_address.model_dump() if payload.billing_address else None
    try:
        return svc.direct_checkout(user_id, billing, payload.payment_method)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (CheckoutError, PromoCodeError) as e:
        raise HTTPException(status_code=400, detail=str(e))


def _redirect_landing(request: Request, svc: PurchaseService, source: str) -> dict:
    query = dict(request.query_params)
    merchant_order_id = query.get("merchantOrderId") or query.get("merchant_order_id")
    if not merchant_order_id:
        raise HTTPException(status_code=400, detail="Missing merchant order id")

    try:
        result = svc.handle_payment_result(merchant_order_id, None, query, source=source)
        if result["outcome"] == "pending":
            # redirect told us nothing definite, ask the gateway
            result = svc.verify_with_gateway(result["purchase"], source)
    except PurchaseNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PaymentGatewayError as e:
        logger.warning(f"Could not verify {merchant_order_id} with the gateway: {e}")
        purchase = svc.get_by_merchant_order_id(merchant_order_id)
        return {"outcome": "pending", "order_number": purchase.order_number, "status": purchase.status}

    return result


@router.get("/payment/success", response_model=PaymentResultOut)
def payment_success(request: Request, svc: PurchaseService = Depends(get_purchase_service)):
    return _redirect_landing(request, svc, "redirect_success")


@router.get("/payment/fail", response_model=PaymentResultOut)
def payment_fail(request: Request, svc: PurchaseService = Depends(get_purchase_service)):
    return _redirect_landing(request, svc, "redirect_fail")


@router.post("/webhook")
async def paymob_webhook(request: Request, svc: PurchaseService = Depends(get_purchase_service)):
    """
    Paymob transaction callback. The signature is checked over the raw body.
    Returns 200 for anything we accepted, including already processed orders,
    so the gateway does not retry.
    """
    raw_body = await request.body()
    signature = next((request.headers[h] for h in SIGNATURE_HEADERS if h in request.headers), None)

    if not svc.gateway.verify_webhook_signature(raw_body, signature):
        if is_production():
            logger.warning("Rejected webhook with invalid signature")
            raise HTTPException(status_code=401, detail="Invalid signature")
        logger.warning("Webhook signature invalid or missing (accepted outside production)")

    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    query = dict(request.query_params)
    normalized = svc.gateway.process_webhook_payload(payload, query)
    merchant_order_id = normalized["merchant_order_id"]
    if not merchant_order_id:
        raise HTTPException(status_code=400, detail="Missing merchant order id")

    try:
        result = await run_in_threadpool(
            svc.handle_payment_result, merchant_order_id, payload, query, source="webhook"
        )
    except PurchaseNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"success": True, "outcome": result["outcome"], "status": result["status"]}


@router.get("/history", response_model=PurchaseHistoryOut)
def purchase_history(
    user_id: int = Query(...),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    svc: PurchaseService = Depends(get_purchase_service),
):
    return svc.get_purchase_history(user_id, page, limit)
