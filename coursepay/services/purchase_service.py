# coursepay/services/purchase_service.py
import math
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coursepay.data.models.purchase import (
    COMPLETED,
    FAILED,
    PENDING,
    PurchaseItemModel,
    PurchaseModel,
)
from coursepay.domain.errors import (
    CheckoutError,
    PaymentGatewayError,
    PromoCodeError,
    PurchaseNotFoundError,
    UserNotFoundError,
)
from coursepay.domain.money import ZERO, to_money
from coursepay.repos.purchase_repo import PurchaseRepo
from coursepay.repos.user_repo import UserRepo
from coursepay.services.cart_service import CartService
from coursepay.services.enrollment_service import EnrollmentReconciler
from coursepay.services.notification_service import NotificationService
from coursepay.services.payment_status import friendly_error, normalize_payment_result
from coursepay.services.paymob_client import PaymobClient
from coursepay.services.promo_service import PromoCodeService
from coursepay.utils.logging import get_logger
from coursepay.utils.settings import PAYMENT_CURRENCY

logger = get_logger(__name__)

REQUIRED_BILLING_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "address",
    "city",
    "state",
    "zip_code",
    "country",
)

# outcomes of handle_payment_result
OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_PENDING = "pending"
OUTCOME_ALREADY_PROCESSED = "already_processed"


def generate_order_number(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PurchaseService:
    """
    Checkout and the purchase lifecycle.

    pending -> completed | failed, each transition a single conditional
    UPDATE ... WHERE status = 'pending'. Redirect landing, webhook and the
    pending-payment job all end up in handle_payment_result; whichever lands
    its update first wins, the others see "already processed".
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymobClient | None = None,
        notifier: NotificationService | None = None,
    ):
        self.db = db
        self.repo = PurchaseRepo(db)
        self.users = UserRepo(db)
        self.carts = CartService(db)
        self.promos = PromoCodeService(db)
        self.reconciler = EnrollmentReconciler(db)
        self._gateway = gateway
        self.notifier = notifier or NotificationService()

    @property
    def gateway(self) -> PaymobClient:
        if self._gateway is None:
            self._gateway = PaymobClient()
        return self._gateway

    # =====================================================
    # CHECKOUT
    # =====================================================
    def create_payment_session(
        self,
        user_id: int,
        billing_address: Dict[str, Any],
        payment_method: str = "card",
        promo_code: str | None = None,
    ) -> Dict[str, Any]:
        """
        Use Case: start a gateway checkout.

        1. revalidate the cart and billing data
        2. revalidate the promo code from scratch
        3. create the pending purchase with a fresh merchant order id
        4. open the Paymob session (order + payment key)
        """
        missing = [f for f in REQUIRED_BILLING_FIELDS if not (billing_address or {}).get(f)]
        if missing:
            raise CheckoutError(f"{missing[0]} is required")

        purchase = self._create_pending_purchase(user_id, billing_address, payment_method, promo_code)

        if purchase.total <= ZERO:
            logger.info(f"Order {purchase.order_number} is free after discount, skipping gateway")
            self._complete(purchase, None, source="zero_total")
            return self._session_result(purchase, iframe_url=None)

        session = self.gateway.create_payment_session(
            {
                "total": purchase.total,
                "merchant_order_id": purchase.payment_intent_id,
                "items": [
                    {"title": i.title, "price": i.price, "quantity": i.quantity}
                    for i in purchase.items
                ],
            },
            billing_address,
            payment_method,
        )

        if not session["success"]:
            stage = session.get("stage", "auth")
            if stage == "payment_key":
                # the provider order exists but the payer can never reach it
                self.repo.transition_from_pending(
                    purchase.id,
                    {
                        "status": FAILED,
                        "payment_status": FAILED,
                        "paymob_order_id": session.get("order_id"),
                        "failure_reason": session["error"],
                    },
                )
                self.repo.commit()
            logger.error(f"Payment session for {purchase.order_number} failed at {stage}: {session['error']}")
            raise PaymentGatewayError(session["error"], stage)

        self.repo.update_fields(purchase.id, {"paymob_order_id": session["order_id"]})
        self.repo.commit()
        self.repo.refresh(purchase)

        logger.info(f"Payment session opened for {purchase.order_number} ({purchase.payment_intent_id})")
        return self._session_result(purchase, iframe_url=session["iframe_url"])

    def direct_checkout(
        self,
        user_id: int,
        billing_address: Dict[str, Any] | None = None,
        payment_method: str = "direct",
    ) -> Dict[str, Any]:
        """
        Use Case: checkout without the gateway.
        Goes through the same transition and post-payment steps as a paid order.
        """
        user = self._get_user(user_id)
        billing = billing_address or self._default_billing(user)

        purchase = self._create_pending_purchase(user_id, billing, payment_method, None)
        self._complete(purchase, None, source="direct_checkout")
        self.repo.refresh(purchase)

        return self._session_result(purchase, iframe_url=None)

    def _create_pending_purchase(
        self,
        user_id: int,
        billing: Dict[str, Any],
        payment_method: str,
        promo_code: str | None,
    ) -> PurchaseModel:
        user = self._get_user(user_id)

        # read before validation, pruning the cart drops the advisory promo
        cart = self.carts.repo.get_cart_by_user(user_id)
        code = promo_code or ((cart.applied_promo or {}).get("code") if cart else None)

        validated = self.carts.validate_cart(user_id, cart)
        if not validated["items"]:
            raise CheckoutError("Cart is empty")

        subtotal = validated["subtotal"]
        discount = ZERO
        promo_id = None

        if code:
            # never trust the stored amounts, recompute against the live cart
            result = self.promos.validate(code, user_id, validated["items"], subtotal, user.email)
            if not result["success"]:
                self.carts.store_applied_promo(user_id, None)
                raise PromoCodeError(result["error"])
            discount = result["discount_amount"]
            promo_id = result["promo_code"].id

        total = to_money(subtotal - discount)

        purchase = PurchaseModel(
            user_id=user_id,
            order_number=generate_order_number(),
            subtotal=subtotal,
            tax=ZERO,
            total=total,
            currency=PAYMENT_CURRENCY,
            payment_method=payment_method,
            billing_address=dict(billing),
            status=PENDING,
            payment_status=PENDING,
            payment_intent_id=str(uuid.uuid4()),
            applied_promo_code_id=promo_id,
            discount_amount=discount,
            original_amount=subtotal,
            items=[
                PurchaseItemModel(
                    item_type=line["item_type"],
                    item_id=line["item_id"],
                    title=line["title"],
                    price=line["final_price"],
                    quantity=1,
                )
                for line in validated["items"]
            ],
        )
        created = self.repo.create_purchase(purchase)

        logger.info(
            f"Created pending purchase {created.order_number} for user {user_id}: "
            f"subtotal={subtotal} discount={discount} total={total}"
        )
        return created

    # =====================================================
    # PAYMENT RESULT
    # =====================================================
    def handle_payment_result(
        self,
        merchant_order_id: str,
        payload: Dict[str, Any] | None = None,
        query: Dict[str, Any] | None = None,
        source: str = "webhook",
    ) -> Dict[str, Any]:
        purchase = self.repo.get_by_merchant_order_id(merchant_order_id)
        if not purchase:
            raise PurchaseNotFoundError(f"No purchase for merchant order {merchant_order_id}")

        result = normalize_payment_result(payload, query)
        return self._apply_result(purchase, result, source)

    def verify_with_gateway(self, purchase: PurchaseModel, source: str) -> Dict[str, Any]:
        """Ask Paymob for the transaction state and apply it."""
        status = self.gateway.query_transaction_status(
            purchase.payment_intent_id,
            purchase.paymob_order_id,
            purchase.paymob_transaction_id,
        )
        if not status:
            return self._outcome(purchase, OUTCOME_PENDING)
        return self._apply_result(purchase, normalize_payment_result(status), source)

    def _apply_result(self, purchase: PurchaseModel, result: Dict[str, Any], source: str) -> Dict[str, Any]:
        if purchase.status != PENDING:
            logger.info(f"Purchase {purchase.order_number} already {purchase.status}, {source} ignored")
            if purchase.status == COMPLETED:
                self._ensure_post_payment(purchase)
            return self._outcome(purchase, OUTCOME_ALREADY_PROCESSED)

        if result["is_success"]:
            outcome = self._complete(purchase, result, source)
        elif result["is_failed"]:
            outcome = self._fail(purchase, result, source)
        else:
            logger.info(f"Purchase {purchase.order_number}: ambiguous signal from {source}, still pending")
            self.repo.transition_from_pending(
                purchase.id,
                {"payment_gateway_response": self._audit(result, source)},
            )
            self.repo.commit()
            outcome = OUTCOME_PENDING

        self.repo.refresh(purchase)
        return self._outcome(purchase, outcome)

    def _complete(self, purchase: PurchaseModel, result: Dict[str, Any] | None, source: str) -> str:
        data: Dict[str, Any] = {
            "status": COMPLETED,
            "payment_status": COMPLETED,
            "completed_at": datetime.now(timezone.utc),
        }
        if result:
            data["payment_gateway_response"] = self._audit(result, source)
            if result.get("transaction_id"):
                data["paymob_transaction_id"] = result["transaction_id"]
            if result.get("paymob_order_id"):
                data["paymob_order_id"] = result["paymob_order_id"]

        rowcount = self.repo.transition_from_pending(purchase.id, data)
        self.repo.commit()

        if rowcount == 0:
            logger.info(f"Purchase {purchase.order_number} was already processed ({source})")
            return OUTCOME_ALREADY_PROCESSED

        self.repo.refresh(purchase)
        logger.info(f"Purchase {purchase.order_number} completed via {source}")

        self._ensure_post_payment(purchase)
        return OUTCOME_COMPLETED

    def _fail(self, purchase: PurchaseModel, result: Dict[str, Any], source: str) -> str:
        reason = friendly_error(result["raw_payload"] or result["query_params"])
        rowcount = self.repo.transition_from_pending(
            purchase.id,
            {
                "status": FAILED,
                "payment_status": FAILED,
                "failure_reason": reason,
                "payment_gateway_response": self._audit(result, source),
            },
        )
        self.repo.commit()

        if rowcount == 0:
            logger.info(f"Purchase {purchase.order_number} was already processed ({source})")
            return OUTCOME_ALREADY_PROCESSED

        logger.info(f"Purchase {purchase.order_number} failed via {source}: {reason}")
        return OUTCOME_FAILED

    def _ensure_post_payment(self, purchase: PurchaseModel) -> None:
        """
        Access, cart cleanup and the invoice notification. Each step is
        guarded, so a retry after a crash finishes the job without repeating it.
        """
        if purchase.reconciled_at is None:
            try:
                self.reconciler.reconcile(purchase)
                self.carts.discard_items(
                    purchase.user_id, [(i.item_id, i.item_type) for i in purchase.items]
                )
            except SQLAlchemyError as e:
                # stays unreconciled, the next arrival for this order retries
                self.db.rollback()
                logger.error(f"Reconciliation of {purchase.order_number} failed: {e}")
                return

        if self.repo.claim_notification(purchase.id):
            self.repo.commit()
            if not self.notifier.send_purchase_invoice_notification(purchase.user_id, purchase.id):
                # not queued, the next arrival for this order tries again
                self.repo.update_fields(purchase.id, {"notification_sent": False})
                self.repo.commit()
        else:
            self.repo.rollback()

    # =====================================================
    # QUERIES
    # =====================================================
    def get_by_merchant_order_id(self, merchant_order_id: str) -> PurchaseModel:
        purchase = self.repo.get_by_merchant_order_id(merchant_order_id)
        if not purchase:
            raise PurchaseNotFoundError(f"No purchase for merchant order {merchant_order_id}")
        return purchase

    def get_purchase_history(self, user_id: int, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        page = max(1, page)
        limit = max(1, limit)
        total = self.repo.count_for_user(user_id)
        total_pages = math.ceil(total / limit) if total else 0

        return {
            "purchases": self.repo.list_for_user(user_id, (page - 1) * limit, limit),
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total_purchases": total,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }

    # helpers
    def _get_user(self, user_id: int):
        user = self.users.get_user(user_id)
        if not user:
            raise UserNotFoundError("User not found")
        return user

    @staticmethod
    def _default_billing(user) -> Dict[str, Any]:
        first, _, last = (user.name or "").partition(" ")
        return {
            "first_name": first or "Default",
            "last_name": last or "User",
            "email": user.email or "",
            "phone": user.phone or "",
            "address": "NA",
            "city": "NA",
            "state": "NA",
            "zip_code": "NA",
            "country": "EG",
        }

    @staticmethod
    def _audit(result: Dict[str, Any], source: str) -> Dict[str, Any]:
        return {
            "payload": result.get("raw_payload") or {},
            "query": result.get("query_params") or {},
            "verified_by": source,
            "verified_at": _utcnow_iso(),
        }

    @staticmethod
    def _outcome(purchase: PurchaseModel, outcome: str) -> Dict[str, Any]:
        message = None
        if purchase.status == FAILED:
            message = purchase.failure_reason or friendly_error(None)
        return {
            "outcome": outcome,
            "order_number": purchase.order_number,
            "status": purchase.status,
            "message": message,
            "purchase": purchase,
        }

    @staticmethod
    def _session_result(purchase: PurchaseModel, iframe_url: str | None) -> Dict[str, Any]:
        return {
            "order_number": purchase.order_number,
            "merchant_order_id": purchase.payment_intent_id,
            "iframe_url": iframe_url,
            "paymob_order_id": purchase.paymob_order_id,
            "status": purchase.status,
            "total": Decimal(purchase.total),
        }
