"""Checkout, payment result handling and post-payment reconciliation."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from conftest import FakeGateway, declined_payload, success_payload

from coursepay.data.models import CourseModel, EnrollmentModel, PromoCodeUsageModel, PurchaseModel
from coursepay.domain.errors import (
    CheckoutError,
    PaymentGatewayError,
    PromoCodeError,
    PurchaseNotFoundError,
    UserNotFoundError,
)
from coursepay.repos.user_repo import UserRepo
from coursepay.services.payment_status import ERROR_MESSAGES
from coursepay.services.purchase_service import PurchaseService, generate_order_number


def purchase_count(db):
    return db.execute(select(func.count(PurchaseModel.id))).scalar_one()


def open_session(service, carts, billing, *refs, **kwargs):
    for item_id, item_type in refs or [(1, "course")]:
        carts.add_to_cart(1, item_id, item_type)
    return service.create_payment_session(1, billing, "card", **kwargs)


def test_order_number_format():
    number = generate_order_number()
    prefix, day, suffix = number.split("-")
    assert prefix == "ORD"
    assert len(day) == 8 and day.isdigit()
    assert len(suffix) == 8 and suffix == suffix.upper()


class TestCreatePaymentSession:
    def test_creates_pending_purchase_and_session(self, db, catalog, carts, service, gateway, billing):
        session = open_session(service, carts, billing, (1, "course"), (2, "course"))

        assert session["status"] == "pending"
        assert session["iframe_url"].endswith("payment_token=pk_test")
        assert session["paymob_order_id"] == "9001"
        assert session["total"] == Decimal("130.00")

        purchase = service.get_by_merchant_order_id(session["merchant_order_id"])
        assert purchase.subtotal == Decimal("130.00")
        assert [(i.item_id, i.price) for i in purchase.items] == [(1, Decimal("50.00")), (2, Decimal("80.00"))]
        assert gateway.sessions[0]["order_data"]["merchant_order_id"] == purchase.payment_intent_id

        # cart is left alone until the payment succeeds
        assert carts.get_cart(1)["cart_count"] == 2

    def test_each_attempt_gets_a_fresh_merchant_order_id(self, catalog, carts, service, billing):
        first = open_session(service, carts, billing)
        second = service.create_payment_session(1, billing, "card")
        assert first["merchant_order_id"] != second["merchant_order_id"]

    def test_missing_billing_field(self, db, catalog, carts, service, billing):
        carts.add_to_cart(1, 1, "course")
        billing["zip_code"] = ""

        with pytest.raises(CheckoutError, match="zip_code is required"):
            service.create_payment_session(1, billing, "card")
        assert purchase_count(db) == 0

    def test_empty_cart(self, db, catalog, service, billing):
        with pytest.raises(CheckoutError, match="Cart is empty"):
            service.create_payment_session(1, billing, "card")
        assert purchase_count(db) == 0

    def test_unknown_user(self, catalog, service, billing):
        with pytest.raises(UserNotFoundError):
            service.create_payment_session(99, billing, "card")

    def test_promo_is_recomputed(self, catalog, carts, service, make_promo, billing):
        make_promo(discount_value=Decimal("90"), max_discount_amount=Decimal("30"))
        # stale advisory amounts must not leak into the order
        carts.add_to_cart(1, 1, "course")
        carts.store_applied_promo(1, {"code": "SAVE10", "id": 1, "discount_amount": "49.00"})

        session = service.create_payment_session(1, billing, "card")
        purchase = service.get_by_merchant_order_id(session["merchant_order_id"])

        assert purchase.discount_amount == Decimal("30.00")
        assert purchase.original_amount == Decimal("50.00")
        assert purchase.total == Decimal("20.00")

    def test_invalid_promo_aborts_checkout(self, db, catalog, carts, service, billing):
        carts.add_to_cart(1, 1, "course")
        carts.store_applied_promo(1, {"code": "GONE", "id": 5})

        with pytest.raises(PromoCodeError):
            service.create_payment_session(1, billing, "card")
        assert purchase_count(db) == 0
        assert carts.get_cart(1)["applied_promo"] is None

    def test_applied_promo_survives_cart_pruning(self, db, catalog, carts, service, make_promo, billing):
        make_promo()
        carts.add_to_cart(1, 1, "course")
        carts.add_to_cart(1, 2, "course")
        carts.store_applied_promo(1, {"code": "SAVE10", "id": 1})
        db.get(CourseModel, 2).status = "archived"
        db.commit()

        session = service.create_payment_session(1, billing, "card")
        purchase = service.get_by_merchant_order_id(session["merchant_order_id"])

        assert [i.item_id for i in purchase.items] == [1]
        assert purchase.applied_promo_code_id == 1
        assert purchase.discount_amount == Decimal("5.00")
        assert purchase.total == Decimal("45.00")

    def test_applied_promo_invalidated_by_pruning_aborts_checkout(self, db, catalog, carts, service, make_promo, billing):
        make_promo(min_order_amount=Decimal("100"))
        carts.add_to_cart(1, 1, "course")
        carts.add_to_cart(1, 2, "course")
        carts.store_applied_promo(1, {"code": "SAVE10", "id": 1})
        db.get(CourseModel, 2).status = "archived"
        db.commit()

        with pytest.raises(PromoCodeError, match="Minimum order amount"):
            service.create_payment_session(1, billing, "card")
        assert purchase_count(db) == 0

    def test_zero_total_completes_without_gateway(self, db, catalog, carts, service, gateway, notifier, make_promo, billing):
        make_promo(discount_value=Decimal("100"))
        session = open_session(service, carts, billing, promo_code="SAVE10")

        assert session["status"] == "completed"
        assert session["iframe_url"] is None
        assert gateway.sessions == []
        assert UserRepo(db).is_enrolled(1, 1)
        assert len(notifier.calls) == 1

    def test_payment_key_failure_fails_purchase(self, db, catalog, carts, notifier, billing):
        gateway = FakeGateway(
            session_result={"success": False, "error": "Failed to generate payment key", "stage": "payment_key", "order_id": "77"}
        )
        service = PurchaseService(db, gateway=gateway, notifier=notifier)
        carts.add_to_cart(1, 1, "course")

        with pytest.raises(PaymentGatewayError) as exc:
            service.create_payment_session(1, billing, "card")
        assert exc.value.stage == "payment_key"

        purchase = db.execute(select(PurchaseModel)).scalar_one()
        db.refresh(purchase)
        assert purchase.status == "failed"
        assert purchase.paymob_order_id == "77"
        assert purchase.failure_reason == "Failed to generate payment key"

    def test_auth_failure_leaves_purchase_pending(self, db, catalog, carts, notifier, billing):
        gateway = FakeGateway(session_result={"success": False, "error": "timeout", "stage": "auth", "order_id": None})
        service = PurchaseService(db, gateway=gateway, notifier=notifier)
        carts.add_to_cart(1, 1, "course")

        with pytest.raises(PaymentGatewayError):
            service.create_payment_session(1, billing, "card")

        purchase = db.execute(select(PurchaseModel)).scalar_one()
        db.refresh(purchase)
        assert purchase.status == "pending"


class TestHandlePaymentResult:
    def test_success_grants_access_once(self, db, catalog, carts, service, notifier, billing):
        session = open_session(service, carts, billing)
        merchant_order_id = session["merchant_order_id"]

        result = service.handle_payment_result(merchant_order_id, success_payload(merchant_order_id))

        assert result["outcome"] == "completed"
        purchase = result["purchase"]
        assert purchase.status == "completed"
        assert purchase.payment_status == "completed"
        assert purchase.paymob_transaction_id == "555"
        assert purchase.completed_at is not None
        assert purchase.reconciled_at is not None
        assert purchase.payment_gateway_response["verified_by"] == "webhook"

        users = UserRepo(db)
        assert users.is_enrolled(1, 1)
        assert users.has_purchased_course(1, 1)
        assert carts.get_cart(1)["items"] == []
        assert notifier.calls == [(1, purchase.id)]

        again = service.handle_payment_result(merchant_order_id, success_payload(merchant_order_id))
        assert again["outcome"] == "already_processed"
        assert len(users.list_enrollments(1)) == 1
        assert len(notifier.calls) == 1

    def test_bundle_enrolls_every_course(self, db, catalog, carts, service, billing):
        session = open_session(service, carts, billing, (1, "bundle"))
        mid = session["merchant_order_id"]
        service.handle_payment_result(mid, success_payload(mid))

        users = UserRepo(db)
        assert users.has_purchased_bundle(1, 1)
        assert users.is_enrolled(1, 4)
        assert users.is_enrolled(1, 5)

    def test_lines_added_after_checkout_survive(self, catalog, carts, service, billing):
        session = open_session(service, carts, billing)
        carts.add_to_cart(1, 2, "course")

        mid = session["merchant_order_id"]
        service.handle_payment_result(mid, success_payload(mid))

        assert [line["item_id"] for line in carts.get_cart(1)["items"]] == [2]

    def test_failure_keeps_cart_and_records_reason(self, db, catalog, carts, service, notifier, billing):
        session = open_session(service, carts, billing)
        mid = session["merchant_order_id"]

        result = service.handle_payment_result(mid, declined_payload(mid))

        assert result["outcome"] == "failed"
        assert result["message"] == ERROR_MESSAGES["DECLINED"]
        assert result["purchase"].failure_reason == ERROR_MESSAGES["DECLINED"]
        assert not UserRepo(db).is_enrolled(1, 1)
        assert carts.get_cart(1)["cart_count"] == 1
        assert notifier.calls == []

    def test_terminal_state_is_final(self, catalog, carts, service, notifier, billing):
        session = open_session(service, carts, billing)
        mid = session["merchant_order_id"]
        service.handle_payment_result(mid, declined_payload(mid))

        late = service.handle_payment_result(mid, success_payload(mid))

        assert late["outcome"] == "already_processed"
        assert late["status"] == "failed"
        assert notifier.calls == []

    def test_ambiguous_signal_stays_pending(self, catalog, carts, service, billing):
        session = open_session(service, carts, billing)
        mid = session["merchant_order_id"]

        result = service.handle_payment_result(mid, {"obj": {"status": "processing"}}, source="webhook")

        assert result["outcome"] == "pending"
        assert result["purchase"].status == "pending"
        assert result["purchase"].payment_gateway_response["payload"] == {"obj": {"status": "processing"}}

    def test_unknown_merchant_order(self, catalog, service):
        with pytest.raises(PurchaseNotFoundError):
            service.handle_payment_result("nope", success_payload("nope"))

    def test_only_one_transition_wins(self, catalog, make_purchase, service):
        purchase = make_purchase()

        first = service.repo.transition_from_pending(purchase.id, {"status": "completed"})
        second = service.repo.transition_from_pending(purchase.id, {"status": "failed"})
        service.repo.commit()

        assert (first, second) == (1, 0)
        assert service.repo.refresh(purchase).status == "completed"

    def test_concurrent_arrivals_on_separate_sessions_complete_once(self, engine, db, catalog, make_purchase, notifier):
        purchase = make_purchase()
        mid = purchase.payment_intent_id
        job_db = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
        try:
            webhook = PurchaseService(db, gateway=FakeGateway(), notifier=notifier)
            job = PurchaseService(job_db, gateway=FakeGateway(), notifier=notifier)
            # both observed the purchase while it was still pending
            assert webhook.get_by_merchant_order_id(mid).status == "pending"
            assert job.get_by_merchant_order_id(mid).status == "pending"

            first = webhook.handle_payment_result(mid, success_payload(mid), source="webhook")
            second = job.handle_payment_result(mid, success_payload(mid), source="pending_payment_job")
        finally:
            job_db.close()

        assert (first["outcome"], second["outcome"]) == ("completed", "already_processed")
        assert notifier.calls == [(1, purchase.id)]
        assert db.execute(select(func.count(EnrollmentModel.id))).scalar_one() == 1

    def test_unreconciled_completion_is_finished_on_next_arrival(self, db, catalog, make_purchase, service, notifier):
        # completed earlier but the process died before granting access
        purchase = make_purchase(status="completed", payment_status="completed")

        result = service.handle_payment_result(purchase.payment_intent_id, success_payload(purchase.payment_intent_id))

        assert result["outcome"] == "already_processed"
        assert UserRepo(db).is_enrolled(1, 1)
        assert notifier.calls == [(1, purchase.id)]

    def test_undelivered_notification_is_retried(self, db, catalog, make_purchase, service, notifier):
        purchase = make_purchase()
        mid = purchase.payment_intent_id
        notifier.broker_up = False

        service.handle_payment_result(mid, success_payload(mid))
        assert service.repo.refresh(purchase).notification_sent is False

        notifier.broker_up = True
        result = service.handle_payment_result(mid, success_payload(mid))

        assert result["outcome"] == "already_processed"
        assert notifier.calls == [(1, purchase.id)]
        assert service.repo.refresh(purchase).notification_sent is True

    def test_promo_usage_recorded_on_success(self, db, catalog, carts, service, make_promo, billing):
        promo = make_promo()
        session = open_session(service, carts, billing, promo_code="SAVE10")
        mid = session["merchant_order_id"]

        service.handle_payment_result(mid, success_payload(mid))
        service.handle_payment_result(mid, success_payload(mid))

        usages = db.execute(select(PromoCodeUsageModel)).scalars().all()
        assert len(usages) == 1
        assert usages[0].discount_amount == Decimal("5.00")
        assert usages[0].final_amount == Decimal("45.00")
        assert service.promos.repo.get(promo.id).current_uses == 1


class TestVerifyWithGateway:
    def test_gateway_confirms_success(self, db, catalog, make_purchase, notifier):
        gateway = FakeGateway(status={"success": True, "transaction_status": "CAPTURED", "id": 321})
        service = PurchaseService(db, gateway=gateway, notifier=notifier)
        purchase = make_purchase()

        result = service.verify_with_gateway(purchase, "pending_payment_job")

        assert result["outcome"] == "completed"
        assert gateway.queries == [purchase.payment_intent_id]
        assert result["purchase"].payment_gateway_response["verified_by"] == "pending_payment_job"

    def test_empty_answer_is_pending(self, db, catalog, make_purchase, notifier):
        service = PurchaseService(db, gateway=FakeGateway(status=None), notifier=notifier)
        purchase = make_purchase()

        assert service.verify_with_gateway(purchase, "redirect_success")["outcome"] == "pending"


class TestDirectCheckout:
    def test_completes_and_enrolls(self, db, catalog, carts, service, gateway, notifier):
        carts.add_to_cart(1, 2, "course")

        result = service.direct_checkout(1)

        assert result["status"] == "completed"
        assert result["total"] == Decimal("80.00")
        assert gateway.sessions == []
        assert UserRepo(db).is_enrolled(1, 2)
        assert len(notifier.calls) == 1

        purchase = service.get_by_merchant_order_id(result["merchant_order_id"])
        assert purchase.payment_method == "direct"
        assert purchase.billing_address["first_name"] == "Sara"
        assert purchase.billing_address["city"] == "NA"

    def test_empty_cart(self, catalog, service):
        with pytest.raises(CheckoutError):
            service.direct_checkout(1)


class TestPurchaseHistory:
    def test_pagination(self, catalog, make_purchase, service):
        for _ in range(3):
            make_purchase()
        make_purchase(user_id=2)

        page = service.get_purchase_history(1, page=1, limit=2)
        assert len(page["purchases"]) == 2
        assert page["pagination"] == {
            "current_page": 1,
            "total_pages": 2,
            "total_purchases": 3,
            "has_next": True,
            "has_prev": False,
        }

        last = service.get_purchase_history(1, page=2, limit=2)
        assert len(last["purchases"]) == 1
        assert last["pagination"]["has_next"] is False
        assert last["pagination"]["has_prev"] is True
