"""Normalization of gateway signals, webhook signatures and error messages."""

from conftest import WEBHOOK_SECRET, declined_payload, sign, success_payload

from coursepay.services.payment_status import (
    ERROR_MESSAGES,
    GENERIC_ERROR,
    friendly_error,
    normalize_payment_result,
    verify_signature,
)


class TestNormalizePaymentResult:
    def test_empty_input_is_pending(self):
        result = normalize_payment_result(None, None)
        assert result["is_pending"] is True
        assert result["is_success"] is False
        assert result["is_failed"] is False

    def test_webhook_success(self):
        result = normalize_payment_result(success_payload("intent-1"))
        assert result["is_success"] is True
        assert result["merchant_order_id"] == "intent-1"
        assert result["transaction_id"] == "555"
        assert result["paymob_order_id"] == "9001"

    def test_any_failure_signal_beats_success(self):
        payload = success_payload("intent-1")
        payload["obj"]["data"]["message"] = "DECLINED"

        result = normalize_payment_result(payload)
        assert result["is_failed"] is True
        assert result["is_success"] is False

    def test_declined_webhook(self):
        result = normalize_payment_result(declined_payload("intent-1"))
        assert result["is_failed"] is True

    def test_zero_paid_amount_is_failure(self):
        payload = success_payload("intent-1")
        payload["obj"]["order"]["paid_amount_cents"] = 0

        result = normalize_payment_result(payload)
        assert result["is_failed"] is True
        assert result["signals"]["zero_paid_amount"] is True

    def test_issuer_response_code_is_failure(self):
        result = normalize_payment_result({"success": True, "response_code": 5})
        assert result["is_failed"] is True

    def test_unpaid_order_is_failure(self):
        result = normalize_payment_result({"success": True, "order": {"payment_status": "UNPAID"}})
        assert result["is_failed"] is True

    def test_captured_inquiry_is_success(self):
        result = normalize_payment_result({"transaction_status": "captured", "merchant_order_id": "intent-9"})
        assert result["is_success"] is True
        assert result["merchant_order_id"] == "intent-9"

    def test_redirect_success_needs_confirmation(self):
        confirmed = {
            "merchantOrderId": "intent-1",
            "success": "true",
            "pending": "false",
            "txn_response_code": "APPROVED",
        }
        assert normalize_payment_result(None, confirmed)["is_success"] is True

        unconfirmed = {"merchantOrderId": "intent-1", "success": "true"}
        result = normalize_payment_result(None, unconfirmed)
        assert result["is_pending"] is True
        assert result["merchant_order_id"] == "intent-1"

    def test_redirect_failure(self):
        result = normalize_payment_result(None, {"success": "false", "pending": "false"})
        assert result["is_failed"] is True

    def test_redirect_error_flag_blocks_success(self):
        query = {
            "success": "true",
            "pending": "false",
            "error_occured": "true",
            "txn_response_code": "APPROVED",
        }
        result = normalize_payment_result(None, query)
        assert result["is_success"] is False
        assert result["is_failed"] is True

    def test_unrelated_status_stays_pending(self):
        result = normalize_payment_result({"obj": {"status": "processing"}})
        assert result["is_pending"] is True


class TestVerifySignature:
    body = b'{"obj": {"id": 1, "success": true}}'

    def test_valid_signature(self):
        assert verify_signature(self.body, sign(self.body), WEBHOOK_SECRET)

    def test_prefixed_and_uppercase_signature(self):
        assert verify_signature(self.body, "sha256=" + sign(self.body).upper(), WEBHOOK_SECRET)

    def test_altered_body_is_rejected(self):
        signature = sign(self.body)
        tampered = self.body.replace(b"1", b"2", 1)
        assert not verify_signature(tampered, signature, WEBHOOK_SECRET)

    def test_wrong_secret_is_rejected(self):
        assert not verify_signature(self.body, sign(self.body, "other"), WEBHOOK_SECRET)

    def test_missing_parts(self):
        assert not verify_signature(self.body, None, WEBHOOK_SECRET)
        assert not verify_signature(self.body, sign(self.body), "")

    def test_non_ascii_signature(self):
        assert not verify_signature(self.body, "sigé", WEBHOOK_SECRET)


class TestFriendlyError:
    def test_known_code(self):
        assert friendly_error("INSUFFICIENT_FUNDS") == ERROR_MESSAGES["INSUFFICIENT_FUNDS"]
        assert friendly_error(5) == ERROR_MESSAGES["5"]

    def test_nested_webhook_message(self):
        assert friendly_error(declined_payload("intent-1")) == ERROR_MESSAGES["DECLINED"]

    def test_code_inside_message(self):
        assert friendly_error({"message": "Bank said code: 14"}) == ERROR_MESSAGES["14"]

    def test_falls_back_to_message_then_generic(self):
        assert friendly_error({"message": "Something odd"}) == "Something odd"
        assert friendly_error({"errors": ["first", "second"]}) == "first"
        assert friendly_error(None) == GENERIC_ERROR
        assert friendly_error({}) == GENERIC_ERROR

    def test_exception_without_response(self):
        assert friendly_error(RuntimeError("gateway down")) == "gateway down"
