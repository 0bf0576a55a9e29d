import hashlib
import hmac
from decimal import Decimal
from flask import Blueprint, request, jsonify, current_app

from referral.commission import CommissionEngine
from referral.errors import LedgerError

bp = Blueprint('payment_webhooks', __name__)

PAISE_PER_RUPEE = Decimal("100")


def verify_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """HMAC-SHA256 of the raw request body, hex encoded, compared in constant time."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def _optional_int(value):
    if value is None or value == "":
        return None
    return int(value)


@bp.route('/payments/webhook', methods=['POST'])
def payment_webhook():
    """
    Razorpay webhook handler.
    Only `payment.captured` moves money here: the payment is recorded once
    (by gateway payment id) and its commissions are distributed.
    """
    raw_body = request.get_data()
    signature = request.headers.get("X-Razorpay-Signature", "")
    secret = current_app.config.get("PAYMENT_WEBHOOK_SECRET")

    if not verify_signature(raw_body, signature, secret):
        current_app.logger.warning("Webhook: invalid signature")
        return jsonify({"error": "invalid_signature", "message": "Signature verification failed"}), 400

    webhook_data = request.get_json(silent=True)
    if not webhook_data:
        current_app.logger.error("Webhook: No JSON data received")
        return jsonify({"error": "validation_error", "message": "Invalid JSON body"}), 400

    event_type = webhook_data.get("event")
    if event_type != "payment.captured":
        current_app.logger.info(f"Webhook: Unhandled event {event_type}")
        return jsonify({"status": "acknowledged"}), 200

    entity = (webhook_data.get("payload") or {}).get("payment", {}).get("entity") or {}
    notes = entity.get("notes") or {}
    reference = entity.get("id")

    try:
        user_id = int(notes.get("user_id"))
        plan_id = _optional_int(notes.get("plan_id"))
        amount = Decimal(int(entity.get("amount"))) / PAISE_PER_RUPEE
    except (TypeError, ValueError):
        current_app.logger.error(f"Webhook: Malformed payment entity for {reference}")
        return jsonify({"error": "validation_error", "message": "Malformed payment entity"}), 400

    current_app.logger.info(f"Webhook processing: {event_type} for {reference}")

    try:
        payment, created = CommissionEngine.record_verified_payment(
            reference=reference,
            user_id=user_id,
            amount=amount,
            classification=notes.get("classification"),
            plan_id=plan_id,
            provider="razorpay",
            raw_response=entity,
        )
        result = CommissionEngine.distribute(payment)
    except LedgerError as e:
        current_app.logger.error(f"Webhook: could not process {reference}: {e.message}")
        raise

    return jsonify({
        "status": "processed",
        "paymentId": payment.id,
        "created": created,
        "distribution": result.to_dict(),
    }), 200
