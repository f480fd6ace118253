"""
Payment Reconciliation - applies provider webhooks to payments

Each provider signs the raw request body with a shared secret (hex
HMAC-SHA256). The signature is verified before the payload is even parsed,
and nothing is written unless it matches.
"""
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional
from sqlalchemy.orm import Session

from marketplace.config import settings
from marketplace.constants import PaymentMethod, PaymentStatus
from marketplace.exceptions import (
    ConflictingWebhookError,
    InvalidSignatureError,
    InvalidTransitionError,
    PaymentNotFoundError,
    ValidationError,
)
from marketplace.models.payment import Payment
from marketplace.publishers.event_publisher import EventPublisher
from marketplace.schemas.payment import WebhookResult
from marketplace.services.order_service import utcnow
from marketplace.services.payment_service import PaymentService
from marketplace.services.state_machine import OPEN_PAYMENT_STATUSES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderProfile:
    """Where a provider puts our reference, its status code and its own transaction id"""
    reference_field: str
    status_field: str
    external_id_field: str
    success_codes: FrozenSet[str]
    failure_codes: FrozenSet[str]
    reason_field: str = "message"


PROVIDER_PROFILES: Dict[str, ProviderProfile] = {
    PaymentMethod.TMONEY.value: ProviderProfile(
        "reference", "status", "transaction_id",
        frozenset({"SUCCESS"}), frozenset({"FAILED", "CANCELLED", "EXPIRED"}),
    ),
    PaymentMethod.FLOOZ.value: ProviderProfile(
        "merchant_reference", "status", "flooz_transaction_id",
        frozenset({"SUCCESS", "SUCCESSFUL"}), frozenset({"FAILED", "CANCELLED"}),
    ),
    PaymentMethod.ORANGE_MONEY.value: ProviderProfile(
        "order_id", "status", "txnid",
        frozenset({"SUCCESS"}), frozenset({"FAILED", "EXPIRED", "CANCELLED"}),
    ),
    PaymentMethod.MTN_MONEY.value: ProviderProfile(
        "externalId", "status", "financialTransactionId",
        frozenset({"SUCCESSFUL"}), frozenset({"FAILED", "REJECTED", "TIMEOUT"}),
        reason_field="reason",
    ),
    PaymentMethod.MOOV_MONEY.value: ProviderProfile(
        "reference", "status", "transaction_id",
        frozenset({"SUCCESS"}), frozenset({"FAILED", "CANCELLED"}),
    ),
    PaymentMethod.WAVE.value: ProviderProfile(
        "client_reference", "payment_status", "id",
        frozenset({"SUCCEEDED"}), frozenset({"FAILED", "CANCELLED"}),
        reason_field="last_payment_error",
    ),
}


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw body"""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(provider: str, body: bytes, signature: Optional[str]) -> None:
    """
    Check a webhook signature in constant time

    Raises:
        InvalidSignatureError: If no secret is configured or the signature does not match
    """
    secret = settings.webhook_secret(provider)
    if not secret:
        logger.warning("Rejected %s webhook: no shared secret configured", provider)
        raise InvalidSignatureError(f"Webhooks from {provider} are not accepted")

    expected = compute_signature(secret, body)
    provided = (signature or "").strip().lower()
    if not hmac.compare_digest(expected.encode("ascii"), provided.encode("ascii", "replace")):
        logger.warning("SECURITY: invalid %s webhook signature", provider)
        raise InvalidSignatureError("Invalid webhook signature")


class ReconciliationService:
    """Applies asynchronous provider results to Payment records"""

    def __init__(self, db: Session, event_publisher: Optional[EventPublisher] = None,
                 payment_service: Optional[PaymentService] = None):
        self.db = db
        self.payment_service = payment_service or PaymentService(db, event_publisher)
        self.repository = self.payment_service.repository

    def process_webhook(self, provider: str, body: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Reconcile one webhook delivery

        Redelivery of an already applied result is a no-op. A result that
        contradicts the recorded one raises ConflictingWebhookError and
        changes nothing.

        Raises:
            ValidationError: If the provider is unknown or the payload is malformed
            InvalidSignatureError: If the signature check fails
            PaymentNotFoundError: If no payment carries the payload's reference
            ConflictingWebhookError: If the payload contradicts the settled payment
        """
        profile = PROVIDER_PROFILES.get(provider)
        if profile is None:
            raise ValidationError(f"Unknown payment provider: {provider}")

        verify_signature(provider, body, signature)

        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(f"Malformed webhook payload: {e}")
        if not isinstance(payload, dict):
            raise ValidationError("Webhook payload must be a JSON object")

        reference = payload.get(profile.reference_field)
        if not reference:
            raise ValidationError(f"Webhook payload is missing '{profile.reference_field}'")

        payment = self.repository.get_by_reference(str(reference))
        if not payment:
            raise PaymentNotFoundError(f"Payment {reference} not found")
        if payment.method != provider:
            raise ValidationError(f"Payment {reference} was not made with {provider}")

        code = str(payload.get(profile.status_field, "")).upper()
        external_id = payload.get(profile.external_id_field)
        external_id = str(external_id) if external_id is not None else None
        if code in profile.success_codes:
            target = PaymentStatus.COMPLETED
        elif code in profile.failure_codes:
            target = PaymentStatus.FAILED
        else:
            logger.info("Webhook for %s with non-final status '%s' acknowledged", reference, code)
            return self._result(payment, False, f"Status '{code}' acknowledged")

        if target == PaymentStatus.COMPLETED and not external_id:
            raise ValidationError(f"Webhook payload is missing '{profile.external_id_field}'")

        duplicate = self._check_settled(payment, target, external_id)
        if duplicate:
            return duplicate

        failure_reason = None
        if target == PaymentStatus.FAILED:
            failure_reason = str(payload.get(profile.reason_field) or f"{provider} reported {code}")

        try:
            order, previous_order_status = self.payment_service.apply_status(
                payment,
                target,
                external_transaction_id=external_id,
                failure_reason=failure_reason,
                provider_response=payload,
                webhook_received_at=utcnow(),
            )
            self.db.commit()
        except InvalidTransitionError:
            # A concurrent delivery settled the payment first
            self.db.rollback()
            self.db.refresh(payment)
            duplicate = self._check_settled(payment, target, external_id)
            if duplicate:
                return duplicate
            raise
        except Exception:
            self.db.rollback()
            raise

        self.payment_service.publish_result(payment, order, previous_order_status)
        return self._result(payment, True, f"Payment {payment.status}")

    def _check_settled(self, payment: Payment, target: PaymentStatus,
                       external_id: Optional[str]) -> Optional[WebhookResult]:
        """
        Decide what a webhook means for an already settled payment

        Returns:
            A no-op result for a redelivery, None if the payment is still open

        Raises:
            ConflictingWebhookError: If the webhook contradicts the recorded result
        """
        status = PaymentStatus(payment.status)
        if status in OPEN_PAYMENT_STATUSES:
            return None

        settled_ok = status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)
        if settled_ok and target == PaymentStatus.COMPLETED and external_id == payment.external_transaction_id:
            return self._result(payment, False, "Duplicate webhook ignored")
        if not settled_ok and target == PaymentStatus.FAILED:
            return self._result(payment, False, "Duplicate webhook ignored")

        logger.error(
            "Conflicting webhook for payment %s: recorded %s (%s), received %s (%s)",
            payment.transaction_reference, payment.status, payment.external_transaction_id,
            target.value, external_id
        )
        raise ConflictingWebhookError(
            f"Payment {payment.transaction_reference} is already {payment.status}"
        )

    @staticmethod
    def _result(payment: Payment, applied: bool, message: str) -> WebhookResult:
        return WebhookResult(
            transaction_reference=payment.transaction_reference,
            status=payment.status,
            applied=applied,
            message=message,
        )
