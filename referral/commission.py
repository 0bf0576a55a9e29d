# referral/commission.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import (
    Commission, CommissionStatus, Payment, PaymentClassification, PaymentStatus, Plan, User,
)
from referral.audit import record_audit
from referral.errors import (
    LedgerError, ValidationError, NotFoundError, InvalidStateTransition, StorageFailure,
)
from referral.level_config import LevelConfigStore
from referral.money import commission_amount, positive_amount
from referral.tree import ReferralTreeBuilder
from referral.wallet_ledger import WalletLedger


@dataclass
class DistributionResult:
    """Outcome of distributing one payment across its ancestor chain."""

    payment_id: int
    credits_issued: int = 0
    total_amount: Decimal = Decimal("0.00")
    skipped_levels: List[int] = field(default_factory=list)
    failed_levels: List[Dict[str, Any]] = field(default_factory=list)
    already_credited: int = 0
    already_applied: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.failed_levels)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "paymentId": self.payment_id,
            "creditsIssued": self.credits_issued,
            "totalAmount": str(self.total_amount),
            "skippedLevels": list(self.skipped_levels),
            "failedLevels": list(self.failed_levels),
            "alreadyCredited": self.already_credited,
            "alreadyApplied": self.already_applied,
            "partial": self.partial,
        }


class CommissionEngine:
    """
    Fans a completed payment out to the payer's ancestor chain.

    Each ancestor is credited in its own transaction: the Commission row, the
    wallet credit and the audit row commit or roll back together. A failure
    for one ancestor is recorded in `failed_levels` and the rest are still
    attempted. Re-running for the same payment only credits recipients that
    do not already hold a commission for it.
    """

    @staticmethod
    def _validate(payment: Payment) -> str:
        if payment.status != PaymentStatus.COMPLETED.value:
            raise ValidationError(
                f"Payment {payment.id} is not completed (status={payment.status})",
                payment_id=payment.id,
            )
        if payment.amount is None or Decimal(payment.amount) <= 0:
            raise ValidationError(f"Payment {payment.id} has a non-positive amount", payment_id=payment.id)
        return LevelConfigStore.commission_class_for(payment.classification)

    @staticmethod
    def _load(payment: Payment, commission_class: str) -> Tuple[list, dict, set]:
        try:
            chain = [
                (edge.ancestor_id, edge.level)
                for edge in ReferralTreeBuilder.get_ancestor_edges(payment.user_id)
            ]
            curve = LevelConfigStore.resolve(payment.plan_id, commission_class)
            credited = {
                recipient_id
                for (recipient_id,) in db.session.query(Commission.recipient_id)
                .filter(Commission.source_payment_id == payment.id)
                .all()
            }
        except SQLAlchemyError as exc:
            current_app.logger.error(f"Could not load distribution inputs for payment {payment.id}: {exc}")
            raise StorageFailure(f"Could not load ancestor chain for payment {payment.id}") from exc
        return chain, curve, credited

    @staticmethod
    def distribute(payment: Payment) -> DistributionResult:
        commission_class = CommissionEngine._validate(payment)

        payment_id = payment.id
        payer_id = payment.user_id
        payment_amount = Decimal(payment.amount)

        chain, curve, credited = CommissionEngine._load(payment, commission_class)
        result = DistributionResult(payment_id=payment_id)

        if not chain:
            current_app.logger.info(f"Payment {payment_id}: payer {payer_id} has no ancestors")
            return result

        for ancestor_id, level in chain:
            percentage = curve.get(level, Decimal("0"))
            if percentage <= 0:
                result.skipped_levels.append(level)
                continue

            amount = commission_amount(payment_amount, percentage)
            if amount <= 0:
                result.skipped_levels.append(level)
                continue

            if ancestor_id in credited:
                result.already_credited += 1
                continue

            outcome = CommissionEngine._credit_ancestor(
                payment_id, payer_id, ancestor_id, level, commission_class, percentage, amount
            )
            if outcome is None:
                result.credits_issued += 1
                result.total_amount += amount
            elif outcome == "duplicate":
                result.already_credited += 1
            else:
                result.failed_levels.append(
                    {"level": level, "recipientId": ancestor_id, "error": outcome}
                )

        result.already_applied = (
            result.credits_issued == 0 and not result.failed_levels and result.already_credited > 0
        )

        log = current_app.logger.warning if result.partial else current_app.logger.info
        log(
            f"COMMISSION_DISTRIBUTION payment={payment_id} class={commission_class} "
            f"issued={result.credits_issued} total={result.total_amount} "
            f"skipped={result.skipped_levels} failed={[f['level'] for f in result.failed_levels]} "
            f"already={result.already_credited}"
        )
        return result

    @staticmethod
    def _credit_ancestor(payment_id, payer_id, ancestor_id, level, commission_class,
                         percentage, amount) -> Optional[str]:
        """One ancestor, one transaction. Returns None on success, "duplicate", or an error code."""
        try:
            db.session.add(Commission(
                recipient_id=ancestor_id,
                source_user_id=payer_id,
                source_payment_id=payment_id,
                level=level,
                commission_class=commission_class,
                percentage=percentage,
                amount=amount,
                status=CommissionStatus.PENDING.value,
            ))
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            current_app.logger.info(
                f"Commission for payment {payment_id} -> user {ancestor_id} already written"
            )
            return "duplicate"
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(f"Commission row failed: payment={payment_id} level={level}: {exc}")
            return StorageFailure.code

        try:
            WalletLedger.credit(ancestor_id, "referral", amount, commit=False)
            record_audit(
                None,
                "commission_credited",
                payment_id=payment_id,
                recipient_id=ancestor_id,
                level=level,
                percentage=percentage,
                amount=amount,
            )
            db.session.commit()
        except LedgerError as exc:
            db.session.rollback()
            current_app.logger.error(
                f"Commission credit rolled back: payment={payment_id} level={level} user={ancestor_id}: {exc}"
            )
            return exc.code
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(
                f"Commission commit failed: payment={payment_id} level={level} user={ancestor_id}: {exc}"
            )
            return StorageFailure.code
        return None

    @staticmethod
    def distribute_by_id(payment_id: int) -> DistributionResult:
        payment = db.session.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found", payment_id=payment_id)
        return CommissionEngine.distribute(payment)

    @staticmethod
    def mark_paid(commission_id: int, admin_id: int) -> Commission:
        """Flip a commission from pending to paid. The only mutation a commission row allows."""
        admin = db.session.get(User, admin_id)
        if admin is None or not admin.is_admin:
            raise ValidationError("An administrator identity is required", admin_id=admin_id)

        try:
            commission = (
                Commission.query.filter_by(id=commission_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageFailure(f"Could not load commission {commission_id}") from exc

        if commission is None:
            raise NotFoundError(f"Commission {commission_id} not found", commission_id=commission_id)
        if commission.status != CommissionStatus.PENDING.value:
            db.session.rollback()
            raise InvalidStateTransition(
                f"Commission {commission_id} is {commission.status}, expected pending",
                commission_id=commission_id,
                status=commission.status,
            )

        commission.status = CommissionStatus.PAID.value
        commission.paid_at = datetime.now(timezone.utc)
        commission.paid_by = admin_id
        record_audit(admin_id, "commission_marked_paid", commission_id=commission_id, amount=commission.amount)
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageFailure(f"Could not mark commission {commission_id} paid") from exc

        current_app.logger.info(f"Commission {commission_id} marked paid by admin {admin_id}")
        return commission

    @staticmethod
    def _default_classification(user_id: int, plan_id: Optional[int]) -> str:
        prior = Payment.query.filter_by(
            user_id=user_id, plan_id=plan_id, status=PaymentStatus.COMPLETED.value
        ).first()
        if prior is None:
            return PaymentClassification.FIRST_PAYMENT.value
        return PaymentClassification.RECURRING_PAYMENT.value

    @staticmethod
    def record_verified_payment(reference: str, user_id: int, amount, classification: str = None,
                                plan_id: int = None, provider: str = None,
                                raw_response: dict = None) -> Tuple[Payment, bool]:
        """
        Store a completed payment that the gateway boundary has already verified.
        Returns (payment, created); a replayed reference returns the stored row.
        """
        if not reference:
            raise ValidationError("Payment reference is required")

        existing = Payment.query.filter_by(reference=reference).first()
        if existing is not None:
            current_app.logger.info(f"Payment {reference} already recorded as #{existing.id}")
            return existing, False

        amount = positive_amount(amount)
        if db.session.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)
        if plan_id is not None and db.session.get(Plan, plan_id) is None:
            raise NotFoundError(f"Plan {plan_id} not found", plan_id=plan_id)
        if classification is None:
            classification = CommissionEngine._default_classification(user_id, plan_id)
        LevelConfigStore.commission_class_for(classification)

        payment = Payment(
            user_id=user_id,
            plan_id=plan_id,
            reference=reference,
            provider=provider,
            classification=classification,
            status=PaymentStatus.COMPLETED.value,
            currency=current_app.config.get("CURRENCY", "INR"),
            amount=amount,
            raw_response=raw_response,
        )
        db.session.add(payment)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = Payment.query.filter_by(reference=reference).first()
            if existing is None:
                raise StorageFailure(f"Could not record payment {reference}")
            return existing, False
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageFailure(f"Could not record payment {reference}") from exc

        current_app.logger.info(
            f"Payment recorded: #{payment.id} ref={reference} user={user_id} amount={amount} ({classification})"
        )
        return payment, True
