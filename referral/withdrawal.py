# referral/withdrawal.py
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from logger import ledger_logger
from models import User, WithdrawalRequest, WithdrawalStatus
from referral.audit import record_audit
from referral.errors import (
    ValidationError, NotFoundError, InvalidStateTransition, InsufficientBalance, StorageFailure,
)
from referral.money import positive_amount
from referral.wallet_ledger import WalletLedger


REQUIRED_DETAILS = {
    "upi": ("upi_id",),
    "bank_transfer": ("account_holder", "account_number", "ifsc_code", "bank_name"),
}

OPEN_STATES = (WithdrawalStatus.PENDING.value, WithdrawalStatus.APPROVED.value)


class WithdrawalStateMachine:
    """
    pending -> approved -> completed
    pending | approved -> rejected

    completed and rejected are terminal. Funds move only on `complete`,
    where the wallet debit and the status flip share one transaction.
    """

    # -------------------------
    # Validation helpers
    # -------------------------
    @staticmethod
    def _validate_details(method: str, details) -> Dict[str, str]:
        methods = current_app.config.get("WITHDRAWAL_METHODS", tuple(REQUIRED_DETAILS))
        if method not in methods or method not in REQUIRED_DETAILS:
            raise ValidationError(f"Unsupported payment method: {method!r}")
        if not isinstance(details, dict):
            raise ValidationError("payment_details must be an object")

        cleaned = {}
        missing = []
        for key in REQUIRED_DETAILS[method]:
            value = details.get(key)
            value = str(value).strip() if value is not None else ""
            if not value:
                missing.append(key)
            cleaned[key] = value
        if missing:
            raise ValidationError(f"Missing payment details: {', '.join(missing)}", missing=missing)
        return cleaned

    @staticmethod
    def _require_admin(admin_id: int) -> User:
        admin = db.session.get(User, admin_id) if admin_id is not None else None
        if admin is None:
            raise NotFoundError(f"Administrator {admin_id} not found", admin_id=admin_id)
        if not admin.is_admin:
            raise ValidationError(f"User {admin_id} is not an administrator", admin_id=admin_id)
        return admin

    @staticmethod
    def _lock_request(request_id: int) -> WithdrawalRequest:
        try:
            req = (
                WithdrawalRequest.query.filter_by(id=request_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageFailure(f"Could not load withdrawal request {request_id}") from exc
        if req is None:
            raise NotFoundError(f"Withdrawal request {request_id} not found", request_id=request_id)
        return req

    @staticmethod
    def _check_source(req: WithdrawalRequest, allowed, target: str):
        if req.status not in allowed:
            request_id, current_status = req.id, req.status
            db.session.rollback()
            raise InvalidStateTransition(
                f"Cannot move withdrawal {request_id} from {current_status} to {target}",
                request_id=request_id,
                status=current_status,
            )

    @staticmethod
    def _commit(action: str, request_id: int):
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(f"Withdrawal {action} failed for request {request_id}: {exc}")
            raise StorageFailure(f"Could not {action} withdrawal {request_id}") from exc

    @staticmethod
    def open_amount(user_id: int) -> Decimal:
        """Sum of the user's pending and approved requests."""
        total = (
            db.session.query(db.func.coalesce(db.func.sum(WithdrawalRequest.amount), 0))
            .filter(WithdrawalRequest.user_id == user_id, WithdrawalRequest.status.in_(OPEN_STATES))
            .scalar()
        )
        return Decimal(str(total or 0))

    # -------------------------
    # Transitions
    # -------------------------
    @staticmethod
    def request(user_id: int, amount, method: str, details) -> WithdrawalRequest:
        """Create a pending request against the projected referral balance."""
        amount = positive_amount(amount)
        minimum = Decimal(str(current_app.config.get("WITHDRAWAL_MIN_AMOUNT", "1")))
        if amount < minimum:
            raise ValidationError(f"Minimum withdrawal amount is {minimum}", minimum=str(minimum))
        details = WithdrawalStateMachine._validate_details(method, details)
        if db.session.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)

        try:
            wallet = WalletLedger.get_wallet(user_id, lock=True)
            balance = Decimal(wallet.referral_balance) if wallet is not None else Decimal("0.00")
            projected = balance - WithdrawalStateMachine.open_amount(user_id)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageFailure(f"Could not read wallet for user {user_id}") from exc

        if amount > projected:
            db.session.rollback()
            ledger_logger.warning(
                f"WITHDRAWAL_REQUEST_REJECTED user={user_id} amount={amount} "
                f"balance={balance} available={projected}"
            )
            raise InsufficientBalance(
                "Insufficient balance for this withdrawal",
                requested=str(amount),
                available=str(max(projected, Decimal("0.00"))),
            )

        req = WithdrawalRequest(
            user_id=user_id,
            amount=amount,
            payment_method=method,
            payment_details=details,
            status=WithdrawalStatus.PENDING.value,
        )
        db.session.add(req)
        try:
            db.session.flush()
            record_audit(user_id, "withdrawal_requested", request_id=req.id, amount=amount, method=method)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageFailure(f"Could not create withdrawal for user {user_id}") from exc
        WithdrawalStateMachine._commit("request", req.id)

        ledger_logger.info(f"WITHDRAWAL_REQUESTED id={req.id} user={user_id} amount={amount} method={method}")
        return req

    @staticmethod
    def approve(request_id: int, admin_id: int, notes: Optional[str] = None) -> WithdrawalRequest:
        WithdrawalStateMachine._require_admin(admin_id)
        req = WithdrawalStateMachine._lock_request(request_id)
        WithdrawalStateMachine._check_source(
            req, (WithdrawalStatus.PENDING.value,), WithdrawalStatus.APPROVED.value
        )

        req.status = WithdrawalStatus.APPROVED.value
        req.admin_id = admin_id
        if notes:
            req.admin_notes = notes
        record_audit(admin_id, "withdrawal_approved", request_id=req.id, amount=req.amount, notes=notes)
        WithdrawalStateMachine._commit("approve", request_id)

        ledger_logger.info(f"WITHDRAWAL_APPROVED id={request_id} admin={admin_id}")
        return req

    @staticmethod
    def reject(request_id: int, admin_id: int, notes: str) -> WithdrawalRequest:
        notes = (notes or "").strip()
        if not notes:
            raise ValidationError("A rejection reason is required")
        WithdrawalStateMachine._require_admin(admin_id)
        req = WithdrawalStateMachine._lock_request(request_id)
        WithdrawalStateMachine._check_source(req, OPEN_STATES, WithdrawalStatus.REJECTED.value)

        req.status = WithdrawalStatus.REJECTED.value
        req.admin_id = admin_id
        req.admin_notes = notes
        req.processed_at = datetime.now(timezone.utc)
        record_audit(admin_id, "withdrawal_rejected", request_id=req.id, amount=req.amount, notes=notes)
        WithdrawalStateMachine._commit("reject", request_id)

        ledger_logger.info(f"WITHDRAWAL_REJECTED id={request_id} admin={admin_id} reason={notes!r}")
        return req

    @staticmethod
    def complete(request_id: int, admin_id: int, notes: Optional[str] = None) -> WithdrawalRequest:
        """
        Debit the wallet and mark the request completed in one transaction.
        If the referral balance no longer covers the amount the request stays
        approved and InsufficientBalance is raised. Never retried automatically.
        """
        WithdrawalStateMachine._require_admin(admin_id)
        req = WithdrawalStateMachine._lock_request(request_id)
        WithdrawalStateMachine._check_source(
            req, (WithdrawalStatus.APPROVED.value,), WithdrawalStatus.COMPLETED.value
        )
        user_id, amount = req.user_id, req.amount

        try:
            WalletLedger.debit(user_id, amount, commit=False)
        except (InsufficientBalance, StorageFailure, NotFoundError):
            db.session.rollback()
            ledger_logger.warning(f"WITHDRAWAL_COMPLETE_FAILED id={request_id} user={user_id} amount={amount}")
            raise

        req.status = WithdrawalStatus.COMPLETED.value
        req.admin_id = admin_id
        if notes:
            req.admin_notes = notes
        req.processed_at = datetime.now(timezone.utc)
        record_audit(admin_id, "withdrawal_completed", request_id=req.id, user_id=user_id, amount=amount)
        WithdrawalStateMachine._commit("complete", request_id)

        ledger_logger.info(f"WITHDRAWAL_COMPLETED id={request_id} user={user_id} amount={amount} admin={admin_id}")
        return req
