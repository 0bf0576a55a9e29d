# referral/wallet_ledger.py
"""
The only writer of wallet balance columns.

Every mutation is one conditional UPDATE whose new values are expressed in
terms of the old ones, so concurrent credits and debits against the same
row serialize in the database instead of racing through Python.
"""
from decimal import Decimal
from typing import Optional
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from logger import ledger_logger
from models import User, Wallet
from referral.errors import ValidationError, NotFoundError, InsufficientBalance, StorageFailure
from referral.money import positive_amount


BUCKETS = ("referral", "saving")


class WalletLedger:

    @staticmethod
    def get_wallet(user_id: int, lock: bool = False) -> Optional[Wallet]:
        """Fresh read of the wallet row; `lock=True` issues SELECT ... FOR UPDATE."""
        stmt = db.select(Wallet).filter_by(user_id=user_id).execution_options(populate_existing=True)
        if lock:
            stmt = stmt.with_for_update()
        return db.session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def open_wallet(user_id: int, commit: bool = True) -> Wallet:
        """Create the user's wallet if it does not exist yet."""
        wallet = WalletLedger.get_wallet(user_id)
        if wallet is not None:
            return wallet
        if db.session.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)

        wallet = Wallet(
            user_id=user_id,
            referral_balance=Decimal("0.00"),
            saving_balance=Decimal("0.00"),
            total_balance=Decimal("0.00"),
            total_earnings=Decimal("0.00"),
            total_withdrawn=Decimal("0.00"),
            currency=current_app.config.get("CURRENCY", "INR"),
        )
        db.session.add(wallet)
        try:
            if commit:
                db.session.commit()
            else:
                db.session.flush()
        except IntegrityError as exc:
            if not commit:
                # Caller owns the transaction and must roll it back
                raise StorageFailure(f"Wallet for user {user_id} opened concurrently") from exc
            db.session.rollback()
            existing = WalletLedger.get_wallet(user_id)
            if existing is None:
                raise StorageFailure(f"Could not open wallet for user {user_id}") from exc
            return existing
        except SQLAlchemyError as exc:
            if commit:
                db.session.rollback()
            raise StorageFailure(f"Could not open wallet for user {user_id}") from exc

        ledger_logger.info(f"WALLET_OPENED user={user_id}")
        return wallet

    @staticmethod
    def credit(user_id: int, bucket: str, amount, commit: bool = True) -> Wallet:
        """
        Add `amount` to the referral or saving bucket.
        total_balance is recomputed in the same statement and total_earnings grows.
        Opens the wallet on first credit.
        """
        if bucket not in BUCKETS:
            raise ValidationError(f"Unknown wallet bucket: {bucket!r}")
        amount = positive_amount(amount)

        WalletLedger.open_wallet(user_id, commit=commit)

        if bucket == "referral":
            values = {
                "referral_balance": Wallet.referral_balance + amount,
                "total_balance": (Wallet.referral_balance + amount) + Wallet.saving_balance,
            }
        else:
            values = {
                "saving_balance": Wallet.saving_balance + amount,
                "total_balance": Wallet.referral_balance + (Wallet.saving_balance + amount),
            }
        values["total_earnings"] = Wallet.total_earnings + amount

        stmt = (
            db.update(Wallet)
            .where(Wallet.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.session.execute(stmt)
            if result.rowcount != 1:
                raise StorageFailure(f"Wallet credit for user {user_id} matched {result.rowcount} rows")
            if commit:
                db.session.commit()
        except SQLAlchemyError as exc:
            if commit:
                db.session.rollback()
            current_app.logger.error(f"Wallet credit failed for user {user_id}: {exc}")
            raise StorageFailure(f"Wallet credit failed for user {user_id}") from exc

        wallet = WalletLedger.get_wallet(user_id)
        ledger_logger.info(
            f"CREDIT user={user_id} bucket={bucket} amount={amount} "
            f"referral={wallet.referral_balance} saving={wallet.saving_balance} total={wallet.total_balance}"
        )
        return wallet

    @staticmethod
    def debit(user_id: int, amount, commit: bool = True) -> Wallet:
        """
        Withdraw `amount` from the referral bucket.
        Applies only when referral_balance >= amount; otherwise nothing changes
        and InsufficientBalance is raised.
        """
        amount = positive_amount(amount)

        stmt = (
            db.update(Wallet)
            .where(Wallet.user_id == user_id, Wallet.referral_balance >= amount)
            .values(
                referral_balance=Wallet.referral_balance - amount,
                total_balance=(Wallet.referral_balance - amount) + Wallet.saving_balance,
                total_withdrawn=Wallet.total_withdrawn + amount,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.session.execute(stmt)
            applied = result.rowcount == 1
            if applied and commit:
                db.session.commit()
        except SQLAlchemyError as exc:
            if commit:
                db.session.rollback()
            current_app.logger.error(f"Wallet debit failed for user {user_id}: {exc}")
            raise StorageFailure(f"Wallet debit failed for user {user_id}") from exc

        if not applied:
            wallet = WalletLedger.get_wallet(user_id)
            if wallet is None and db.session.get(User, user_id) is None:
                raise NotFoundError(f"User {user_id} not found", user_id=user_id)
            available = wallet.referral_balance if wallet is not None else Decimal("0.00")
            ledger_logger.warning(
                f"DEBIT_REJECTED user={user_id} amount={amount} referral={available}"
            )
            raise InsufficientBalance(
                "Insufficient referral balance",
                requested=str(amount),
                available=str(available),
            )

        wallet = WalletLedger.get_wallet(user_id)
        ledger_logger.info(
            f"DEBIT user={user_id} amount={amount} "
            f"referral={wallet.referral_balance} total={wallet.total_balance} withdrawn={wallet.total_withdrawn}"
        )
        return wallet
