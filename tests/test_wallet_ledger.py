from decimal import Decimal

import pytest

from extensions import db
from models import User, Wallet
from referral.errors import InsufficientBalance, NotFoundError, ValidationError
from referral.wallet_ledger import WalletLedger


def _assert_invariants(wallet):
    assert wallet.total_balance == wallet.referral_balance + wallet.saving_balance
    assert wallet.total_earnings >= wallet.total_withdrawn


def test_referral_credit_updates_all_totals(make_user):
    user = make_user()
    wallet = WalletLedger.credit(user.id, "referral", "100")
    assert wallet.referral_balance == Decimal("100.00")
    assert wallet.total_balance == Decimal("100.00")
    assert wallet.total_earnings == Decimal("100.00")
    _assert_invariants(wallet)


def test_saving_credit_keeps_total_in_sync(make_user):
    user = make_user()
    WalletLedger.credit(user.id, "referral", "100")
    wallet = WalletLedger.credit(user.id, "saving", "50.25")
    assert wallet.saving_balance == Decimal("50.25")
    assert wallet.referral_balance == Decimal("100.00")
    assert wallet.total_balance == Decimal("150.25")
    _assert_invariants(wallet)


def test_debit_draws_from_referral_bucket_only(make_user):
    user = make_user()
    WalletLedger.credit(user.id, "referral", "100")
    WalletLedger.credit(user.id, "saving", "500")
    wallet = WalletLedger.debit(user.id, "30")
    assert wallet.referral_balance == Decimal("70.00")
    assert wallet.saving_balance == Decimal("500.00")
    assert wallet.total_balance == Decimal("570.00")
    assert wallet.total_withdrawn == Decimal("30.00")
    _assert_invariants(wallet)


def test_overdraft_is_rejected_without_side_effects(make_user):
    user = make_user()
    WalletLedger.credit(user.id, "referral", "100")
    WalletLedger.credit(user.id, "saving", "500")

    with pytest.raises(InsufficientBalance) as exc_info:
        WalletLedger.debit(user.id, "100.01")
    assert exc_info.value.details["available"] == "100.00"

    wallet = WalletLedger.get_wallet(user.id)
    assert wallet.referral_balance == Decimal("100.00")
    assert wallet.total_withdrawn == 0


def test_exact_balance_can_be_withdrawn(make_user):
    user = make_user()
    WalletLedger.credit(user.id, "referral", "200")
    wallet = WalletLedger.debit(user.id, "200")
    assert wallet.referral_balance == 0
    assert wallet.total_withdrawn == Decimal("200.00")


@pytest.mark.parametrize("amount", ["0", "-5", "abc", None, "0.001"])
def test_non_positive_or_malformed_amounts(make_user, amount):
    user = make_user()
    with pytest.raises(ValidationError):
        WalletLedger.credit(user.id, "referral", amount)
    with pytest.raises(ValidationError):
        WalletLedger.debit(user.id, amount)


def test_unknown_bucket(make_user):
    user = make_user()
    with pytest.raises(ValidationError):
        WalletLedger.credit(user.id, "gold", "10")


def test_unknown_user(app):
    with pytest.raises(NotFoundError):
        WalletLedger.credit(9999, "referral", "10")
    with pytest.raises(NotFoundError):
        WalletLedger.debit(9999, "10")


def test_credit_opens_missing_wallet(app):
    user = User(full_name="No Wallet", phone="0600000000")
    db.session.add(user)
    db.session.commit()
    assert WalletLedger.get_wallet(user.id) is None

    wallet = WalletLedger.credit(user.id, "referral", "5")
    assert wallet.referral_balance == Decimal("5.00")
    assert Wallet.query.filter_by(user_id=user.id).count() == 1


def test_debit_without_wallet_is_insufficient(app):
    user = User(full_name="No Wallet", phone="0600000001")
    db.session.add(user)
    db.session.commit()
    with pytest.raises(InsufficientBalance):
        WalletLedger.debit(user.id, "1")


def test_open_wallet_is_idempotent(make_user):
    user = make_user()
    first = WalletLedger.open_wallet(user.id)
    second = WalletLedger.open_wallet(user.id)
    assert first.id == second.id
    assert Wallet.query.filter_by(user_id=user.id).count() == 1


def test_uncommitted_credit_rolls_back_with_caller(make_user):
    user = make_user()
    WalletLedger.credit(user.id, "referral", "40", commit=False)
    db.session.rollback()
    assert WalletLedger.get_wallet(user.id).referral_balance == 0


def test_earnings_accumulate_over_many_credits(make_user):
    user = make_user()
    for amount in ("0.25", "0.50", "0.25"):
        WalletLedger.credit(user.id, "referral", amount)
    wallet = WalletLedger.debit(user.id, "1.00")
    assert wallet.referral_balance == 0
    assert wallet.total_earnings == Decimal("1.00")
    _assert_invariants(wallet)


def test_sub_minor_unit_amounts_are_rejected_not_rounded(make_user):
    user = make_user()
    with pytest.raises(ValidationError):
        WalletLedger.credit(user.id, "referral", "10.005")
    assert WalletLedger.get_wallet(user.id).referral_balance == 0

    wallet = WalletLedger.credit(user.id, "referral", "10.500")
    assert wallet.referral_balance == Decimal("10.50")
