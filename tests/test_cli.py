from decimal import Decimal

import pytest

from extensions import db
from models import User
from referral.wallet_ledger import WalletLedger


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_make_admin_promotes_existing_user(runner, make_user):
    user = make_user()
    result = runner.invoke(args=["ledger", "make-admin", user.phone])
    assert result.exit_code == 0, result.output
    assert "is now admin" in result.output

    db.session.expire_all()
    assert db.session.get(User, user.id).is_admin


def test_make_admin_creates_missing_user(runner):
    result = runner.invoke(args=["ledger", "make-admin", "0711111111", "--name", "Ops", "--password", "s3cret!"])
    assert result.exit_code == 0, result.output

    db.session.expire_all()
    user = User.query.filter_by(phone="0711111111").one()
    assert user.role == "admin"
    assert user.referral_code
    assert user.check_password("s3cret!")
    assert WalletLedger.get_wallet(user.id) is not None


def test_make_admin_needs_a_name_for_new_users(runner):
    result = runner.invoke(args=["ledger", "make-admin", "0722222222"])
    assert result.exit_code != 0
    assert "--name" in result.output


def test_build_ancestry(runner, make_user):
    referrer = make_user()
    late = make_user()
    result = runner.invoke(args=["ledger", "build-ancestry", str(late.id), "--code", referrer.referral_code])
    assert result.exit_code == 0, result.output
    assert "1 edge(s) created" in result.output
    assert f"L1: user {referrer.id}" in result.output


def test_build_ancestry_unknown_code(runner, make_user):
    late = make_user()
    result = runner.invoke(args=["ledger", "build-ancestry", str(late.id), "--code", "NOPE0000"])
    assert result.exit_code == 0, result.output
    assert "0 edge(s) created" in result.output

    result = runner.invoke(args=["ledger", "build-ancestry", "9999"])
    assert result.exit_code != 0
    assert "not found" in result.output


def test_distribute(runner, chain, levels, make_payment):
    a, b = chain(2)
    levels(instant=[10])
    payment = make_payment(b, "300")

    result = runner.invoke(args=["ledger", "distribute", str(payment.id)])
    assert result.exit_code == 0, result.output
    assert '"creditsIssued": 1' in result.output

    db.session.expire_all()
    assert WalletLedger.get_wallet(a.id).referral_balance == Decimal("30.00")

    result = runner.invoke(args=["ledger", "distribute", "4242"])
    assert result.exit_code != 0
    assert "not_found" in result.output


def test_level_config(runner, levels):
    levels(instant=[10, 5], monthly=[1])
    result = runner.invoke(args=["ledger", "level-config"])
    assert result.exit_code == 0, result.output
    assert "Source: global" in result.output
    assert "L 1" in result.output
