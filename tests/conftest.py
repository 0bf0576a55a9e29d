"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
import tempfile
from pathlib import Path

# Minimal environment before config.py is imported
os.environ.setdefault("SECRET_KEY", "test_secret_key_for_testing_only")
os.environ.setdefault("FLASK_ENV", "testing")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="ledger-logs-"))

# Add the project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import hashlib
import hmac
import itertools
import json
from decimal import Decimal

import pytest
from flask import g

from app import create_app
from config import TestingConfig
from extensions import db
from models import User, Plan, Payment, PaymentStatus, PaymentClassification
from referral.level_config import LevelConfigStore
from referral.tree import ReferralTreeBuilder
from referral.wallet_ledger import WalletLedger


class _Config(TestingConfig):
    LOG_DIR = os.environ["LOG_DIR"]


@pytest.fixture
def app():
    application = create_app(_Config)
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


_phones = itertools.count(700000001)
_references = itertools.count(1)


@pytest.fixture
def make_user(app):
    """Create a user; `referrer` builds the ancestry the way registration does."""

    def _make(name=None, role="user", referrer=None):
        phone = f"0{next(_phones)}"
        user = User(full_name=name or f"User {phone}", phone=phone, role=role)
        db.session.add(user)
        db.session.commit()
        ReferralTreeBuilder.on_registration(user, referrer.referral_code if referrer else None)
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(name="Admin", role="admin")


@pytest.fixture
def chain(make_user):
    """chain(n) -> [root, child, grandchild, ...], each referred by the previous one."""

    def _chain(length):
        users = []
        for index in range(length):
            users.append(make_user(name=f"Chain {index}", referrer=users[-1] if users else None))
        return users

    return _chain


@pytest.fixture
def fund(app):
    """Credit a user's referral (or saving) bucket through the ledger."""

    def _fund(user, amount, bucket="referral"):
        return WalletLedger.credit(user.id, bucket, Decimal(str(amount)))

    return _fund


@pytest.fixture
def levels(app):
    """levels([10, 5], monthly=[...], plan_id=None) replaces a commission curve."""

    def _levels(instant=None, monthly=None, plan_id=None):
        return LevelConfigStore.set_curve(instant=instant or [], monthly=monthly or [], plan_id=plan_id)

    return _levels


@pytest.fixture
def make_plan(app):
    def _make(name="Monthly Gold", instant=None, monthly=None):
        plan = Plan(name=name, commission_instant=instant, commission_monthly=monthly)
        db.session.add(plan)
        db.session.commit()
        return plan

    return _make


@pytest.fixture
def make_payment(app):
    def _make(user, amount, classification=PaymentClassification.FIRST_PAYMENT.value,
              plan=None, status=PaymentStatus.COMPLETED.value):
        payment = Payment(
            user_id=user.id,
            plan_id=plan.id if plan else None,
            reference=f"pay_test_{next(_references)}",
            provider="test",
            classification=classification,
            status=status,
            amount=Decimal(str(amount)),
        )
        db.session.add(payment)
        db.session.commit()
        return payment

    return _make


@pytest.fixture
def login(client):
    """Attach a Flask-Login session for `user` to the test client."""

    def _login(user):
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user.id)
            sess["_fresh"] = True
        # requests share the fixture's app context, so drop the user cached on g
        g.pop("_login_user", None)
        return client

    return _login


@pytest.fixture
def sign():
    def _sign(payload, secret=TestingConfig.PAYMENT_WEBHOOK_SECRET):
        body = json.dumps(payload).encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return body, signature

    return _sign
