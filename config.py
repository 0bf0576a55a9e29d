# ==========================================================================================================
# -------------- Configuration file for the gold-savings referral ledger ------------------------------------
# ==========================================================================================================
import os
from decimal import Decimal
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


def _database_uri(default):
    url = os.getenv("DATABASE_URL") or default
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+pg8000://", 1)
    return url


class Config:

    SECRET_KEY = os.getenv("SECRET_KEY")
    if not SECRET_KEY:
        raise ValueError("SECRET_KEY must be set")

    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = os.getenv("DEBUG", "False").lower() in ("true", "1", "t")
    TESTING = False

    SQLALCHEMY_DATABASE_URI = _database_uri(
        f"sqlite:///{os.path.join(basedir, 'instance', 'goldsave.db')}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # Referral program
    REFERRAL_MAX_DEPTH = int(os.getenv("REFERRAL_MAX_DEPTH", "10"))
    REFERRAL_CODE_LENGTH = 8

    # Money
    CURRENCY = os.getenv("CURRENCY", "INR")
    CURRENCY_MINOR_UNIT = int(os.getenv("CURRENCY_MINOR_UNIT", "2"))

    # Withdrawals
    WITHDRAWAL_MIN_AMOUNT = Decimal(os.getenv("WITHDRAWAL_MIN_AMOUNT", "1"))
    WITHDRAWAL_METHODS = ("upi", "bank_transfer")

    # Payment gateway callback
    PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET")

    LOG_DIR = os.getenv("LOG_DIR", "logs")


class ProductionConfig(Config):
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    PAYMENT_WEBHOOK_SECRET = "test-webhook-secret"
    WITHDRAWAL_MIN_AMOUNT = Decimal("1")
