# models.py: Flask-SQLAlchemy models for the referral ledger
from datetime import datetime, timezone
from decimal import Decimal
import enum
from flask_login import UserMixin
from sqlalchemy import UniqueConstraint, Index, CheckConstraint, text
from extensions import db
from werkzeug.security import check_password_hash, generate_password_hash

# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class PaymentStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentClassification(enum.Enum):
    FIRST_PAYMENT = "first_payment"
    RECURRING_PAYMENT = "recurring_payment"


class CommissionClass(enum.Enum):
    INSTANT = "instant"
    MONTHLY = "monthly"


class CommissionStatus(enum.Enum):
    PENDING = "pending"
    PAID = "paid"


class WithdrawalStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


def utcnow():
    return datetime.now(timezone.utc)


def _money(value):
    return str(value if value is not None else Decimal("0.00"))


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

# ===========================================================
# USERS
# ===========================================================

class User(UserMixin, db.Model, BaseMixin):
    """Subscriber account. `referred_by` is the root of the ancestor chain and never changes."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(150), nullable=False)
    phone = db.Column(db.String(20), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=True)
    role = db.Column(db.String(20), nullable=False, default="user", index=True)
    password_hash = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, default=True)

    referral_code = db.Column(db.String(20), unique=True, nullable=True)
    referred_by = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True)

    wallet = db.relationship('Wallet', uselist=False, back_populates='user', cascade="all,delete-orphan")
    referrer = db.relationship('User', remote_side=[id])
    ancestor_edges = db.relationship(
        'ReferralEdge',
        foreign_keys='ReferralEdge.descendant_id',
        back_populates='descendant',
        cascade="all,delete-orphan",
        passive_deletes=True,
        order_by='ReferralEdge.level',
    )

    __table_args__ = (
        Index('idx_user_referral_code', 'referral_code'),
    )

    @property
    def is_admin(self):
        return self.role == "admin"

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return bool(self.password_hash) and check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            "id": self.id,
            "fullName": self.full_name,
            "phone": self.phone,
            "role": self.role,
            "referralCode": self.referral_code,
            "referredBy": self.referred_by,
        }

    def __repr__(self):
        return f'<User {self.id} {self.phone}>'

# ===========================================================
# PLANS & LEVEL CONFIGURATION
# ===========================================================

class Plan(db.Model, BaseMixin):
    """Plan variant. Catalog CRUD lives elsewhere; only the commission curves matter here."""
    __tablename__ = 'plans'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    is_one_time = db.Column(db.Boolean, default=False)
    # Inline curves, index 0 == level 1. Lengths may differ (e.g. 10 instant, 5 monthly).
    commission_instant = db.Column(db.JSON, nullable=True)
    commission_monthly = db.Column(db.JSON, nullable=True)
    is_active = db.Column(db.Boolean, default=True)


class LevelConfig(db.Model, BaseMixin):
    """Percentage pair for one referral depth, global (plan_id NULL) or per plan."""
    __tablename__ = 'level_configs'

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, db.ForeignKey('plans.id', ondelete='CASCADE'), nullable=True, index=True)
    level = db.Column(db.Integer, nullable=False)
    instant_percentage = db.Column(db.Numeric(7, 4), nullable=False, default=0)
    monthly_percentage = db.Column(db.Numeric(7, 4), nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint('plan_id', 'level', name='uq_level_config_scope_level'),
        CheckConstraint('level >= 1', name='chk_level_config_level'),
        CheckConstraint('instant_percentage >= 0 AND monthly_percentage >= 0', name='chk_level_config_percentages'),
    )

    def to_dict(self):
        return {
            "planId": self.plan_id,
            "level": self.level,
            "instantPercentage": str(self.instant_percentage),
            "monthlyPercentage": str(self.monthly_percentage),
        }

# ===========================================================
# REFERRAL TREE
# ===========================================================

class ReferralEdge(db.Model):
    """Closure row: `ancestor` sits `level` steps above `descendant` (1 = direct referrer). Append-only."""
    __tablename__ = 'referral_edges'

    id = db.Column(db.Integer, primary_key=True)
    descendant_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    ancestor_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False, index=True)
    level = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    descendant = db.relationship('User', foreign_keys=[descendant_id], back_populates='ancestor_edges')
    ancestor = db.relationship('User', foreign_keys=[ancestor_id])

    __table_args__ = (
        UniqueConstraint('descendant_id', 'level', name='uq_referral_edge_descendant_level'),
        UniqueConstraint('descendant_id', 'ancestor_id', name='uq_referral_edge_relationship'),
        CheckConstraint('level >= 1', name='chk_referral_edge_level'),
        Index('idx_referral_edge_ancestor_level', 'ancestor_id', 'level'),
    )

# ===========================================================
# PAYMENTS & COMMISSIONS
# ===========================================================

class Payment(db.Model):
    """Completed monetary event. Immutable once recorded."""
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete='CASCADE'), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey('plans.id', ondelete='SET NULL'), nullable=True)
    reference = db.Column(db.String(128), nullable=False)
    provider = db.Column(db.String(50))
    classification = db.Column(db.String(30), nullable=False, default=PaymentClassification.FIRST_PAYMENT.value)
    status = db.Column(db.String(20), nullable=False, default=PaymentStatus.COMPLETED.value)
    currency = db.Column(db.String(8), nullable=False, default='INR')
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    raw_response = db.Column(db.JSON)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    user = db.relationship('User', backref=db.backref('payments', lazy=True))
    plan = db.relationship('Plan')

    __table_args__ = (
        UniqueConstraint('reference', name='uq_payments_reference'),
        CheckConstraint('amount > 0', name='chk_payment_amount'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "planId": self.plan_id,
            "reference": self.reference,
            "classification": self.classification,
            "status": self.status,
            "amount": _money(self.amount),
            "currency": self.currency,
        }


class Commission(db.Model, BaseMixin):
    """One referral commission per (source payment, recipient). Only `status` ever changes."""
    __tablename__ = 'commissions'

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    source_user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True)
    source_payment_id = db.Column(db.Integer, db.ForeignKey('payments.id', ondelete='CASCADE'), nullable=False, index=True)
    level = db.Column(db.Integer, nullable=False)
    commission_class = db.Column(db.String(20), nullable=False)
    percentage = db.Column(db.Numeric(7, 4), nullable=False)
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=CommissionStatus.PENDING.value, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_by = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)

    recipient = db.relationship('User', foreign_keys=[recipient_id], backref='commissions_earned')
    source_user = db.relationship('User', foreign_keys=[source_user_id])
    payment = db.relationship('Payment', backref='commissions')

    __table_args__ = (
        UniqueConstraint('source_payment_id', 'recipient_id', name='uq_commission_payment_recipient'),
        CheckConstraint('amount > 0', name='chk_commission_amount'),
        Index('idx_commission_recipient_level', 'recipient_id', 'level'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "recipientId": self.recipient_id,
            "sourceUserId": self.source_user_id,
            "sourcePaymentId": self.source_payment_id,
            "level": self.level,
            "commissionClass": self.commission_class,
            "percentage": str(self.percentage),
            "amount": _money(self.amount),
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
        }

# ===========================================================
# WALLET & WITHDRAWALS
# ===========================================================

class Wallet(db.Model, BaseMixin):
    """Single mutable aggregate per user. Written only through WalletLedger."""
    __tablename__ = 'wallets'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True, index=True)
    referral_balance = db.Column(db.Numeric(18, 2), nullable=False, default=0, server_default=text("0"))
    saving_balance = db.Column(db.Numeric(18, 2), nullable=False, default=0, server_default=text("0"))
    total_balance = db.Column(db.Numeric(18, 2), nullable=False, default=0, server_default=text("0"))
    total_earnings = db.Column(db.Numeric(18, 2), nullable=False, default=0, server_default=text("0"))
    total_withdrawn = db.Column(db.Numeric(18, 2), nullable=False, default=0, server_default=text("0"))
    currency = db.Column(db.String(10), default='INR')

    user = db.relationship('User', back_populates='wallet')

    __table_args__ = (
        CheckConstraint('referral_balance >= 0', name='chk_wallet_referral_balance'),
        CheckConstraint('saving_balance >= 0', name='chk_wallet_saving_balance'),
        CheckConstraint('total_withdrawn >= 0', name='chk_wallet_total_withdrawn'),
    )

    def to_dict(self):
        return {
            "userId": self.user_id,
            "referralBalance": _money(self.referral_balance),
            "savingBalance": _money(self.saving_balance),
            "totalBalance": _money(self.total_balance),
            "totalEarnings": _money(self.total_earnings),
            "totalWithdrawn": _money(self.total_withdrawn),
            "currency": self.currency,
        }


class WithdrawalRequest(db.Model, BaseMixin):
    __tablename__ = 'withdrawal_requests'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete='CASCADE'), nullable=False, index=True)
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    payment_method = db.Column(db.String(30), nullable=False)
    payment_details = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=WithdrawalStatus.PENDING.value, index=True)
    admin_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship('User', foreign_keys=[user_id], backref='withdrawal_requests')
    admin = db.relationship('User', foreign_keys=[admin_id])

    __table_args__ = (
        CheckConstraint('amount > 0', name='chk_withdrawal_amount'),
        Index('idx_withdrawal_user_status', 'user_id', 'status'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "amount": _money(self.amount),
            "paymentMethod": self.payment_method,
            "paymentDetails": self.payment_details,
            "status": self.status,
            "adminId": self.admin_id,
            "adminNotes": self.admin_notes,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
        }

# ===========================================================
# AUDITING
# ===========================================================

class AuditLog(db.Model, BaseMixin):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True)
    action = db.Column(db.String(100), nullable=False, index=True)
    details = db.Column(db.JSON)
