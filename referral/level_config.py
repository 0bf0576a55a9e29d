# referral/level_config.py
from decimal import Decimal
from typing import Dict, Any, List, Optional
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import LevelConfig, Plan, CommissionClass, PaymentClassification
from referral.errors import ValidationError, NotFoundError, StorageFailure
from referral.money import to_decimal


ZERO = Decimal("0")
HUNDRED = Decimal("100")

_CLASS_FOR_CLASSIFICATION = {
    PaymentClassification.FIRST_PAYMENT.value: CommissionClass.INSTANT.value,
    PaymentClassification.RECURRING_PAYMENT.value: CommissionClass.MONTHLY.value,
}


class LevelConfigStore:
    """
    Per-level commission percentages for the two commission classes.

    A curve is looked up in this order:
      1. level_configs rows scoped to the plan
      2. the plan's inline arrays (commission_instant / commission_monthly)
      3. global level_configs rows (plan_id IS NULL)
    Whatever the source, the result covers levels 1..REFERRAL_MAX_DEPTH and
    anything not configured is 0.
    """

    @staticmethod
    def max_depth() -> int:
        return int(current_app.config.get("REFERRAL_MAX_DEPTH", 10))

    @staticmethod
    def commission_class_for(classification: str) -> str:
        try:
            return _CLASS_FOR_CLASSIFICATION[classification]
        except KeyError:
            raise ValidationError(f"Unknown payment classification: {classification!r}")

    @staticmethod
    def _check_class(commission_class: str):
        if commission_class not in (CommissionClass.INSTANT.value, CommissionClass.MONTHLY.value):
            raise ValidationError(f"Unknown commission class: {commission_class!r}")

    @staticmethod
    def _get_plan(plan_id: Optional[int]) -> Optional[Plan]:
        if plan_id is None:
            return None
        plan = db.session.get(Plan, plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found", plan_id=plan_id)
        return plan

    @staticmethod
    def _rows(plan_id: Optional[int]) -> List[LevelConfig]:
        query = LevelConfig.query
        if plan_id is None:
            query = query.filter(LevelConfig.plan_id.is_(None))
        else:
            query = query.filter(LevelConfig.plan_id == plan_id)
        return query.order_by(LevelConfig.level).all()

    @staticmethod
    def _empty_curve() -> Dict[int, Decimal]:
        return {level: ZERO for level in range(1, LevelConfigStore.max_depth() + 1)}

    @staticmethod
    def _curve_from_rows(rows: List[LevelConfig], commission_class: str) -> Dict[int, Decimal]:
        curve = LevelConfigStore._empty_curve()
        attr = f"{commission_class}_percentage"
        for row in rows:
            if row.level in curve:
                curve[row.level] = Decimal(getattr(row, attr) or 0)
        return curve

    @staticmethod
    def _curve_from_array(values) -> Dict[int, Decimal]:
        curve = LevelConfigStore._empty_curve()
        for index, value in enumerate(values or []):
            level = index + 1
            if level in curve:
                curve[level] = to_decimal(value, "percentage") if value is not None else ZERO
        return curve

    @staticmethod
    def _source(plan: Optional[Plan]):
        """Return (source_name, rows_or_plan) for the scope that wins resolution."""
        if plan is not None:
            rows = LevelConfigStore._rows(plan.id)
            if rows:
                return "plan", rows
            if plan.commission_instant is not None or plan.commission_monthly is not None:
                return "inline", plan
        return "global", LevelConfigStore._rows(None)

    @staticmethod
    def resolve(plan_id: Optional[int], commission_class: str) -> Dict[int, Decimal]:
        """Return {level: percentage} for levels 1..MAX_DEPTH."""
        LevelConfigStore._check_class(commission_class)
        try:
            plan = LevelConfigStore._get_plan(plan_id)
            source, data = LevelConfigStore._source(plan)
        except SQLAlchemyError as exc:
            current_app.logger.error(f"Level config lookup failed for plan {plan_id}: {exc}")
            raise StorageFailure("Could not load level configuration") from exc

        if source == "inline":
            values = data.commission_instant if commission_class == CommissionClass.INSTANT.value \
                else data.commission_monthly
            return LevelConfigStore._curve_from_array(values)
        return LevelConfigStore._curve_from_rows(data, commission_class)

    @staticmethod
    def _validate_percentage(value, label: str) -> Decimal:
        pct = to_decimal(value, label)
        if pct < ZERO:
            raise ValidationError(f"{label} must not be negative")
        if pct > HUNDRED:
            raise ValidationError(f"{label} must not exceed 100")
        return pct

    @staticmethod
    def set_level(level: int, instant, monthly, plan_id: Optional[int] = None) -> LevelConfig:
        """Insert or update the percentage pair for one level of a scope."""
        max_depth = LevelConfigStore.max_depth()
        if not isinstance(level, int) or isinstance(level, bool) or level < 1 or level > max_depth:
            raise ValidationError(f"Level must be between 1 and {max_depth}")
        instant_pct = LevelConfigStore._validate_percentage(instant, "instant_percentage")
        monthly_pct = LevelConfigStore._validate_percentage(monthly, "monthly_percentage")
        LevelConfigStore._get_plan(plan_id)

        try:
            row = LevelConfig.query.filter_by(plan_id=plan_id, level=level).first()
            if row is None:
                row = LevelConfig(plan_id=plan_id, level=level)
                db.session.add(row)
            row.instant_percentage = instant_pct
            row.monthly_percentage = monthly_pct
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(f"set_level failed (plan={plan_id}, level={level}): {exc}")
            raise StorageFailure("Could not save level configuration") from exc

        current_app.logger.info(
            f"Level config saved: plan={plan_id} level={level} "
            f"instant={instant_pct}% monthly={monthly_pct}%"
        )
        return row

    @staticmethod
    def set_curve(instant=None, monthly=None, plan_id: Optional[int] = None) -> List[LevelConfig]:
        """Replace every row of a scope with the two arrays (index 0 = level 1)."""
        instant = list(instant or [])
        monthly = list(monthly or [])
        max_depth = LevelConfigStore.max_depth()
        length = max(len(instant), len(monthly))
        if length > max_depth:
            raise ValidationError(f"A curve may define at most {max_depth} levels")

        instant += [0] * (length - len(instant))
        monthly += [0] * (length - len(monthly))
        pairs = [
            (
                LevelConfigStore._validate_percentage(i, "instant_percentage"),
                LevelConfigStore._validate_percentage(m, "monthly_percentage"),
            )
            for i, m in zip(instant, monthly)
        ]
        LevelConfigStore._get_plan(plan_id)

        try:
            scope = LevelConfig.query.filter(
                LevelConfig.plan_id.is_(None) if plan_id is None else LevelConfig.plan_id == plan_id
            )
            scope.delete(synchronize_session=False)
            rows = []
            for index, (instant_pct, monthly_pct) in enumerate(pairs):
                row = LevelConfig(
                    plan_id=plan_id,
                    level=index + 1,
                    instant_percentage=instant_pct,
                    monthly_percentage=monthly_pct,
                )
                db.session.add(row)
                rows.append(row)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(f"set_curve failed (plan={plan_id}): {exc}")
            raise StorageFailure("Could not save level configuration") from exc

        current_app.logger.info(f"Level curve replaced for plan={plan_id}: {length} levels")
        return rows

    @staticmethod
    def describe(plan_id: Optional[int] = None) -> Dict[str, Any]:
        """Distribution summary for the admin screen."""
        plan = LevelConfigStore._get_plan(plan_id)
        source, _ = LevelConfigStore._source(plan)
        instant = LevelConfigStore.resolve(plan_id, CommissionClass.INSTANT.value)
        monthly = LevelConfigStore.resolve(plan_id, CommissionClass.MONTHLY.value)

        levels = [
            {
                "level": level,
                "instantPercentage": str(instant[level]),
                "monthlyPercentage": str(monthly[level]),
            }
            for level in sorted(instant)
        ]
        return {
            "planId": plan_id,
            "source": source,
            "maxDepth": LevelConfigStore.max_depth(),
            "levels": levels,
            "totalInstantPercentage": str(sum(instant.values(), ZERO)),
            "totalMonthlyPercentage": str(sum(monthly.values(), ZERO)),
        }
