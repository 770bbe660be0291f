"""Plan context and feature gates."""

from datetime import datetime, timedelta, timezone

from storefront.billing.subscriptions import next_month_reset
from storefront.core.feature_gates import FREE_TIER_LIMITS, PLAN_CATALOG, FeatureGate
from storefront.core.models import Plan, Store, Subscription, UserAccount


def _user(db, email: str = "dono@example.com") -> UserAccount:
    user = UserAccount(email=email, name="Dono")
    db.add(user)
    db.commit()
    return user


def _plan(db, plan_type: str = "ESSENTIAL") -> Plan:
    data = next(p for p in PLAN_CATALOG if p["type"] == plan_type)
    plan = Plan(**data)
    db.add(plan)
    db.commit()
    return plan


def _subscribe(db, user, plan, status: str = "ACTIVE", used: int = 0, reset_at=None) -> Subscription:
    sub = Subscription(
        user_id=user.id,
        plan_id=plan.id,
        status=status,
        stripe_subscription_id=f"sub_{user.id[:8]}",
        ai_rewrites_used_this_month=used,
        ai_rewrites_reset_at=reset_at or datetime.now(timezone.utc) + timedelta(days=10),
    )
    db.add(sub)
    db.commit()
    return sub


def test_free_tier_without_subscription(db) -> None:
    user = _user(db)
    gate = FeatureGate(db, user.id)

    assert not gate.has_active_subscription
    assert gate.limits == FREE_TIER_LIMITS
    decision = gate.check_can_activate_store()
    assert not decision.allowed and decision.requires_subscription
    assert not gate.check_can_use_ai_rewrite().allowed
    assert gate.check_can_create_store().allowed


def test_free_tier_store_limit(db) -> None:
    user = _user(db)
    db.add(Store(user_id=user.id, name="Loja", slug="loja", category="Padaria", city="Santos"))
    db.commit()

    decision = FeatureGate(db, user.id).check_can_create_store()
    assert not decision.allowed
    assert decision.requires_subscription


def test_canceled_subscription_is_free_tier(db) -> None:
    user = _user(db)
    _subscribe(db, user, _plan(db), status="CANCELED")
    assert not FeatureGate(db, user.id).has_active_subscription


def test_active_subscription_uses_plan_limits(db) -> None:
    user = _user(db)
    _subscribe(db, user, _plan(db, "AGENCY"))
    gate = FeatureGate(db, user.id)

    assert gate.limits["max_stores"] == 10
    assert gate.check_can_activate_store().allowed
    assert gate.check_can_use_ai_rewrite().allowed  # unlimited
    assert gate.context()["plan_type"] == "AGENCY"


def test_ai_rewrite_limit(db) -> None:
    user = _user(db)
    _subscribe(db, user, _plan(db), used=2)
    decision = FeatureGate(db, user.id).check_can_use_ai_rewrite()
    assert not decision.allowed
    assert decision.remaining == 0


def test_increment_ai_usage(db) -> None:
    user = _user(db)
    sub = _subscribe(db, user, _plan(db), used=0)
    gate = FeatureGate(db, user.id)

    assert gate.increment_ai_rewrite_usage() == 1
    assert gate.check_can_use_ai_rewrite().remaining == 1
    db.refresh(sub)
    assert sub.ai_rewrites_used_this_month == 1


def test_increment_after_reset_date_starts_new_month(db) -> None:
    user = _user(db)
    sub = _subscribe(db, user, _plan(db), used=2, reset_at=datetime.now(timezone.utc) - timedelta(days=1))
    gate = FeatureGate(db, user.id)

    assert gate.check_can_use_ai_rewrite().allowed
    assert gate.increment_ai_rewrite_usage() == 1
    db.refresh(sub)
    assert sub.ai_rewrites_reset_at > datetime.now(timezone.utc).replace(tzinfo=None)


def test_next_month_reset_is_midnight_utc() -> None:
    sao_paulo = timezone(timedelta(hours=-3))
    # 22:30 on Dec 31 in São Paulo is already Jan 1 in UTC
    assert next_month_reset(datetime(2026, 12, 31, 22, 30, tzinfo=sao_paulo)) == datetime(
        2027, 2, 1, tzinfo=timezone.utc
    )
    assert next_month_reset(datetime(2026, 12, 15, 8, 0, tzinfo=timezone.utc)) == datetime(
        2027, 1, 1, tzinfo=timezone.utc
    )


def test_stored_reset_round_trips_as_utc(db) -> None:
    user = _user(db)
    sub = _subscribe(db, user, _plan(db), used=1, reset_at=datetime.now(timezone.utc) - timedelta(days=1))
    FeatureGate(db, user.id).increment_ai_rewrite_usage()
    db.refresh(sub)

    expected = next_month_reset().replace(tzinfo=None)
    assert sub.ai_rewrites_reset_at == expected
    assert FeatureGate(db, user.id).check_can_use_ai_rewrite().remaining == 1
