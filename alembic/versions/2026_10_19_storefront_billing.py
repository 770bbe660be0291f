"""Storefront billing: users, plans, subscriptions, stores, store_transfers.

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19

Changes:
  users            : create table if not exists
  plans            : create table if not exists (type unique)
  subscriptions    : create table; UNIQUE(stripe_subscription_id) is what makes
                     webhook creation idempotent
  stores           : create table; index (user_id, created_at) for reconciliation
  store_transfers  : create table (append-only audit)
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision: str = '202610190001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(conn, table: str) -> bool:
    try:
        insp = inspect(conn)
        return table in insp.get_table_names()
    except Exception:
        return False


def _constraint_exists(conn, table: str, name: str) -> bool:
    try:
        insp = inspect(conn)
        return any(c.get("name") == name for c in insp.get_unique_constraints(table))
    except Exception:
        return False


def upgrade() -> None:
    conn = op.get_bind()

    # ── 1. users ─────────────────────────────────────────────────────────
    if not _table_exists(conn, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    # ── 2. plans ─────────────────────────────────────────────────────────
    if not _table_exists(conn, "plans"):
        op.create_table(
            "plans",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("type", sa.String(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("monthly_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("yearly_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("stripe_product_id", sa.String(), nullable=True),
            sa.Column("stripe_monthly_price_id", sa.String(), nullable=True),
            sa.Column("stripe_yearly_price_id", sa.String(), nullable=True),
            sa.Column("max_stores", sa.Integer(), nullable=False, server_default=sa.text("1")),
            sa.Column("max_photos_per_store", sa.Integer(), nullable=False, server_default=sa.text("6")),
            sa.Column("ai_rewrites_per_month", sa.Integer(), nullable=True),
            sa.Column("custom_domain_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("is_highlighted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("type"),
        )
        op.create_index(op.f("ix_plans_stripe_monthly_price_id"), "plans", ["stripe_monthly_price_id"])
        op.create_index(op.f("ix_plans_stripe_yearly_price_id"), "plans", ["stripe_yearly_price_id"])

    # ── 3. subscriptions ─────────────────────────────────────────────────
    if not _table_exists(conn, "subscriptions"):
        op.create_table(
            "subscriptions",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("plan_id", sa.String(), sa.ForeignKey("plans.id"), nullable=False),
            sa.Column("status", sa.String(30), nullable=False, server_default="ACTIVE"),
            sa.Column("billing_interval", sa.String(10), nullable=False, server_default="MONTHLY"),
            sa.Column("stripe_customer_id", sa.String(), nullable=True),
            sa.Column("stripe_subscription_id", sa.String(), nullable=False),
            sa.Column("stripe_price_id", sa.String(), nullable=True),
            sa.Column("current_period_start", sa.DateTime(), nullable=True),
            sa.Column("current_period_end", sa.DateTime(), nullable=True),
            sa.Column("cancel_at", sa.DateTime(), nullable=True),
            sa.Column("canceled_at", sa.DateTime(), nullable=True),
            sa.Column("ai_rewrites_used_this_month", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("ai_rewrites_reset_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("stripe_subscription_id", name="uq_subscriptions_stripe_subscription_id"),
        )
        op.create_index(op.f("ix_subscriptions_user_id"), "subscriptions", ["user_id"])
    elif not _constraint_exists(conn, "subscriptions", "uq_subscriptions_stripe_subscription_id"):
        with op.batch_alter_table("subscriptions") as batch_op:
            batch_op.create_unique_constraint(
                "uq_subscriptions_stripe_subscription_id", ["stripe_subscription_id"]
            )

    # ── 4. stores ────────────────────────────────────────────────────────
    if not _table_exists(conn, "stores"):
        op.create_table(
            "stores",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("slug", sa.String(), nullable=False),
            sa.Column("custom_domain", sa.String(), nullable=True),
            sa.Column("category", sa.String(100), nullable=False),
            sa.Column("city", sa.String(100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
            sa.UniqueConstraint("custom_domain"),
        )
        op.create_index("ix_stores_user_created", "stores", ["user_id", "created_at"])

    # ── 5. store_transfers ───────────────────────────────────────────────
    if not _table_exists(conn, "store_transfers"):
        op.create_table(
            "store_transfers",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("store_id", sa.String(), sa.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False),
            sa.Column("from_user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("to_user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("initiated_by", sa.String(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("was_activated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(op.f("ix_store_transfers_store_id"), "store_transfers", ["store_id"])
        op.create_index(op.f("ix_store_transfers_to_user_id"), "store_transfers", ["to_user_id"])


def downgrade() -> None:
    conn = op.get_bind()
    for table in ("store_transfers", "stores", "subscriptions", "plans", "users"):
        if _table_exists(conn, table):
            op.drop_table(table)
