"""create commission schedule, ledger and payout tables

Revision ID: 4d1e7c2a9b30
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "4d1e7c2a9b30"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    # -----------------------------------------------------
    # 1) Rate schedule versions (immutable, one row per version)
    # -----------------------------------------------------
    op.create_table(
        "rate_schedule_versions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("default_rate", sa.Numeric(6, 3), nullable=False),
        sa.Column("tier_rates", sa.JSON(), nullable=False),
        sa.Column("category_rates", sa.JSON(), nullable=False),
        sa.Column("supplier_overrides", sa.JSON(), nullable=False),
        _ts("effective_from"),
        sa.Column("changed_by", sa.String(length=100), nullable=True),
        sa.Column("change_reason", sa.Text(), nullable=True),
        sa.UniqueConstraint("version", name="uq_rate_schedule_versions_version"),
    )
    op.create_index(
        "ix_rate_schedule_versions_effective_from",
        "rate_schedule_versions",
        ["effective_from"],
    )

    # -----------------------------------------------------
    # 2) Commission settings history (append-only)
    # -----------------------------------------------------
    op.create_table(
        "commission_history",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("schedule_version", sa.Integer(), nullable=False),
        sa.Column("field", sa.String(length=40), nullable=False),
        sa.Column("scope_key", sa.String(length=100), nullable=True),
        sa.Column("previous_value", sa.Numeric(6, 3), nullable=True),
        sa.Column("new_value", sa.Numeric(6, 3), nullable=True),
        sa.Column("changed_by", sa.String(length=100), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        _ts("changed_at"),
    )
    op.create_index("ix_commission_history_changed_at", "commission_history", ["changed_at"])
    op.create_index("ix_commission_history_version", "commission_history", ["schedule_version"])

    # -----------------------------------------------------
    # 3) Payout queue
    # -----------------------------------------------------
    op.create_table(
        "payout_queue_items",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("supplier_id", sa.String(length=100), nullable=False),
        sa.Column("gross_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", sa.String(length=30), nullable=False, server_default="bank_transfer"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        _ts("scheduled_date"),
        _ts("processed_date", nullable=True),
        sa.Column("transaction_id", sa.String(length=200), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("claim_token", sa.Uuid(), nullable=True),
        sa.Column("last_batch_id", sa.Uuid(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("net_amount >= 0", name="ck_payout_queue_items_net_non_negative"),
    )
    op.create_index("ix_payout_queue_items_status", "payout_queue_items", ["status"])
    op.create_index("ix_payout_queue_items_claim_token", "payout_queue_items", ["claim_token"])
    op.create_index("ix_payout_queue_items_supplier", "payout_queue_items", ["supplier_id"])
    op.create_index(
        "ix_payout_queue_items_status_scheduled",
        "payout_queue_items",
        ["status", "scheduled_date"],
    )

    # -----------------------------------------------------
    # 4) Commission records (one per order) + adjustments
    # -----------------------------------------------------
    op.create_table(
        "commission_records",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("order_id", sa.String(length=100), nullable=False),
        sa.Column("supplier_id", sa.String(length=100), nullable=False),
        sa.Column("category_id", sa.String(length=100), nullable=True),
        sa.Column("order_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("resolved_rate", sa.Numeric(6, 3), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("current_commission", sa.Numeric(12, 2), nullable=False),
        sa.Column("resolved_from", sa.String(length=20), nullable=False),
        sa.Column("schedule_version", sa.Integer(), nullable=False),
        sa.Column("adjustment_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "payout_item_id",
            sa.Uuid(),
            sa.ForeignKey("payout_queue_items.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _ts("created_at"),
    )
    op.create_index("ix_commission_records_order_id", "commission_records", ["order_id"], unique=True)
    op.create_index("ix_commission_records_supplier_id", "commission_records", ["supplier_id"])
    op.create_index("ix_commission_records_payout_item_id", "commission_records", ["payout_item_id"])
    op.create_index(
        "ix_commission_records_supplier_created",
        "commission_records",
        ["supplier_id", "created_at"],
    )

    op.create_table(
        "commission_adjustments",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "commission_record_id",
            sa.Uuid(),
            sa.ForeignKey("commission_records.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("adjustment_type", sa.String(length=20), nullable=False),
        sa.Column("adjustment_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("previous_commission", sa.Numeric(12, 2), nullable=False),
        sa.Column("resulting_commission", sa.Numeric(12, 2), nullable=False),
        sa.Column("delta", sa.Numeric(12, 2), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("applied_by", sa.String(length=100), nullable=False),
        sa.Column("settled_after_payout", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("applied_at"),
        sa.UniqueConstraint("commission_record_id", "sequence", name="uq_commission_adjustments_record_seq"),
    )
    op.create_index(
        "ix_commission_adjustments_commission_record_id",
        "commission_adjustments",
        ["commission_record_id"],
    )

    # -----------------------------------------------------
    # 5) Payout batches
    # -----------------------------------------------------
    op.create_table(
        "payout_batches",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("batch_number", sa.String(length=30), nullable=False),
        sa.Column("member_item_ids", sa.JSON(), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("successful_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="processing"),
        sa.Column("processed_by", sa.String(length=100), nullable=False),
        _ts("created_at"),
        _ts("completed_at", nullable=True),
        sa.UniqueConstraint("sequence", name="uq_payout_batches_sequence"),
        sa.UniqueConstraint("batch_number", name="uq_payout_batches_batch_number"),
    )


def downgrade() -> None:
    op.drop_table("payout_batches")

    op.drop_index("ix_commission_adjustments_commission_record_id", table_name="commission_adjustments")
    op.drop_table("commission_adjustments")

    op.drop_index("ix_commission_records_supplier_created", table_name="commission_records")
    op.drop_index("ix_commission_records_payout_item_id", table_name="commission_records")
    op.drop_index("ix_commission_records_supplier_id", table_name="commission_records")
    op.drop_index("ix_commission_records_order_id", table_name="commission_records")
    op.drop_table("commission_records")

    op.drop_index("ix_payout_queue_items_status_scheduled", table_name="payout_queue_items")
    op.drop_index("ix_payout_queue_items_supplier", table_name="payout_queue_items")
    op.drop_index("ix_payout_queue_items_claim_token", table_name="payout_queue_items")
    op.drop_index("ix_payout_queue_items_status", table_name="payout_queue_items")
    op.drop_table("payout_queue_items")

    op.drop_index("ix_commission_history_version", table_name="commission_history")
    op.drop_index("ix_commission_history_changed_at", table_name="commission_history")
    op.drop_table("commission_history")

    op.drop_index("ix_rate_schedule_versions_effective_from", table_name="rate_schedule_versions")
    op.drop_table("rate_schedule_versions")
