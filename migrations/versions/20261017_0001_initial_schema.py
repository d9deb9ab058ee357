"""Initial schema — crawl_targets, crawl_jobs, crawl_slices, crawl_failures, readings, dorm_latest, subscriptions.

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. crawl_targets ───────────────────────────────────────────────────────
    op.create_table(
        "crawl_targets",
        sa.Column("hashed_dir", sa.String(64), primary_key=True),
        sa.Column("canonical_id", sa.String(255), nullable=False),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_ts", sa.BigInteger, nullable=False),
        sa.Column("last_crawled_ts", sa.BigInteger, nullable=True),
    )
    op.create_index(
        "ix_crawl_targets_enabled", "crawl_targets", ["enabled", "hashed_dir"]
    )

    # ── 2. crawl_jobs ──────────────────────────────────────────────────────────
    op.create_table(
        "crawl_jobs",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("created_ts", sa.BigInteger, nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "RUNNING", "DONE", "DONE_WITH_ERRORS", name="crawljobstatus"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("total_slices", sa.Integer, nullable=False),
        sa.Column("finished_slices", sa.Integer, nullable=False, server_default="0"),
        sa.CheckConstraint(
            "finished_slices <= total_slices", name="ck_crawl_jobs_finished_le_total"
        ),
    )

    # ── 3. crawl_slices ────────────────────────────────────────────────────────
    op.create_table(
        "crawl_slices",
        sa.Column(
            "job_id",
            sa.Uuid,
            sa.ForeignKey("crawl_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("slice_index", sa.Integer, nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "RUNNING", "DONE", name="crawlslicestatus"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("claimed_ts", sa.BigInteger, nullable=True),
        sa.Column("deadline_ts", sa.BigInteger, nullable=True),
        sa.Column("finished_ts", sa.BigInteger, nullable=True),
        sa.PrimaryKeyConstraint("job_id", "slice_index"),
    )
    op.create_index(
        "ix_crawl_slices_job_status", "crawl_slices", ["job_id", "status", "slice_index"]
    )

    # ── 4. crawl_failures (append-only) ────────────────────────────────────────
    op.create_table(
        "crawl_failures",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer, "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column(
            "job_id",
            sa.Uuid,
            sa.ForeignKey("crawl_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("hashed_dir", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("ts", sa.BigInteger, nullable=False),
    )
    op.create_index("ix_crawl_failures_job_id", "crawl_failures", ["job_id"])

    # ── 5. readings ────────────────────────────────────────────────────────────
    op.create_table(
        "readings",
        sa.Column("hashed_dir", sa.String(64), nullable=False),
        sa.Column("ts", sa.BigInteger, nullable=False),
        sa.Column("kwh", sa.Float, nullable=False),
        sa.Column("ok", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("hashed_dir", "ts"),
    )

    # ── 6. dorm_latest (one row per dorm, upsert-on-ingest) ───────────────────
    op.create_table(
        "dorm_latest",
        sa.Column("hashed_dir", sa.String(64), primary_key=True),
        sa.Column("last_ts", sa.BigInteger, nullable=False),
        sa.Column("last_kwh", sa.Float, nullable=False),
        sa.Column("last_kw", sa.Float, nullable=True),
        sa.Column("last_kw_r2", sa.Float, nullable=True),
        sa.Column("estimated_ts", sa.BigInteger, nullable=True),
    )

    # ── 7. subscriptions ───────────────────────────────────────────────────────
    op.create_table(
        "subscriptions",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("hashed_dir", sa.String(64), nullable=False),
        sa.Column("canonical_id", sa.String(255), nullable=False),
        sa.Column("created_ts", sa.BigInteger, nullable=False),
        sa.Column(
            "notify_channel",
            sa.Enum("none", "wxwork", "feishu", "serverchan", name="notifychannel"),
            nullable=False,
            server_default="none",
        ),
        sa.Column("notify_token", sa.Text, nullable=True),
        sa.Column("threshold_kwh", sa.Float, nullable=False, server_default="0"),
        sa.Column("within_hours", sa.Float, nullable=False, server_default="0"),
        sa.Column("cooldown_sec", sa.Integer, nullable=False, server_default="43200"),
        sa.Column("last_alert_ts", sa.BigInteger, nullable=True),
        sa.PrimaryKeyConstraint("user_id", "hashed_dir"),
    )
    op.create_index("ix_subscriptions_hashed_dir", "subscriptions", ["hashed_dir"])


def downgrade() -> None:
    op.drop_table("subscriptions")
    op.drop_table("dorm_latest")
    op.drop_table("readings")
    op.drop_table("crawl_failures")
    op.drop_table("crawl_slices")
    op.drop_table("crawl_jobs")
    op.drop_table("crawl_targets")
    op.execute("DROP TYPE IF EXISTS notifychannel")
    op.execute("DROP TYPE IF EXISTS crawlslicestatus")
    op.execute("DROP TYPE IF EXISTS crawljobstatus")
