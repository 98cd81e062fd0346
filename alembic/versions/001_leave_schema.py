"""001 – Leave schema: leave types, balances, requests, adjustment ledger, outboxes.

Revision ID: 001_leave_schema
Revises:
Create Date: 2026-10-17 10:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_leave_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("leave_category", ["annual", "sick", "family", "unpaid", "custom"]),
    ("leave_accrual_method", ["monthly", "per_hour", "upfront"]),
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
    ("leave_audit_action", ["submit", "approve", "reject", "cancel", "adjust"]),
    (
        "leave_notification_type",
        ["leave_submitted", "leave_approved", "leave_rejected"],
    ),
]

TABLES = [
    "leave_notification_triggers",
    "leave_audit_events",
    "balance_adjustments",
    "leave_requests",
    "leave_balances",
    "leave_types",
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                      UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            code                    VARCHAR(20)  NOT NULL,
            name                    VARCHAR(100) NOT NULL,
            category                leave_category NOT NULL,
            accrual_method          leave_accrual_method NOT NULL,
            days_per_year           NUMERIC(12, 6) DEFAULT 0,
            carry_over_days         NUMERIC(12, 6),          -- NULL = unlimited
            allow_negative_balance  BOOLEAN DEFAULT FALSE,
            requires_attachment     BOOLEAN DEFAULT FALSE,
            is_paid                 BOOLEAN DEFAULT TRUE,
            is_active               BOOLEAN DEFAULT TRUE,
            created_at              TIMESTAMPTZ DEFAULT NOW(),
            updated_at              TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_types_code UNIQUE (code)
        )
    """)

    # ── 2. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id     UUID NOT NULL,
            leave_type_id   UUID NOT NULL REFERENCES leave_types(id),
            accrued         NUMERIC(12, 6) NOT NULL DEFAULT 0,
            taken           NUMERIC(12, 6) NOT NULL DEFAULT 0,
            pending         NUMERIC(12, 6) NOT NULL DEFAULT 0,
            version         INTEGER NOT NULL,
            updated_at      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (employee_id, leave_type_id),
            CONSTRAINT ck_leave_balances_taken_non_negative CHECK (taken >= 0),
            CONSTRAINT ck_leave_balances_pending_non_negative CHECK (pending >= 0)
        )
    """)

    # ── 3. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id       UUID NOT NULL,
            leave_type_id     UUID NOT NULL REFERENCES leave_types(id),
            start_date        DATE NOT NULL,
            end_date          DATE NOT NULL,
            is_partial_day    BOOLEAN DEFAULT FALSE,
            partial_hours     NUMERIC(6, 4),
            days              NUMERIC(12, 6) NOT NULL,
            reason            TEXT,
            attachment_url    VARCHAR(500),
            status            leave_status NOT NULL DEFAULT 'pending',
            approved_by       UUID,
            approved_at       TIMESTAMPTZ,
            rejected_by       UUID,
            rejected_at       TIMESTAMPTZ,
            rejection_reason  TEXT,
            cancelled_by      UUID,
            cancelled_at      TIMESTAMPTZ,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_requests_dates_ordered CHECK (end_date >= start_date)
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_requests_employee_type
            ON leave_requests(employee_id, leave_type_id)
    """)
    op.execute("CREATE INDEX ix_leave_requests_status ON leave_requests(status)")

    # ── 4. balance_adjustments (append-only ledger) ───────────────────────
    op.execute("""
        CREATE TABLE balance_adjustments (
            id              SERIAL PRIMARY KEY,
            employee_id     UUID NOT NULL,
            leave_type_id   UUID NOT NULL REFERENCES leave_types(id),
            amount          NUMERIC(12, 6) NOT NULL,
            reason          TEXT NOT NULL,
            actor           VARCHAR(64) NOT NULL,
            period          VARCHAR(32),
            timestamp       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_balance_adjustment_period
                UNIQUE (employee_id, leave_type_id, period)
        )
    """)
    op.execute("""
        CREATE INDEX ix_balance_adjustments_key
            ON balance_adjustments(employee_id, leave_type_id, id)
    """)
    # Reject rewrites at the database level as well as in the ORM
    op.execute("""
        CREATE RULE balance_adjustments_no_update AS
            ON UPDATE TO balance_adjustments DO INSTEAD NOTHING
    """)
    op.execute("""
        CREATE RULE balance_adjustments_no_delete AS
            ON DELETE TO balance_adjustments DO INSTEAD NOTHING
    """)

    # ── 5. leave_audit_events ─────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_audit_events (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            request_id      UUID,
            employee_id     UUID NOT NULL,
            leave_type_id   UUID,
            action          leave_audit_action NOT NULL,
            actor           VARCHAR(64) NOT NULL,
            before_status   leave_status,
            after_status    leave_status,
            details         JSONB,
            timestamp       TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_leave_audit_events_request ON leave_audit_events(request_id)")
    op.execute("""
        CREATE INDEX ix_leave_audit_events_employee
            ON leave_audit_events(employee_id, leave_type_id)
    """)
    op.execute("CREATE INDEX ix_leave_audit_events_timestamp ON leave_audit_events(timestamp)")

    # ── 6. leave_notification_triggers ────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_notification_triggers (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            type            leave_notification_type NOT NULL,
            employee_id     UUID NOT NULL,
            request_id      UUID NOT NULL,
            recipients      JSONB NOT NULL DEFAULT '[]',
            dispatched_at   TIMESTAMPTZ,
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_notification_triggers_undispatched
            ON leave_notification_triggers(dispatched_at)
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    for table in TABLES:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
