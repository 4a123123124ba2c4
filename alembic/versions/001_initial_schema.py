"""001 – Initial schema: org structure, leave engine tables, indexes, enums.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("employment_status", ["active", "notice_period", "relieved", "absconding"]),
    (
        "contract_type",
        [
            "full_time_permanent",
            "part_time_permanent",
            "full_time_contract",
            "part_time_contract",
            "internship",
        ],
    ),
    ("leave_status", ["pending", "approved", "rejected"]),
    ("accrual_method", ["monthly", "yearly", "per_term"]),
    ("rounding_rule", ["none", "round", "round_up", "round_down"]),
    ("delegation_status", ["pending", "accepted", "rejected"]),
    (
        "leave_adjustment_type",
        ["personalized_entitlement", "retroactive_deduction", "finalization"],
    ),
    (
        "attendance_status",
        ["present", "absent", "half_day", "weekend", "holiday", "on_leave"],
    ),
    ("time_exception_type", ["manual_adjustment"]),
    (
        "notification_type",
        ["info", "action_required", "approval", "reminder", "alert"],
    ),
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
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. locations ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE locations (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(100) NOT NULL UNIQUE,
            city        VARCHAR(100),
            country     VARCHAR(100),
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. departments ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE departments (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name              VARCHAR(150) NOT NULL,
            code              VARCHAR(20) UNIQUE,
            head_position_id  UUID,  -- FK added after positions table
            is_active         BOOLEAN DEFAULT TRUE,
            created_at        TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 3. positions ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE positions (
            id                      UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            code                    VARCHAR(30)  NOT NULL UNIQUE,
            title                   VARCHAR(150) NOT NULL,
            department_id           UUID REFERENCES departments(id),
            reports_to_position_id  UUID REFERENCES positions(id),
            is_active               BOOLEAN DEFAULT TRUE
        )
    """)
    op.execute("""
        ALTER TABLE departments
            ADD CONSTRAINT fk_dept_head_position
            FOREIGN KEY (head_position_id) REFERENCES positions(id)
    """)

    # ── 4. pay_grades ─────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE pay_grades (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            grade        VARCHAR(50) NOT NULL UNIQUE,
            base_salary  NUMERIC(12,2) NOT NULL DEFAULT 0,
            currency     VARCHAR(3) DEFAULT 'USD',
            is_active    BOOLEAN DEFAULT TRUE,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 5. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                      UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code           VARCHAR(20)  NOT NULL UNIQUE,
            first_name              VARCHAR(100) NOT NULL,
            last_name               VARCHAR(100) NOT NULL,
            email                   VARCHAR(255) NOT NULL UNIQUE,
            department_id           UUID REFERENCES departments(id),
            location_id             UUID REFERENCES locations(id),
            position_id             UUID REFERENCES positions(id),
            supervisor_position_id  UUID REFERENCES positions(id),
            pay_grade_id            UUID REFERENCES pay_grades(id),
            contract_type           contract_type,
            employment_status       employment_status DEFAULT 'active',
            date_of_joining         DATE NOT NULL,
            is_active               BOOLEAN DEFAULT TRUE,
            created_at              TIMESTAMPTZ DEFAULT NOW(),
            updated_at              TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_employees_position ON employees(position_id)")
    op.execute(
        "CREATE INDEX idx_employees_supervisor_position "
        "ON employees(supervisor_position_id)"
    )
    op.execute("CREATE INDEX idx_employees_department ON employees(department_id)")

    # ── 6. position_assignments ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE position_assignments (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id  UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            position_id  UUID NOT NULL REFERENCES positions(id),
            start_date   DATE NOT NULL,
            end_date     DATE
        )
    """)
    op.execute(
        "CREATE INDEX idx_position_assignments_lookup "
        "ON position_assignments(employee_id, position_id)"
    )

    # ── 7. user_sessions ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE user_sessions (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id  UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            token_hash   VARCHAR(512) NOT NULL,
            ip_address   INET,
            expires_at   TIMESTAMPTZ NOT NULL,
            is_revoked   BOOLEAN DEFAULT FALSE,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_user_sessions_token ON user_sessions(token_hash)")

    # ── 8. holidays (organisation calendar) ───────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name          VARCHAR(150) NOT NULL,
            holiday_type  VARCHAR(50),
            start_date    DATE NOT NULL,
            end_date      DATE,
            is_active     BOOLEAN DEFAULT TRUE,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_holidays_start ON holidays(start_date)")

    # ── 9. attendance_records / time_exceptions ───────────────────────────
    op.execute("""
        CREATE TABLE attendance_records (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id         UUID NOT NULL REFERENCES employees(id),
            attendance_date     DATE NOT NULL,
            status              attendance_status NOT NULL DEFAULT 'absent',
            total_work_minutes  INTEGER DEFAULT 0,
            remarks             TEXT,
            created_at          TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_attendance_emp_date UNIQUE (employee_id, attendance_date)
        )
    """)
    op.execute("""
        CREATE TABLE time_exceptions (
            id                    UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id           UUID NOT NULL REFERENCES employees(id),
            attendance_record_id  UUID NOT NULL
                                  REFERENCES attendance_records(id) ON DELETE CASCADE,
            exception_type        time_exception_type NOT NULL,
            assigned_to_id        UUID REFERENCES employees(id),
            reason                TEXT,
            created_at            TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 10. employee_penalties ────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employee_penalties (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id  UUID NOT NULL UNIQUE REFERENCES employees(id),
            penalties    JSONB DEFAULT '[]'::jsonb,
            updated_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 11. leave_categories / leave_types / leave_policies ───────────────
    op.execute("""
        CREATE TABLE leave_categories (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name         VARCHAR(100) NOT NULL UNIQUE,
            description  TEXT,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE leave_types (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            code                 VARCHAR(30)  NOT NULL UNIQUE,
            name                 VARCHAR(100) NOT NULL,
            category_id          UUID NOT NULL REFERENCES leave_categories(id),
            description          TEXT,
            paid                 BOOLEAN DEFAULT TRUE,
            deductible           BOOLEAN DEFAULT TRUE,
            requires_attachment  BOOLEAN DEFAULT FALSE,
            attachment_type      VARCHAR(30),
            min_tenure_months    INTEGER,
            max_duration_days    INTEGER,
            payroll_code         VARCHAR(50),
            approval_workflow    JSONB DEFAULT '[]'::jsonb,
            is_active            BOOLEAN DEFAULT TRUE,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE leave_policies (
            id                           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_type_id                UUID NOT NULL UNIQUE
                                         REFERENCES leave_types(id) ON DELETE CASCADE,
            eligibility                  JSONB DEFAULT '{}'::jsonb,
            yearly_rate                  NUMERIC(6,2) DEFAULT 0,
            accrual_method               accrual_method DEFAULT 'monthly',
            accrual_rate                 NUMERIC(6,2),
            carry_forward_allowed        BOOLEAN DEFAULT FALSE,
            max_carry_forward            NUMERIC(6,2) DEFAULT 0,
            expiry_after_months          INTEGER,
            rounding_rule                rounding_rule DEFAULT 'none',
            min_notice_days              INTEGER DEFAULT 0,
            max_consecutive_days         INTEGER,
            pause_accrual_during_unpaid  BOOLEAN DEFAULT TRUE,
            created_at                   TIMESTAMPTZ DEFAULT NOW(),
            updated_at                   TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 12. leave_entitlements / leave_adjustments ────────────────────────
    op.execute("""
        CREATE TABLE leave_entitlements (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id         UUID NOT NULL REFERENCES employees(id),
            leave_type_id       UUID NOT NULL REFERENCES leave_types(id),
            yearly_entitlement  NUMERIC(6,2) DEFAULT 0,
            taken               NUMERIC(6,2) DEFAULT 0,
            remaining           NUMERIC(6,2) DEFAULT 0,
            pending             NUMERIC(6,2) DEFAULT 0,
            reason              TEXT,
            updated_at          TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_entitlement UNIQUE (employee_id, leave_type_id)
        )
    """)
    op.execute("""
        CREATE TABLE leave_adjustments (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id      UUID NOT NULL REFERENCES employees(id),
            leave_type_id    UUID NOT NULL REFERENCES leave_types(id),
            adjustment_type  leave_adjustment_type NOT NULL,
            amount           NUMERIC(6,2) NOT NULL,
            previous_value   NUMERIC(6,2),
            new_value        NUMERIC(6,2),
            reason           TEXT,
            actor_id         UUID REFERENCES employees(id),
            created_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX idx_leave_adjustments_employee "
        "ON leave_adjustments(employee_id, leave_type_id)"
    )

    # ── 13. leave_attachments / leave_requests ────────────────────────────
    op.execute("""
        CREATE TABLE leave_attachments (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id   UUID REFERENCES employees(id),
            file_name     VARCHAR(255) NOT NULL,
            mime_type     VARCHAR(100) NOT NULL,
            size_bytes    INTEGER NOT NULL,
            storage_path  TEXT,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE leave_requests (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id    UUID NOT NULL REFERENCES employees(id),
            leave_type_id  UUID NOT NULL REFERENCES leave_types(id),
            from_date      DATE NOT NULL,
            to_date        DATE NOT NULL,
            duration_days  NUMERIC(6,2) NOT NULL,
            justification  TEXT,
            attachment_id  UUID REFERENCES leave_attachments(id),
            status         leave_status DEFAULT 'pending',
            approval_flow  JSONB DEFAULT '[]'::jsonb,
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            updated_at     TIMESTAMPTZ DEFAULT NOW(),
            CHECK (to_date >= from_date)
        )
    """)
    op.execute(
        "CREATE INDEX idx_leave_requests_employee_dates "
        "ON leave_requests(employee_id, from_date, to_date)"
    )
    op.execute("CREATE INDEX idx_leave_requests_status ON leave_requests(status)")

    # ── 14. leave calendar ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_calendars (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            year        INTEGER NOT NULL UNIQUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE leave_calendar_holidays (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            calendar_id   UUID NOT NULL REFERENCES leave_calendars(id) ON DELETE CASCADE,
            name          VARCHAR(150) NOT NULL,
            holiday_date  DATE NOT NULL,
            is_recurring  BOOLEAN DEFAULT FALSE,
            holiday_type  VARCHAR(50),
            region        VARCHAR(100),
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE leave_blocked_periods (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            calendar_id  UUID NOT NULL REFERENCES leave_calendars(id) ON DELETE CASCADE,
            from_date    DATE NOT NULL,
            to_date      DATE NOT NULL,
            reason       TEXT
        )
    """)

    # ── 15. leave_delegations ─────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_delegations (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            manager_id   UUID NOT NULL UNIQUE REFERENCES employees(id) ON DELETE CASCADE,
            delegate_id  UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            start_date   DATE,
            end_date     DATE,
            is_active    BOOLEAN DEFAULT TRUE,
            status       delegation_status DEFAULT 'pending',
            created_at   TIMESTAMPTZ DEFAULT NOW(),
            updated_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 16. notifications ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id  UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            type          notification_type DEFAULT 'info',
            title         VARCHAR(200) NOT NULL,
            message       TEXT NOT NULL,
            action_url    VARCHAR(500),
            entity_type   VARCHAR(50),
            entity_id     UUID,
            is_read       BOOLEAN DEFAULT FALSE,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX idx_notifications_recipient "
        "ON notifications(recipient_id, created_at DESC)"
    )

    # ── 17. audit_trail ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID REFERENCES employees(id),
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_action ON audit_trail(action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "notifications",
        "leave_delegations",
        "leave_blocked_periods",
        "leave_calendar_holidays",
        "leave_calendars",
        "leave_requests",
        "leave_attachments",
        "leave_adjustments",
        "leave_entitlements",
        "leave_policies",
        "leave_types",
        "leave_categories",
        "employee_penalties",
        "time_exceptions",
        "attendance_records",
        "holidays",
        "user_sessions",
        "position_assignments",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    # Drop deferred FK before dropping employees / positions / departments
    op.execute(
        "ALTER TABLE departments DROP CONSTRAINT IF EXISTS fk_dept_head_position"
    )
    op.execute("DROP TABLE IF EXISTS employees CASCADE")
    op.execute("DROP TABLE IF EXISTS pay_grades CASCADE")
    op.execute("DROP TABLE IF EXISTS positions CASCADE")
    op.execute("DROP TABLE IF EXISTS departments CASCADE")
    op.execute("DROP TABLE IF EXISTS locations CASCADE")

    # Drop enum types
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    # Drop extensions
    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
