"""queue engine schema

Revision ID: 0001_queue_engine
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_queue_engine"
down_revision = None
branch_labels = None
depends_on = None

APPOINTMENT_STATUSES = (
    "scheduled",
    "waiting",
    "in_progress",
    "completed",
    "cancelled",
    "no_show",
    "rescheduled",
)
SKIP_REASONS = (
    "patient_absent",
    "patient_present",
    "emergency_case",
    "doctor_preference",
    "late_arrival",
    "technical_issue",
    "other",
)
ABSENCE_RESOLUTIONS = ("returned", "expired", "rebooked", "waitlisted", "day_closed")
WAITLIST_STATUSES = ("waiting", "notified", "promoted", "expired", "cancelled")
QUEUE_ACTION_TYPES = (
    "call_present",
    "mark_absent",
    "late_arrival",
    "emergency",
    "reorder",
    "swap",
    "force_add",
    "priority_boost",
    "manual_move",
    "call_next",
    "book",
    "check_in",
    "presence_change",
    "complete",
    "cancel",
    "absence_resolved",
    "absence_expired",
    "waitlist_promote",
    "day_close",
    "day_reopen",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "clinics",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("specialty", sa.String(length=120), nullable=True),
        sa.Column("city", sa.String(length=120), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("queue_mode", sa.String(length=32), nullable=False, server_default="fluid"),
        sa.Column("grace_period_minutes", sa.Integer(), nullable=False, server_default="15"),
        sa.Column("allow_overflow", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("daily_capacity_limit", sa.Integer(), nullable=True),
        sa.Column(
            "late_arrival_policy",
            sa.Enum("priority_walk_in", "reschedule_only", name="late_arrival_policy"),
            nullable=False,
            server_default="priority_walk_in",
        ),
        sa.Column("auto_cancel_after_grace", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        "clinic_day_modes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id"), nullable=False),
        sa.Column("day_name", sa.String(length=16), nullable=False),
        sa.Column("mode", sa.String(length=32), nullable=False),
        sa.UniqueConstraint("clinic_id", "day_name", name="uq_clinic_day_modes_day"),
    )
    op.create_index("ix_clinic_day_modes_clinic_id", "clinic_day_modes", ["clinic_id"])
    op.create_table(
        "clinic_staff",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id"), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_clinic_staff_clinic_id", "clinic_staff", ["clinic_id"])
    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("phone_number", sa.String(length=40), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "guest_patients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("phone_number", sa.String(length=40), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id"), nullable=False),
        sa.Column("staff_id", sa.Integer(), sa.ForeignKey("clinic_staff.id"), nullable=False),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id"), nullable=True),
        sa.Column("guest_patient_id", sa.Integer(), sa.ForeignKey("guest_patients.id"), nullable=True),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("appointment_type", sa.String(length=120), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*APPOINTMENT_STATUSES, name="appointment_status"),
            nullable=False,
            server_default="scheduled",
        ),
        sa.Column("is_present", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("marked_absent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("queue_position", sa.Integer(), nullable=True),
        sa.Column("original_queue_position", sa.Integer(), nullable=True),
        sa.Column("priority_score", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("skip_reason", sa.Enum(*SKIP_REASONS, name="skip_reason"), nullable=True),
        sa.Column("skip_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_walk_in", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_gap_filler", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("promoted_from_waitlist", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("late_arrival_converted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("override_by", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "(patient_id IS NULL) <> (guest_patient_id IS NULL)",
            name="ck_appointments_single_patient",
        ),
    )
    op.create_index(
        "uq_appointments_one_in_progress",
        "appointments",
        ["staff_id", "appointment_date"],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
    )
    op.create_index("ix_appointments_clinic_date", "appointments", ["clinic_id", "appointment_date"])
    op.create_index("ix_appointments_staff_date", "appointments", ["staff_id", "appointment_date"])

    op.create_table(
        "absence_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("appointment_id", sa.Integer(), sa.ForeignKey("appointments.id"), nullable=False),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id"), nullable=False),
        sa.Column("marked_absent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("grace_period_ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("new_position", sa.Integer(), nullable=True),
        sa.Column("auto_cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolution", sa.Enum(*ABSENCE_RESOLUTIONS, name="absence_resolution"), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "rebooked_appointment_id", sa.Integer(), sa.ForeignKey("appointments.id"), nullable=True
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "grace_period_ends_at >= marked_absent_at",
            name="ck_absence_records_grace_after_start",
        ),
    )
    op.create_index(
        "uq_absence_records_one_open",
        "absence_records",
        ["appointment_id"],
        unique=True,
        postgresql_where=sa.text("resolution IS NULL"),
    )
    op.create_index(
        "ix_absence_records_clinic_marked", "absence_records", ["clinic_id", "marked_absent_at"]
    )

    op.create_table(
        "waitlist_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id"), nullable=False),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id"), nullable=True),
        sa.Column("guest_patient_id", sa.Integer(), sa.ForeignKey("guest_patients.id"), nullable=True),
        sa.Column("requested_date", sa.Date(), nullable=False),
        sa.Column("requested_time_start", sa.Time(), nullable=True),
        sa.Column("requested_time_end", sa.Time(), nullable=True),
        sa.Column("priority_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum(*WAITLIST_STATUSES, name="waitlist_status"),
            nullable=False,
            server_default="waiting",
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "promoted_appointment_id", sa.Integer(), sa.ForeignKey("appointments.id"), nullable=True
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "(patient_id IS NULL) <> (guest_patient_id IS NULL)",
            name="ck_waitlist_entries_single_patient",
        ),
    )
    op.create_index("ix_waitlist_entries_clinic_date", "waitlist_entries", ["clinic_id", "requested_date"])
    op.create_index("ix_waitlist_entries_status", "waitlist_entries", ["status"])

    op.create_table(
        "queue_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id"), nullable=False),
        sa.Column("appointment_id", sa.Integer(), sa.ForeignKey("appointments.id"), nullable=True),
        sa.Column(
            "action_type", sa.Enum(*QUEUE_ACTION_TYPES, name="queue_action_type"), nullable=False
        ),
        sa.Column("performed_by", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("previous_position", sa.Integer(), nullable=True),
        sa.Column("new_position", sa.Integer(), nullable=True),
        sa.Column("previous_state", sa.JSON(), nullable=True),
        sa.Column("new_state", sa.JSON(), nullable=True),
        sa.Column("skipped_appointment_ids", sa.JSON(), nullable=False),
        sa.Column("affected_appointment_ids", sa.JSON(), nullable=False),
    )
    op.create_index("ix_queue_overrides_clinic_id", "queue_overrides", ["clinic_id"])
    op.create_index("ix_queue_overrides_appointment_id", "queue_overrides", ["appointment_id"])
    op.create_index("ix_queue_overrides_performed_by", "queue_overrides", ["performed_by"])

    op.create_table(
        "day_closures",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id"), nullable=False),
        sa.Column("staff_id", sa.Integer(), sa.ForeignKey("clinic_staff.id"), nullable=False),
        sa.Column("closure_date", sa.Date(), nullable=False),
        sa.Column("performed_by", sa.String(length=64), nullable=False),
        sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_appointments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("waiting_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("in_progress_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("absent_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("marked_no_show_ids", sa.JSON(), nullable=False),
        sa.Column("marked_completed_ids", sa.JSON(), nullable=False),
        sa.Column("closed_absence_ids", sa.JSON(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("can_reopen", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("reopened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reopened_by", sa.String(length=64), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "uq_day_closures_staff_date_open",
        "day_closures",
        ["staff_id", "closure_date"],
        unique=True,
        postgresql_where=sa.text("reopened_at IS NULL"),
    )
    op.create_index("ix_day_closures_clinic_date", "day_closures", ["clinic_id", "closure_date"])

    op.create_table(
        "queue_locks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("staff_id", sa.Integer(), sa.ForeignKey("clinic_staff.id"), nullable=False),
        sa.Column("lock_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("staff_id", "lock_date", name="uq_queue_locks_staff_date"),
    )

    op.create_table(
        "clinic_day_locks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id"), nullable=False),
        sa.Column("lock_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("clinic_id", "lock_date", name="uq_clinic_day_locks_clinic_date"),
    )


def downgrade() -> None:
    op.drop_table("clinic_day_locks")
    op.drop_table("queue_locks")
    op.drop_index("ix_day_closures_clinic_date", table_name="day_closures")
    op.drop_index("uq_day_closures_staff_date_open", table_name="day_closures")
    op.drop_table("day_closures")
    op.drop_index("ix_queue_overrides_performed_by", table_name="queue_overrides")
    op.drop_index("ix_queue_overrides_appointment_id", table_name="queue_overrides")
    op.drop_index("ix_queue_overrides_clinic_id", table_name="queue_overrides")
    op.drop_table("queue_overrides")
    op.drop_index("ix_waitlist_entries_status", table_name="waitlist_entries")
    op.drop_index("ix_waitlist_entries_clinic_date", table_name="waitlist_entries")
    op.drop_table("waitlist_entries")
    op.drop_index("ix_absence_records_clinic_marked", table_name="absence_records")
    op.drop_index("uq_absence_records_one_open", table_name="absence_records")
    op.drop_table("absence_records")
    op.drop_index("ix_appointments_staff_date", table_name="appointments")
    op.drop_index("ix_appointments_clinic_date", table_name="appointments")
    op.drop_index("uq_appointments_one_in_progress", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("guest_patients")
    op.drop_table("patients")
    op.drop_index("ix_clinic_staff_clinic_id", table_name="clinic_staff")
    op.drop_table("clinic_staff")
    op.drop_index("ix_clinic_day_modes_clinic_id", table_name="clinic_day_modes")
    op.drop_table("clinic_day_modes")
    op.drop_table("clinics")
    for enum_name in (
        "queue_action_type",
        "waitlist_status",
        "absence_resolution",
        "skip_reason",
        "appointment_status",
        "late_arrival_policy",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
