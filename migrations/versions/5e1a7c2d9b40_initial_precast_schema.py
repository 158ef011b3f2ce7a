"""initial_precast_schema

Create the production-core tables: users and sessions, projects with their
stages and element type paths, tasks, elements, activities, the
complete_production audit log, QC answers, stockyards and precast stock,
and the notification delivery tables.

Revision ID: 5e1a7c2d9b40
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5e1a7c2d9b40"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=False, server_default=""),
            sa.Column("last_name", sa.String(length=100), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    if "user_sessions" not in existing_tables:
        op.create_table(
            "user_sessions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("session_id", sa.String(length=128), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("host_name", sa.String(length=255), nullable=True),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            _ts("created_at"),
            _ts("expires_at"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_user_sessions_session_id", "user_sessions", ["session_id"], unique=True)
        op.create_index("ix_user_sessions_user_id", "user_sessions", ["user_id"])

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("project_id"),
        )

    if "project_stages" not in existing_tables:
        op.create_table(
            "project_stages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("order", sa.Integer(), nullable=False),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            sa.Column("qc_assign", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("qc_id", sa.Integer(), nullable=True),
            sa.Column("paper_id", sa.Integer(), nullable=True),
            sa.Column("completion_stage", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("inventory_deduction", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.ForeignKeyConstraint(["project_id"], ["projects.project_id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["qc_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "order", name="uq_project_stages_project_order"),
        )
        op.create_index("ix_project_stages_project_id", "project_stages", ["project_id"])

    if "element_type_paths" not in existing_tables:
        op.create_table(
            "element_type_paths",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("element_type_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("stage_path", sa.JSON(), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.project_id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_element_type_paths_element_type_id", "element_type_paths", ["element_type_id"], unique=True,
        )
        op.create_index("ix_element_type_paths_project_id", "element_type_paths", ["project_id"])

    if "tasks" not in existing_tables:
        op.create_table(
            "tasks",
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=True),
            sa.Column("element_type_id", sa.Integer(), nullable=False),
            sa.Column("floor_id", sa.Integer(), nullable=False),
            sa.Column("start_stage_id", sa.Integer(), nullable=True),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="InProgress"),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.project_id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["start_stage_id"], ["project_stages.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("task_id"),
        )
        op.create_index("ix_tasks_project_id", "tasks", ["project_id"])
        op.create_index("ix_tasks_element_type_id", "tasks", ["element_type_id"])

    if "elements" not in existing_tables:
        op.create_table(
            "elements",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("element_name", sa.String(length=150), nullable=False, server_default=""),
            sa.Column("element_type_id", sa.Integer(), nullable=False),
            sa.Column("target_location", sa.Integer(), nullable=True),
            sa.Column("instage", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("status", sa.String(length=150), nullable=True),
            sa.Column("billable", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.ForeignKeyConstraint(["project_id"], ["projects.project_id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_elements_project_id", "elements", ["project_id"])
        op.create_index("ix_elements_element_type_id", "elements", ["element_type_id"])

    if "activities" not in existing_tables:
        op.create_table(
            "activities",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("element_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False, server_default=""),
            sa.Column("priority", sa.String(length=20), nullable=True),
            sa.Column("stage_id", sa.Integer(), nullable=False),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            sa.Column("qc_id", sa.Integer(), nullable=True),
            sa.Column("paper_id", sa.Integer(), nullable=True),
            sa.Column("stockyard_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="InProgress"),
            sa.Column("qc_status", sa.String(length=20), nullable=False, server_default="InProgress"),
            sa.Column("mesh_mold_status", sa.String(length=20), nullable=True),
            sa.Column("mesh_mold_qc_status", sa.String(length=20), nullable=True),
            sa.Column("reinforcement_status", sa.String(length=20), nullable=True),
            sa.Column("reinforcement_qc_status", sa.String(length=20), nullable=True),
            sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.project_id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["element_id"], ["elements.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["stage_id"], ["project_stages.id"]),
            sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["qc_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_activities_task_id", "activities", ["task_id"])
        op.create_index("ix_activities_stage_id", "activities", ["stage_id"])
        op.create_index("ix_activities_project_completed", "activities", ["project_id", "completed"])
        op.create_index(
            "uq_activities_open_element_project",
            "activities",
            ["element_id", "project_id"],
            unique=True,
            postgresql_where=sa.text("completed IS FALSE"),
            sqlite_where=sa.text("completed = 0"),
        )

    if "complete_production" not in existing_tables:
        op.create_table(
            "complete_production",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("activity_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("element_id", sa.Integer(), nullable=False),
            sa.Column("element_type_id", sa.Integer(), nullable=False),
            sa.Column("floor_id", sa.Integer(), nullable=True),
            sa.Column("stage_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            _ts("started_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["activity_id"], ["activities.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.project_id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["element_id"], ["elements.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["stage_id"], ["project_stages.id"]),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_complete_production_project_user_ts",
            "complete_production",
            ["project_id", "user_id", "updated_at"],
        )
        op.create_index(
            "ix_complete_production_activity_stage", "complete_production", ["activity_id", "stage_id"],
        )

    if "qc_answers" not in existing_tables:
        op.create_table(
            "qc_answers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("qc_id", sa.Integer(), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("activity_id", sa.Integer(), nullable=False),
            sa.Column("question_id", sa.Integer(), nullable=False),
            sa.Column("option_id", sa.Integer(), nullable=True),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("stage_id", sa.Integer(), nullable=False),
            sa.Column("element_id", sa.Integer(), nullable=False),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("image_path", sa.String(length=500), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["qc_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.project_id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["activity_id"], ["activities.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["stage_id"], ["project_stages.id"]),
            sa.ForeignKeyConstraint(["element_id"], ["elements.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_qc_answers_activity_id", "qc_answers", ["activity_id"])
        op.create_index(
            "ix_qc_answers_stage_task_project", "qc_answers", ["stage_id", "task_id", "project_id"],
        )

    if "project_stockyards" not in existing_tables:
        op.create_table(
            "project_stockyards",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("stockyard_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False, server_default=""),
            sa.Column("manager_id", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.project_id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["manager_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "stockyard_id", name="uq_project_stockyards_pair"),
        )
        op.create_index("ix_project_stockyards_project_id", "project_stockyards", ["project_id"])

    if "precast_stock" not in existing_tables:
        op.create_table(
            "precast_stock",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("element_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("element_type_id", sa.Integer(), nullable=True),
            sa.Column("target_location", sa.Integer(), nullable=True),
            sa.Column("stockyard_id", sa.Integer(), nullable=True),
            sa.Column("stockyard", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("production_date"),
            sa.Column("accepted_by", sa.Integer(), nullable=True),
            _ts("accepted_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["element_id"], ["elements.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.project_id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["accepted_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("element_id", "project_id", name="uq_precast_stock_element_project"),
        )
        op.create_index("ix_precast_stock_project_id", "precast_stock", ["project_id"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("action", sa.String(length=500), nullable=True),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="unread"),
            _ts("read_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    if "device_tokens" not in existing_tables:
        op.create_table(
            "device_tokens",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("token", sa.String(length=500), nullable=False),
            sa.Column("platform", sa.String(length=20), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "token", name="uq_device_tokens_user_token"),
        )
        op.create_index("ix_device_tokens_user_id", "device_tokens", ["user_id"])

    if "email_logs" not in existing_tables:
        op.create_table(
            "email_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_email", sa.String(length=255), nullable=False),
            sa.Column("recipient_user_id", sa.Integer(), nullable=True),
            sa.Column("subject", sa.String(length=500), nullable=False),
            sa.Column("template_name", sa.String(length=100), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="logged"),
            sa.Column("error_message", sa.Text(), nullable=True),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["recipient_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )


_DROP_ORDER = (
    "email_logs",
    "device_tokens",
    "notifications",
    "precast_stock",
    "project_stockyards",
    "qc_answers",
    "complete_production",
    "activities",
    "elements",
    "tasks",
    "element_type_paths",
    "project_stages",
    "projects",
    "user_sessions",
    "users",
)


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    for table in _DROP_ORDER:
        if table in existing_tables:
            op.drop_table(table)
