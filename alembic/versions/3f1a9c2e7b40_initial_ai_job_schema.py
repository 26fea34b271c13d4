"""initial_ai_job_schema

Revision ID: 3f1a9c2e7b40
Revises:
Create Date: 2026-10-19 10:12:41.208311

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2e7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JOB_STATUSES = ("pending", "submitted", "processing", "success", "failed", "timeout", "cancelled")


def upgrade() -> None:
    """Create AI job, registry, queue, project, history and ledger tables."""
    op.create_table(
        "prompt_templates",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("base_prompt", sa.String(), nullable=False),
        sa.Column("style", sa.String(), nullable=True),
        sa.Column("background", sa.String(), nullable=True),
        sa.Column("lighting", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_prompt_templates_organization_id", "prompt_templates", ["organization_id"]
    )

    op.create_table(
        "studio_presets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("camera_lens", sa.String(length=20), nullable=False),
        sa.Column("camera_aperture", sa.String(length=20), nullable=False),
        sa.Column("camera_angle", sa.String(length=20), nullable=False),
        sa.Column("camera_focus", sa.String(length=20), nullable=False),
        sa.Column("camera_distance", sa.String(length=20), nullable=False),
        sa.Column("lighting_style", sa.String(length=30), nullable=False),
        sa.Column("lighting_key_intensity", sa.Integer(), nullable=False),
        sa.Column("lighting_fill_intensity", sa.Integer(), nullable=False),
        sa.Column("lighting_rim_intensity", sa.Integer(), nullable=False),
        sa.Column("lighting_direction", sa.String(length=20), nullable=False),
        sa.Column("background_type", sa.String(length=20), nullable=False),
        sa.Column("background_surface", sa.String(length=20), nullable=False),
        sa.Column("background_shadow", sa.String(length=20), nullable=False),
        sa.Column("background_reflection", sa.Integer(), nullable=False),
        sa.Column("jewelry_metal", sa.String(length=20), nullable=False),
        sa.Column("jewelry_finish", sa.String(length=20), nullable=False),
        sa.Column("jewelry_sparkle", sa.Integer(), nullable=False),
        sa.Column("jewelry_color_pop", sa.Integer(), nullable=False),
        sa.Column("jewelry_detail", sa.Integer(), nullable=False),
        sa.Column("composition_framing", sa.String(length=20), nullable=False),
        sa.Column("composition_aspect_ratio", sa.String(length=10), nullable=False),
        sa.Column("composition_padding", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_studio_presets_organization_id", "studio_presets", ["organization_id"])

    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("ai_model", sa.String(length=100), nullable=True),
        sa.Column("template_id", sa.Uuid(), nullable=True),
        sa.Column("studio_preset_id", sa.Uuid(), nullable=True),
        sa.Column("custom_prompt", sa.String(), nullable=True),
        sa.Column("trial_limit", sa.Integer(), nullable=False),
        sa.Column("trial_completed", sa.Integer(), nullable=False),
        sa.Column("processed_images", sa.Integer(), nullable=False),
        sa.Column("total_tokens", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["template_id"], ["prompt_templates.id"]),
        sa.ForeignKeyConstraint(["studio_preset_id"], ["studio_presets.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_projects_organization_id", "projects", ["organization_id"])

    op.create_table(
        "ai_model_configs",
        sa.Column("id", sa.String(length=100), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("submit_endpoint", sa.String(), nullable=False),
        sa.Column("status_endpoint", sa.String(), nullable=False),
        sa.Column("request_builder", sa.String(length=50), nullable=False),
        sa.Column("request_template", sa.JSON(), nullable=True),
        sa.Column("task_id_path", sa.JSON(), nullable=True),
        sa.Column("result_url_paths", sa.JSON(), nullable=True),
        sa.Column("success_check", sa.JSON(), nullable=True),
        sa.Column("failure_check", sa.JSON(), nullable=True),
        sa.Column("max_processing_time_sec", sa.Integer(), nullable=False),
        sa.Column("token_cost", sa.Integer(), nullable=False),
        sa.Column("supports_callback", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "ai_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("job_type", sa.String(length=20), nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("source_id", sa.Uuid(), nullable=True),
        sa.Column("ai_model", sa.String(length=100), nullable=False),
        sa.Column("input_url", sa.String(), nullable=False),
        sa.Column("input_url_2", sa.String(), nullable=True),
        sa.Column("prompt", sa.String(), nullable=True),
        sa.Column("sent_prompt", sa.String(), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("task_id", sa.String(length=255), nullable=True),
        sa.Column("callback_received", sa.Boolean(), nullable=False),
        sa.Column("callback_token", sa.String(length=64), nullable=False),
        sa.Column("callback_at", sa.DateTime(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*JOB_STATUSES, name="jobstatus", native_enum=False, length=20),
            nullable=False,
        ),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("next_retry_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("result_url", sa.String(), nullable=True),
        sa.Column("error_message", sa.String(length=1000), nullable=True),
        sa.Column("error_code", sa.String(length=50), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ai_jobs_organization_id", "ai_jobs", ["organization_id"])
    op.create_index("ix_ai_jobs_source_id", "ai_jobs", ["source_id"])
    op.create_index("ix_ai_jobs_task_id", "ai_jobs", ["task_id"])
    op.create_index("ix_ai_jobs_status", "ai_jobs", ["status"])
    op.create_index("ix_ai_jobs_created_at", "ai_jobs", ["created_at"])
    # Reconciler phase B scans pending retries by due time
    op.create_index(
        "idx_ai_jobs_due_retries",
        "ai_jobs",
        ["next_retry_at"],
        postgresql_where=sa.text("status = 'pending' AND next_retry_at IS NOT NULL"),
    )

    op.create_table(
        "processing_queue",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("file_id", sa.String(length=255), nullable=False),
        sa.Column("file_name", sa.String(length=500), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.String(length=1000), nullable=True),
        sa.Column("generated_prompt", sa.String(), nullable=True),
        sa.Column("ai_model", sa.String(length=100), nullable=True),
        sa.Column("task_id", sa.String(length=255), nullable=True),
        sa.Column("original_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_processing_queue_organization_id", "processing_queue", ["organization_id"])
    op.create_index("ix_processing_queue_project_id", "processing_queue", ["project_id"])
    op.create_index("ix_processing_queue_status", "processing_queue", ["status"])

    op.create_table(
        "processing_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("file_id", sa.String(length=255), nullable=False),
        sa.Column("file_name", sa.String(length=500), nullable=False),
        sa.Column("original_url", sa.String(), nullable=False),
        sa.Column("optimized_url", sa.String(), nullable=False),
        sa.Column("ai_model", sa.String(length=100), nullable=False),
        sa.Column("prompt", sa.String(), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.ForeignKeyConstraint(["job_id"], ["ai_jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_processing_history_organization_id", "processing_history", ["organization_id"]
    )
    op.create_index("ix_processing_history_project_id", "processing_history", ["project_id"])

    op.create_table(
        "token_accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False),
        sa.Column("lifetime_used", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("balance >= 0", name="chk_token_balance_non_negative"),
    )
    op.create_index(
        "ix_token_accounts_organization_id", "token_accounts", ["organization_id"], unique=True
    )

    op.create_table(
        "token_transactions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["token_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_token_transactions_account_id", "token_transactions", ["account_id"])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_index("ix_token_transactions_account_id", table_name="token_transactions")
    op.drop_table("token_transactions")
    op.drop_index("ix_token_accounts_organization_id", table_name="token_accounts")
    op.drop_table("token_accounts")
    op.drop_index("ix_processing_history_project_id", table_name="processing_history")
    op.drop_index("ix_processing_history_organization_id", table_name="processing_history")
    op.drop_table("processing_history")
    op.drop_index("ix_processing_queue_status", table_name="processing_queue")
    op.drop_index("ix_processing_queue_project_id", table_name="processing_queue")
    op.drop_index("ix_processing_queue_organization_id", table_name="processing_queue")
    op.drop_table("processing_queue")
    op.drop_index("idx_ai_jobs_due_retries", table_name="ai_jobs")
    op.drop_index("ix_ai_jobs_created_at", table_name="ai_jobs")
    op.drop_index("ix_ai_jobs_status", table_name="ai_jobs")
    op.drop_index("ix_ai_jobs_task_id", table_name="ai_jobs")
    op.drop_index("ix_ai_jobs_source_id", table_name="ai_jobs")
    op.drop_index("ix_ai_jobs_organization_id", table_name="ai_jobs")
    op.drop_table("ai_jobs")
    op.drop_table("ai_model_configs")
    op.drop_index("ix_projects_organization_id", table_name="projects")
    op.drop_table("projects")
    op.drop_index("ix_studio_presets_organization_id", table_name="studio_presets")
    op.drop_table("studio_presets")
    op.drop_index("ix_prompt_templates_organization_id", table_name="prompt_templates")
    op.drop_table("prompt_templates")
