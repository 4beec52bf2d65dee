"""review scheduling

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

revision = "3f9a1c2b7d10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- Enums ---
    reviewinterval = sa.Enum(
        "monthly",
        "quarterly",
        "semiannually",
        "annually",
        "custom",
        name="reviewinterval",
    )
    reviewperiod = sa.Enum("1week", "2weeks", "3weeks", "1month", name="reviewperiod")
    assigneestatus = sa.Enum("pending", "completed", name="assigneestatus")

    reviewinterval.create(op.get_bind(), checkfirst=True)
    reviewperiod.create(op.get_bind(), checkfirst=True)
    assigneestatus.create(op.get_bind(), checkfirst=True)

    # --- People ---
    op.create_table(
        "people",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("first_name", sa.String(120), nullable=False),
        sa.Column("last_name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_people_email"),
    )

    # --- Documents ---
    op.create_table(
        "documents",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.UUID(), nullable=False),
        sa.Column("opens_for_review", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "review_interval",
            sa.Enum(
                "monthly",
                "quarterly",
                "semiannually",
                "annually",
                "custom",
                name="reviewinterval",
                create_type=False,
            ),
            nullable=True,
        ),
        sa.Column("review_interval_days", sa.Integer(), nullable=True),
        sa.Column(
            "review_period",
            sa.Enum(
                "1week",
                "2weeks",
                "3weeks",
                "1month",
                name="reviewperiod",
                create_type=False,
            ),
            nullable=True,
        ),
        sa.Column("last_reviewed_on", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_review_due_on", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_completed", sa.Boolean(), nullable=False),
        sa.Column("review_completed_by", sa.UUID(), nullable=True),
        sa.Column("review_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_cycle", sa.Integer(), nullable=False),
        sa.Column("assignment_version", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["created_by"], ["people.id"]),
        sa.ForeignKeyConstraint(["review_completed_by"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_documents_created_by", "documents", ["created_by"])
    op.create_index(
        "ix_documents_next_review_due_on", "documents", ["next_review_due_on"]
    )
    op.create_index("ix_documents_review_completed", "documents", ["review_completed"])

    # --- Stakeholders / owners ---
    for table_name in ("document_stakeholders", "document_owners"):
        op.create_table(
            table_name,
            sa.Column("document_id", sa.UUID(), nullable=False),
            sa.Column("person_id", sa.UUID(), nullable=False),
            sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
            sa.ForeignKeyConstraint(["person_id"], ["people.id"]),
            sa.PrimaryKeyConstraint("document_id", "person_id"),
        )

    # --- Review assignees ---
    op.create_table(
        "review_assignees",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("assignee_id", sa.UUID(), nullable=False),
        sa.Column("cycle", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "pending", "completed", name="assigneestatus", create_type=False
            ),
            nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["assignee_id"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "document_id",
            "cycle",
            "assignee_id",
            name="uq_review_assignees_doc_cycle_assignee",
        ),
    )
    op.create_index(
        "ix_review_assignees_document_cycle",
        "review_assignees",
        ["document_id", "cycle"],
    )
    op.create_index(
        "ix_review_assignees_assignee_id", "review_assignees", ["assignee_id"]
    )

    # --- Notifications ---
    op.create_table(
        "notifications",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("person_id", sa.UUID(), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(80), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_person_id", "notifications", ["person_id"])
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])
    op.create_index("ix_notifications_event_type", "notifications", ["event_type"])

    # --- Review notification ledger ---
    op.create_table(
        "review_notification_dispatches",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("recipient_id", sa.UUID(), nullable=False),
        sa.Column("due_on", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"]),
        sa.ForeignKeyConstraint(["recipient_id"], ["people.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "document_id",
            "recipient_id",
            "due_on",
            name="uq_review_notification_dispatches_doc_recipient_due",
        ),
    )


def downgrade() -> None:
    op.drop_table("review_notification_dispatches")
    op.drop_index("ix_notifications_event_type", table_name="notifications")
    op.drop_index("ix_notifications_is_read", table_name="notifications")
    op.drop_index("ix_notifications_person_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_review_assignees_assignee_id", table_name="review_assignees")
    op.drop_index("ix_review_assignees_document_cycle", table_name="review_assignees")
    op.drop_table("review_assignees")
    op.drop_table("document_owners")
    op.drop_table("document_stakeholders")
    op.drop_index("ix_documents_review_completed", table_name="documents")
    op.drop_index("ix_documents_next_review_due_on", table_name="documents")
    op.drop_index("ix_documents_created_by", table_name="documents")
    op.drop_table("documents")
    op.drop_table("people")

    sa.Enum(name="assigneestatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="reviewperiod").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="reviewinterval").drop(op.get_bind(), checkfirst=True)
