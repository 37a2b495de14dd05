"""Add absences and worker correction requests

Revision ID: 0002_absences_correction_requests
Revises: 0001_initial
Create Date: 2026-10-19 12:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0002_absences_correction_requests"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

request_status = postgresql.ENUM("pending", "approved", "rejected", name="request_status", create_type=False)
absence_type = postgresql.ENUM(
    "vacation",
    "sick_leave",
    "personal",
    "other",
    name="absence_type",
    create_type=False,
)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    request_status.create(bind, checkfirst=True)
    absence_type.create(bind, checkfirst=True)

    op.create_table(
        "absences",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("absence_type", absence_type, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("status", request_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("approved_by", sa.Uuid(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["approved_by"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("end_date >= start_date", name="ck_absences_date_range"),
    )
    op.create_index("ix_absences_user_id", "absences", ["user_id"])
    op.create_index("ix_absences_company_dates", "absences", ["company_id", "start_date", "end_date"])

    op.create_table(
        "correction_requests",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("submitted_by", sa.Uuid(), nullable=False),
        sa.Column("manager_id", sa.Uuid(), nullable=True),
        sa.Column(
            "payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("status", request_status, nullable=False, server_default=sa.text("'pending'")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["submitted_by"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["manager_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_correction_requests_company_id", "correction_requests", ["company_id"])
    op.create_index("ix_correction_requests_user_id", "correction_requests", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_correction_requests_user_id", table_name="correction_requests")
    op.drop_index("ix_correction_requests_company_id", table_name="correction_requests")
    op.drop_table("correction_requests")
    op.drop_index("ix_absences_company_dates", table_name="absences")
    op.drop_index("ix_absences_user_id", table_name="absences")
    op.drop_table("absences")

    bind = op.get_bind()
    absence_type.drop(bind, checkfirst=True)
    request_status.drop(bind, checkfirst=True)
