"""Create KYC case ledger tables.

Revision ID: d1e2f3a4b5c6
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "d1e2f3a4b5c6"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Create enum types via raw DDL; create_table would otherwise try to
    # create them again.
    op.execute("CREATE TYPE case_status_enum AS ENUM ('pending', 'complete', 'failed')")
    op.execute(
        "CREATE TYPE lineage_value_type_enum AS ENUM ('boolean', 'numeric', 'string')"
    )

    case_status_enum = postgresql.ENUM(
        "pending", "complete", "failed", name="case_status_enum", create_type=False
    )
    lineage_value_type_enum = postgresql.ENUM(
        "boolean",
        "numeric",
        "string",
        name="lineage_value_type_enum",
        create_type=False,
    )

    # kyc_cases table
    op.create_table(
        "kyc_cases",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column(
            "status", case_status_enum, nullable=False, server_default="pending"
        ),
        sa.Column("client_business_unit", sa.Text(), nullable=True),
        sa.Column(
            "last_updated",
            sa.DateTime(),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_kyc_cases"),
        sa.UniqueConstraint("name", name="uq_kyc_cases_name"),
    )
    op.create_index("idx_kyc_cases_status", "kyc_cases", ["status"])

    # kyc_case_versions table
    op.create_table(
        "kyc_case_versions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "case_name",
            sa.String(200),
            sa.ForeignKey("kyc_cases.name", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("dsl_snapshot", sa.Text(), nullable=False),
        sa.Column("hash", sa.String(64), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_kyc_case_versions"),
        sa.UniqueConstraint(
            "case_name", "version", name="uq_kyc_case_versions_case_version"
        ),
    )
    op.create_index("idx_kyc_case_versions_case", "kyc_case_versions", ["case_name"])

    # kyc_case_amendments table
    op.create_table(
        "kyc_case_amendments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("case_name", sa.String(200), nullable=False),
        sa.Column("step", sa.String(100), nullable=False),
        sa.Column("change_type", sa.String(100), nullable=False),
        sa.Column("diff", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_kyc_case_amendments"),
    )
    op.create_index(
        "idx_kyc_case_amendments_case", "kyc_case_amendments", ["case_name"]
    )

    # kyc_lineage_evaluations table
    op.create_table(
        "kyc_lineage_evaluations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("case_name", sa.String(200), nullable=False),
        sa.Column("case_version", sa.Integer(), nullable=True),
        sa.Column("derived_code", sa.String(100), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("value_type", lineage_value_type_enum, nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("inputs", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("rule", sa.Text(), nullable=False),
        sa.Column("jurisdiction", sa.String(50), nullable=True),
        sa.Column("regulation_code", sa.String(50), nullable=True),
        sa.Column("evaluated_at", sa.DateTime(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_kyc_lineage_evaluations"),
    )
    op.create_index(
        "idx_lineage_evaluations_case", "kyc_lineage_evaluations", ["case_name"]
    )
    op.create_index(
        "idx_lineage_evaluations_derived", "kyc_lineage_evaluations", ["derived_code"]
    )


def downgrade() -> None:
    op.drop_index("idx_lineage_evaluations_derived", table_name="kyc_lineage_evaluations")
    op.drop_index("idx_lineage_evaluations_case", table_name="kyc_lineage_evaluations")
    op.drop_table("kyc_lineage_evaluations")

    op.drop_index("idx_kyc_case_amendments_case", table_name="kyc_case_amendments")
    op.drop_table("kyc_case_amendments")

    op.drop_index("idx_kyc_case_versions_case", table_name="kyc_case_versions")
    op.drop_table("kyc_case_versions")

    op.drop_index("idx_kyc_cases_status", table_name="kyc_cases")
    op.drop_table("kyc_cases")

    # Drop enum types
    sa.Enum(name="lineage_value_type_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="case_status_enum").drop(op.get_bind(), checkfirst=True)
