"""CRUD operations for the case audit surface."""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.case import KycCaseRecord
from app.models.lineage import LineageEvaluation
from app.models.version import CaseAmendment, CaseVersion
from app.schemas.case import (
    AmendmentSchema,
    CaseSummarySchema,
    CaseVersionSchema,
    LineageEvaluationSchema,
)


async def list_versions(
    session: AsyncSession, case_name: str
) -> list[CaseVersionSchema]:
    """Return every version of a case, oldest first."""
    stmt = (
        select(CaseVersion)
        .where(CaseVersion.case_name == case_name)
        .order_by(CaseVersion.version)
    )
    result = await session.execute(stmt)
    return [CaseVersionSchema.model_validate(v) for v in result.scalars().all()]


async def list_cases(session: AsyncSession) -> list[CaseSummarySchema]:
    """Return all cases with their version counts, most recently updated first."""
    version_count = func.count(CaseVersion.id).label("version_count")
    stmt = (
        select(
            KycCaseRecord.name,
            KycCaseRecord.status,
            KycCaseRecord.last_updated,
            version_count,
        )
        .outerjoin(CaseVersion, CaseVersion.case_name == KycCaseRecord.name)
        .group_by(KycCaseRecord.id)
        .order_by(KycCaseRecord.last_updated.desc())
    )
    result = await session.execute(stmt)

    return [
        CaseSummarySchema(
            name=row.name,
            version_count=row.version_count,
            status=getattr(row.status, "value", row.status),
            last_updated=row.last_updated,
        )
        for row in result.all()
    ]


async def list_amendments(
    session: AsyncSession, case_name: str
) -> list[AmendmentSchema]:
    """Return the amendment audit trail for a case, newest first."""
    stmt = (
        select(CaseAmendment)
        .where(CaseAmendment.case_name == case_name)
        .order_by(CaseAmendment.created_at.desc(), CaseAmendment.id.desc())
    )
    result = await session.execute(stmt)
    return [AmendmentSchema.model_validate(a) for a in result.scalars().all()]


async def list_lineage_evaluations(
    session: AsyncSession, case_name: str
) -> list[LineageEvaluationSchema]:
    """Return recorded derived attribute evaluations for a case, newest first."""
    stmt = (
        select(LineageEvaluation)
        .where(LineageEvaluation.case_name == case_name)
        .order_by(LineageEvaluation.evaluated_at.desc(), LineageEvaluation.id)
    )
    result = await session.execute(stmt)
    return [
        LineageEvaluationSchema.model_validate(e) for e in result.scalars().all()
    ]
