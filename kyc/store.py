"""Version store: where case snapshots and their audit records are persisted.

``VersionStore`` is the interface the amendment pipeline depends on;
``SqlVersionStore`` implements it over the SQLAlchemy models in
``app.models``. Each call runs in its own session and commits before
returning, so the version write and the audit write are two independent
transactions.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    CaseAmendment,
    CaseStatus,
    CaseVersion,
    KycCaseRecord,
    LineageEvaluation,
    LineageValueType,
)
from kyc.errors import (
    ConcurrencyError,
    DuplicateCaseError,
    NotFoundError,
    PersistenceError,
)

if TYPE_CHECKING:
    from kyc.lineage.evaluator import DerivedAttributeSpec, EvaluationResult

logger = logging.getLogger(__name__)


@dataclass
class StoredVersion:
    """The latest stored snapshot of a case."""

    case_name: str
    version_number: int
    snapshot_text: str
    content_hash: str


class VersionStore(Protocol):
    """Persistence collaborator for the amendment pipeline."""

    async def get_latest_version(self, case_name: str) -> StoredVersion: ...

    async def get_next_version_number(self, case_name: str) -> int: ...

    async def insert_version(
        self,
        case_name: str,
        version_number: int,
        snapshot_text: str,
        content_hash: str,
        *,
        status: str | None = None,
    ) -> None: ...

    async def insert_amendment_record(
        self, case_name: str, step_label: str, classification: str, diff_text: str
    ) -> None: ...

    async def create_case(
        self,
        case_name: str,
        snapshot_text: str,
        content_hash: str,
        *,
        client_business_unit: str | None = None,
        status: str = CaseStatus.PENDING.value,
    ) -> None: ...

    async def record_lineage_evaluations(
        self,
        case_name: str,
        case_version: int | None,
        results: Sequence[EvaluationResult],
        specs: Sequence[DerivedAttributeSpec],
    ) -> int: ...


def lineage_value_type(value: Any) -> LineageValueType | None:
    """Type tag stored alongside a derived value."""
    if value is None:
        return None
    if isinstance(value, bool):
        return LineageValueType.BOOLEAN
    if isinstance(value, int | float):
        return LineageValueType.NUMERIC
    return LineageValueType.STRING


def format_lineage_value(value: Any) -> str | None:
    """Render a derived value as text; booleans are lowercase."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list | tuple | dict):
        return json.dumps(value, default=str)
    return str(value)


def _json_safe(inputs: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(inputs, default=str))


class SqlVersionStore:
    """``VersionStore`` backed by PostgreSQL through SQLAlchemy."""

    def __init__(self, session_factory: Callable[[], AsyncSession] | None = None):
        """Initialize the store.

        Args:
            session_factory: Callable returning a new ``AsyncSession``
                (usable as an async context manager). Defaults to the
                application's ``async_session_maker``.
        """
        if session_factory is None:
            from app.models import async_session_maker

            session_factory = async_session_maker
        self.session_factory = session_factory

    async def get_latest_version(self, case_name: str) -> StoredVersion:
        """Load the highest-numbered version of a case.

        Raises:
            NotFoundError: If the case has no versions.
            PersistenceError: On database failure.
        """
        stmt = (
            select(CaseVersion)
            .where(CaseVersion.case_name == case_name)
            .order_by(CaseVersion.version.desc())
            .limit(1)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                row = result.scalars().first()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"failed to load latest version: {e}", case_name=case_name
            ) from e

        if row is None:
            raise NotFoundError(f"case not found: {case_name}", case_name=case_name)
        return StoredVersion(
            case_name=row.case_name,
            version_number=row.version,
            snapshot_text=row.dsl_snapshot,
            content_hash=row.hash,
        )

    async def get_next_version_number(self, case_name: str) -> int:
        """Return ``max(version) + 1`` for the case, or 1 if it has none."""
        stmt = select(func.coalesce(func.max(CaseVersion.version), 0)).where(
            CaseVersion.case_name == case_name
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                current = result.scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"failed to compute next version: {e}", case_name=case_name
            ) from e
        return int(current) + 1

    async def insert_version(
        self,
        case_name: str,
        version_number: int,
        snapshot_text: str,
        content_hash: str,
        *,
        status: str | None = None,
    ) -> None:
        """Insert a version row and refresh the case row in one transaction.

        Raises:
            ConcurrencyError: If ``version_number`` is already taken.
            PersistenceError: On any other database failure.
        """
        values: dict[str, Any] = {"last_updated": datetime.utcnow()}
        if status is not None:
            values["status"] = status

        try:
            async with self.session_factory() as session:
                session.add(
                    CaseVersion(
                        case_name=case_name,
                        version=version_number,
                        dsl_snapshot=snapshot_text,
                        hash=content_hash,
                    )
                )
                await session.execute(
                    update(KycCaseRecord)
                    .where(KycCaseRecord.name == case_name)
                    .values(**values)
                )
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise ConcurrencyError(
                        f"version {version_number} already exists",
                        case_name=case_name,
                        version_number=version_number,
                    ) from e
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"failed to insert version {version_number}: {e}", case_name=case_name
            ) from e

    async def insert_amendment_record(
        self, case_name: str, step_label: str, classification: str, diff_text: str
    ) -> None:
        """Append an audit record for an applied amendment."""
        try:
            async with self.session_factory() as session:
                session.add(
                    CaseAmendment(
                        case_name=case_name,
                        step=step_label,
                        change_type=classification,
                        diff=diff_text,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"failed to insert amendment record: {e}",
                case_name=case_name,
                step_label=step_label,
            ) from e

    async def create_case(
        self,
        case_name: str,
        snapshot_text: str,
        content_hash: str,
        *,
        client_business_unit: str | None = None,
        status: str = CaseStatus.PENDING.value,
    ) -> None:
        """Insert the case row and its version 1 in one transaction.

        Raises:
            DuplicateCaseError: If the case name is already taken.
            PersistenceError: On any other database failure.
        """
        try:
            async with self.session_factory() as session:
                existing = await session.execute(
                    select(KycCaseRecord.id).where(KycCaseRecord.name == case_name)
                )
                if existing.scalar_one_or_none() is not None:
                    raise DuplicateCaseError(
                        f"case already exists: {case_name}", case_name=case_name
                    )
                session.add(
                    KycCaseRecord(
                        name=case_name,
                        status=status,
                        client_business_unit=client_business_unit or None,
                    )
                )
                # The version row references the case row by name
                await session.flush()
                session.add(
                    CaseVersion(
                        case_name=case_name,
                        version=1,
                        dsl_snapshot=snapshot_text,
                        hash=content_hash,
                    )
                )
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise DuplicateCaseError(
                        f"case already exists: {case_name}", case_name=case_name
                    ) from e
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"failed to create case: {e}", case_name=case_name
            ) from e

    async def record_lineage_evaluations(
        self,
        case_name: str,
        case_version: int | None,
        results: Sequence[EvaluationResult],
        specs: Sequence[DerivedAttributeSpec],
    ) -> int:
        """Persist one audit row per evaluation result.

        Returns:
            Number of rows written.
        """
        specs_by_code = {spec.code: spec for spec in specs}
        rows = []
        for result in results:
            spec = specs_by_code.get(result.derived_code)
            value_type = lineage_value_type(result.value) if result.success else None
            rows.append(
                LineageEvaluation(
                    case_name=case_name,
                    case_version=case_version,
                    derived_code=result.derived_code,
                    value=format_lineage_value(result.value) if result.success else None,
                    value_type=value_type.value if value_type else None,
                    success=result.success,
                    error=result.error,
                    inputs=_json_safe(result.inputs) if result.inputs else None,
                    rule=result.rule,
                    jurisdiction=spec.jurisdiction if spec else None,
                    regulation_code=spec.regulation if spec else None,
                    evaluated_at=result.evaluated_at.replace(tzinfo=None),
                )
            )

        try:
            async with self.session_factory() as session:
                session.add_all(rows)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"failed to record lineage evaluations: {e}", case_name=case_name
            ) from e

        logger.info(
            f"Recorded {len(rows)} lineage evaluations for {case_name} v{case_version}"
        )
        return len(rows)
