"""Tests for the SQLAlchemy-backed version store."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.models import CaseAmendment, CaseVersion, KycCaseRecord, LineageEvaluation
from kyc.errors import (
    ConcurrencyError,
    DuplicateCaseError,
    NotFoundError,
    PersistenceError,
)
from kyc.lineage import DerivedAttributeSpec, EvaluationResult
from kyc.store import (
    SqlVersionStore,
    format_lineage_value,
    lineage_value_type,
)


def _make_session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    session.add_all = MagicMock()
    return session


def _make_store(session: AsyncMock) -> SqlVersionStore:
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return SqlVersionStore(session_factory=factory)


def _integrity_error() -> IntegrityError:
    return IntegrityError("INSERT ...", {}, Exception("duplicate key"))


class TestGetLatestVersion:
    """Tests for SqlVersionStore.get_latest_version."""

    @pytest.mark.asyncio
    async def test_returns_latest(self) -> None:
        row = MagicMock()
        row.case_name = "FUND-001"
        row.version = 3
        row.dsl_snapshot = "(kyc-case FUND-001)"
        row.hash = "ab" * 32
        result = MagicMock()
        result.scalars.return_value.first.return_value = row
        session = _make_session()
        session.execute.return_value = result

        stored = await _make_store(session).get_latest_version("FUND-001")

        assert stored.version_number == 3
        assert stored.snapshot_text == "(kyc-case FUND-001)"
        assert stored.content_hash == "ab" * 32

    @pytest.mark.asyncio
    async def test_not_found(self) -> None:
        result = MagicMock()
        result.scalars.return_value.first.return_value = None
        session = _make_session()
        session.execute.return_value = result

        with pytest.raises(NotFoundError) as exc_info:
            await _make_store(session).get_latest_version("NOPE")
        assert exc_info.value.case_name == "NOPE"

    @pytest.mark.asyncio
    async def test_database_error(self) -> None:
        session = _make_session()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

        with pytest.raises(PersistenceError):
            await _make_store(session).get_latest_version("FUND-001")


class TestGetNextVersionNumber:
    """Tests for SqlVersionStore.get_next_version_number."""

    @pytest.mark.asyncio
    async def test_max_plus_one(self) -> None:
        result = MagicMock()
        result.scalar_one.return_value = 3
        session = _make_session()
        session.execute.return_value = result

        assert await _make_store(session).get_next_version_number("FUND-001") == 4

    @pytest.mark.asyncio
    async def test_first_version(self) -> None:
        result = MagicMock()
        result.scalar_one.return_value = 0
        session = _make_session()
        session.execute.return_value = result

        assert await _make_store(session).get_next_version_number("NEW-001") == 1


class TestInsertVersion:
    """Tests for SqlVersionStore.insert_version."""

    @pytest.mark.asyncio
    async def test_adds_row_and_commits(self) -> None:
        session = _make_session()

        await _make_store(session).insert_version(
            "FUND-001", 2, "snapshot", "ab" * 32, status="complete"
        )

        added = session.add.call_args.args[0]
        assert isinstance(added, CaseVersion)
        assert (added.case_name, added.version, added.dsl_snapshot) == (
            "FUND-001",
            2,
            "snapshot",
        )
        session.execute.assert_awaited_once()
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_duplicate_version_is_concurrency_error(self) -> None:
        session = _make_session()
        session.commit.side_effect = _integrity_error()

        with pytest.raises(ConcurrencyError) as exc_info:
            await _make_store(session).insert_version("FUND-001", 2, "s", "h")

        assert exc_info.value.version_number == 2
        assert isinstance(exc_info.value, PersistenceError)
        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_other_database_error(self) -> None:
        session = _make_session()
        session.commit.side_effect = OperationalError("COMMIT", {}, Exception("down"))

        with pytest.raises(PersistenceError) as exc_info:
            await _make_store(session).insert_version("FUND-001", 2, "s", "h")
        assert not isinstance(exc_info.value, ConcurrencyError)


class TestInsertAmendmentRecord:
    """Tests for SqlVersionStore.insert_amendment_record."""

    @pytest.mark.asyncio
    async def test_adds_record(self) -> None:
        session = _make_session()

        await _make_store(session).insert_amendment_record(
            "FUND-001", "policy-discovery", "policy-injection", "+ x\n"
        )

        added = session.add.call_args.args[0]
        assert isinstance(added, CaseAmendment)
        assert added.change_type == "policy-injection"
        assert added.diff == "+ x\n"
        session.commit.assert_awaited_once()


class TestCreateCase:
    """Tests for SqlVersionStore.create_case."""

    @pytest.mark.asyncio
    async def test_inserts_case_and_first_version(self) -> None:
        existing = MagicMock()
        existing.scalar_one_or_none.return_value = None
        session = _make_session()
        session.execute.return_value = existing

        await _make_store(session).create_case(
            "FUND-001", "snapshot", "ab" * 32, client_business_unit="CBU-1"
        )

        record, version = [c.args[0] for c in session.add.call_args_list]
        assert isinstance(record, KycCaseRecord)
        assert record.client_business_unit == "CBU-1"
        assert isinstance(version, CaseVersion)
        assert version.version == 1
        session.flush.assert_awaited_once()
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_existing_name(self) -> None:
        existing = MagicMock()
        existing.scalar_one_or_none.return_value = 7
        session = _make_session()
        session.execute.return_value = existing

        with pytest.raises(DuplicateCaseError):
            await _make_store(session).create_case("FUND-001", "s", "h")
        session.add.assert_not_called()


class TestRecordLineageEvaluations:
    """Tests for SqlVersionStore.record_lineage_evaluations."""

    @pytest.mark.asyncio
    async def test_writes_one_row_per_result(self) -> None:
        spec = DerivedAttributeSpec(
            code="PEP_EXPOSURE_FLAG",
            rule="PEP_STATUS == true",
            source_attributes=("PEP_STATUS",),
            jurisdiction="GLOBAL",
            regulation="AMLD5",
        )
        ok = EvaluationResult(
            derived_code="PEP_EXPOSURE_FLAG",
            value=True,
            success=True,
            rule=spec.rule,
            inputs={"PEP_STATUS": True},
            evaluated_at=datetime(2025, 1, 1, tzinfo=UTC),
        )
        failed = EvaluationResult(
            derived_code="OTHER", value=None, success=False, rule="X", error="not compiled"
        )
        session = _make_session()

        count = await _make_store(session).record_lineage_evaluations(
            "FUND-001", 4, [ok, failed], [spec]
        )

        assert count == 2
        rows = session.add_all.call_args.args[0]
        assert all(isinstance(r, LineageEvaluation) for r in rows)
        assert rows[0].value == "true"
        assert rows[0].value_type == "boolean"
        assert rows[0].regulation_code == "AMLD5"
        assert rows[0].inputs == {"PEP_STATUS": True}
        assert rows[0].evaluated_at.tzinfo is None
        assert rows[1].success is False
        assert rows[1].value is None
        assert rows[1].jurisdiction is None
        session.commit.assert_awaited_once()


class TestValueFormatting:
    """Tests for lineage value tagging."""

    def test_value_type(self) -> None:
        assert lineage_value_type(True).value == "boolean"
        assert lineage_value_type(45.0).value == "numeric"
        assert lineage_value_type(3).value == "numeric"
        assert lineage_value_type("IR").value == "string"
        assert lineage_value_type(None) is None

    def test_format(self) -> None:
        assert format_lineage_value(False) == "false"
        assert format_lineage_value(45.0) == "45.0"
        assert format_lineage_value(["a"]) == '["a"]'
        assert format_lineage_value(None) is None
