"""Shared fixtures: an in-memory version store and a JSON case codec."""

import asyncio
import json
from collections.abc import Callable, Sequence

import pytest

from kyc.amendment import AmendmentPipeline
from kyc.diff import compute_content_hash
from kyc.domain import KycCase
from kyc.errors import (
    ConcurrencyError,
    DuplicateCaseError,
    NotFoundError,
    ParseError,
    PersistenceError,
    ValidationError,
)
from kyc.store import StoredVersion


class FakeCodec:
    """Case codec that renders cases as sorted, indented JSON."""

    def __init__(self) -> None:
        self.delay = 0.0
        self.rejector: Callable[[KycCase], str | None] | None = None
        self.validated: list[tuple[str, str]] = []

    def dump(self, cases: Sequence[KycCase]) -> str:
        return json.dumps([c.to_dict() for c in cases], indent=2, sort_keys=True)

    async def parse(self, text: str) -> list[KycCase]:
        if self.delay:
            await asyncio.sleep(self.delay)
        try:
            raw = json.loads(text)
        except ValueError as e:
            raise ParseError(f"invalid snapshot: {e}") from e
        return [KycCase.from_dict(c) for c in raw]

    async def serialize(self, cases: list[KycCase]) -> str:
        return self.dump(cases)

    async def validate(self, case: KycCase, schema_ref: str) -> None:
        self.validated.append((case.name, schema_ref))
        if self.rejector is not None:
            reason = self.rejector(case)
            if reason:
                raise ValidationError(reason, case_name=case.name)


class InMemoryVersionStore:
    """VersionStore kept in dicts, with a yield point between read and write."""

    def __init__(self) -> None:
        self.versions: dict[str, list[StoredVersion]] = {}
        self.statuses: dict[str, str] = {}
        self.amendments: list[tuple[str, str, str, str]] = []
        self.lineage: list[tuple[str, int | None, str, bool]] = []
        self.fail_audit = False

    def seed(self, case_name: str, snapshot_text: str) -> None:
        """Store ``snapshot_text`` as the next version of ``case_name``."""
        history = self.versions.setdefault(case_name, [])
        history.append(
            StoredVersion(
                case_name=case_name,
                version_number=len(history) + 1,
                snapshot_text=snapshot_text,
                content_hash=compute_content_hash(snapshot_text),
            )
        )

    def version_numbers(self, case_name: str) -> list[int]:
        return [v.version_number for v in self.versions.get(case_name, [])]

    async def get_latest_version(self, case_name: str) -> StoredVersion:
        history = self.versions.get(case_name)
        if not history:
            raise NotFoundError(f"case not found: {case_name}", case_name=case_name)
        return max(history, key=lambda v: v.version_number)

    async def get_next_version_number(self, case_name: str) -> int:
        current = max(self.version_numbers(case_name), default=0)
        # Let other writers run between the read and the insert
        await asyncio.sleep(0)
        return current + 1

    async def insert_version(
        self,
        case_name: str,
        version_number: int,
        snapshot_text: str,
        content_hash: str,
        *,
        status: str | None = None,
    ) -> None:
        if version_number in self.version_numbers(case_name):
            raise ConcurrencyError(
                f"version {version_number} already exists",
                case_name=case_name,
                version_number=version_number,
            )
        self.versions.setdefault(case_name, []).append(
            StoredVersion(case_name, version_number, snapshot_text, content_hash)
        )
        if status is not None:
            self.statuses[case_name] = status

    async def insert_amendment_record(
        self, case_name: str, step_label: str, classification: str, diff_text: str
    ) -> None:
        if self.fail_audit:
            raise PersistenceError("audit table unavailable", case_name=case_name)
        self.amendments.append((case_name, step_label, classification, diff_text))

    async def create_case(
        self,
        case_name: str,
        snapshot_text: str,
        content_hash: str,
        *,
        client_business_unit: str | None = None,
        status: str = "pending",
    ) -> None:
        if self.versions.get(case_name):
            raise DuplicateCaseError(f"case already exists: {case_name}", case_name=case_name)
        self.versions[case_name] = [
            StoredVersion(case_name, 1, snapshot_text, content_hash)
        ]
        self.statuses[case_name] = status

    async def record_lineage_evaluations(self, case_name, case_version, results, specs) -> int:
        for r in results:
            self.lineage.append((case_name, case_version, r.derived_code, r.success))
        return len(results)


@pytest.fixture
def codec() -> FakeCodec:
    return FakeCodec()


@pytest.fixture
def store() -> InMemoryVersionStore:
    return InMemoryVersionStore()


@pytest.fixture
def pipeline(store: InMemoryVersionStore, codec: FakeCodec) -> AmendmentPipeline:
    return AmendmentPipeline(
        store, codec, schema_ref="kyc-dsl", step_timeout=None, enforce_lifecycle=True
    )
