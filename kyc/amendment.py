"""Amendment pipeline: load, mutate, validate, diff, version and audit a case.

An amendment takes the latest snapshot of a case, rebuilds the structured
case through the DSL codec, applies one mutation, and, if the result
validates, stores it as the next version together with an audit record.

Nothing is written until the mutated case has been validated. The version
write and the audit write are separate transactions: if the audit write
fails the version stays, unaudited, and the failure is logged at ERROR.

Writers on the same case are serialized by a per-case lock held for the
whole amendment; the unique constraint on (case, version) in the store
catches writers in other processes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TypeVar

from app.config import settings
from kyc.codec import CaseCodec
from kyc.diff import compute_content_hash, generate_simple_diff, short_hash
from kyc.domain import FunctionMarker, KycCase
from kyc.errors import BindError, InvalidTransitionError, KycError, StepTimeoutError
from kyc.lifecycle import (
    LifecyclePhase,
    get_current_phase,
    is_terminal_phase,
    phase_for_function,
    validate_transition,
)
from kyc.mutations import Action, Finalize, action_for_step, apply_action
from kyc.store import VersionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

CASE_CREATION_STEP = "CASE-CREATION"

# Step label -> audit classification. "approve" is resolved separately
# because it depends on whether the case carries a token.
CHANGE_CLASSIFICATIONS = {
    CASE_CREATION_STEP: "initialization",
    "policy-discovery": "policy-injection",
    "document-solicitation": "obligation-addition",
    "ownership-discovery": "ownership-tree",
    "risk-assessment": "risk-assessment",
    "regulator-notify": "regulator-notification",
    "decline": "finalization-declined",
    "review": "status-review",
}
GENERIC_CLASSIFICATION = "generic-amendment"

_UNSET: object = object()


def detect_change_type(step_label: str, case: KycCase) -> str:
    """Classify an amendment for the audit trail from its step label."""
    if step_label == "approve":
        if case.token is not None:
            return f"token-update:{case.token.status}"
        return "finalization-approved"
    return CHANGE_CLASSIFICATIONS.get(step_label, GENERIC_CLASSIFICATION)


@dataclass
class AmendmentOutcome:
    """What a successful amendment produced."""

    case_name: str
    step_label: str
    version_number: int
    content_hash: str
    change_classification: str
    diff: str
    phase_before: LifecyclePhase | None
    phase_after: LifecyclePhase


class CaseLockRegistry:
    """One ``asyncio.Lock`` per case name while anyone holds or awaits it.

    A case's lock is dropped as soon as its last user leaves, so the
    registry only ever holds the cases currently being written.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, case_name: str) -> AsyncIterator[None]:
        """Serialize writers of ``case_name`` for the duration of the block."""
        lock = self._locks.setdefault(case_name, asyncio.Lock())
        self._users[case_name] = self._users.get(case_name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[case_name] -= 1
            if not self._users[case_name]:
                del self._users[case_name]
                del self._locks[case_name]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class _PreparedAmendment:
    case: KycCase
    new_text: str
    content_hash: str
    diff: str
    phase_before: LifecyclePhase | None
    phase_after: LifecyclePhase


class AmendmentPipeline:
    """Applies mutations to stored cases, producing new versions."""

    def __init__(
        self,
        store: VersionStore,
        codec: CaseCodec,
        *,
        schema_ref: str | None = None,
        step_timeout: float | None | object = _UNSET,
        enforce_lifecycle: bool | None = None,
        locks: CaseLockRegistry | None = None,
    ):
        """Initialize the pipeline.

        Args:
            store: Version store collaborator.
            codec: Parse/serialize/validate collaborator.
            schema_ref: Schema passed to ``codec.validate``. Defaults to
                ``settings.schema_ref``.
            step_timeout: Deadline in seconds for each collaborator call;
                None disables deadlines. Defaults to ``settings.step_timeout``.
            enforce_lifecycle: Gate mutations on the phase registry.
                Defaults to ``settings.enforce_lifecycle``.
            locks: Per-case lock registry. Pipelines that share a registry
                serialize amendments to the same case.
        """
        self.store = store
        self.codec = codec
        self.schema_ref = schema_ref or settings.schema_ref
        self.step_timeout: float | None = (
            settings.step_timeout if step_timeout is _UNSET else step_timeout  # type: ignore[assignment]
        )
        self.enforce_lifecycle = (
            settings.enforce_lifecycle if enforce_lifecycle is None else enforce_lifecycle
        )
        self.locks = locks or CaseLockRegistry()

    # =========================================================================
    # Public operations
    # =========================================================================

    async def apply(
        self,
        case_name: str,
        step_label: str,
        mutation: Action | Callable[[KycCase], object],
    ) -> AmendmentOutcome:
        """Apply one mutation to the latest version of a case.

        Args:
            case_name: Case to amend.
            step_label: Name of the step, used for the audit classification.
            mutation: A tagged action from ``kyc.mutations`` or a callable
                that mutates the case in place.

        Returns:
            The new version's outcome.

        Raises:
            KycError: The first failure, tagged with the case, step and stage.
        """
        async with self.locks.hold(case_name):
            try:
                prepared = await self._prepare(case_name, step_label, mutation)
            except KycError as e:
                logger.warning(f"Amendment rejected: {e}")
                raise
            return await self._persist(case_name, step_label, prepared)

    async def apply_step(self, case_name: str, step_label: str) -> AmendmentOutcome:
        """Apply a named step such as "policy-discovery" or "approve".

        Raises:
            ValueError: If the step name is unknown.
        """
        action = action_for_step(step_label)
        return await self.apply(case_name, step_label, action)

    async def create_case(self, case: KycCase) -> AmendmentOutcome:
        """Store a new case as version 1 with a CASE-CREATION audit record.

        Raises:
            DuplicateCaseError: If the case name is already taken.
            KycError: On serialization or validation failure.
        """
        async with self.locks.hold(case.name):
            try:
                new_text = await self._call(
                    "serialize", self.codec.serialize([case]), case.name, CASE_CREATION_STEP
                )
                await self._call(
                    "validate",
                    self.codec.validate(case, self.schema_ref),
                    case.name,
                    CASE_CREATION_STEP,
                )
            except KycError as e:
                logger.warning(f"Case creation rejected: {e}")
                raise

            prepared = _PreparedAmendment(
                case=case,
                new_text=new_text,
                content_hash=compute_content_hash(new_text),
                diff=generate_simple_diff("", new_text),
                phase_before=None,
                phase_after=get_current_phase(case),
            )
            return await self._persist(case.name, CASE_CREATION_STEP, prepared)

    # =========================================================================
    # Steps
    # =========================================================================

    async def _prepare(
        self,
        case_name: str,
        step_label: str,
        mutation: Action | Callable[[KycCase], object],
    ) -> _PreparedAmendment:
        """Load, rebuild, mutate, serialize, validate and diff (no writes)."""
        stored = await self._call(
            "load", self.store.get_latest_version(case_name), case_name, step_label
        )
        cases = await self._call(
            "parse", self.codec.parse(stored.snapshot_text), case_name, step_label
        )
        if len(cases) != 1:
            raise BindError(
                f"expected exactly one case in snapshot v{stored.version_number}, "
                f"found {len(cases)}",
                case_name=case_name,
                step_label=step_label,
                stage="parse",
            )
        case = cases[0]

        # Diff against the round-tripped form, not the raw stored text
        old_text = await self._call(
            "serialize", self.codec.serialize([case]), case_name, step_label
        )

        before = get_current_phase(case)
        if self.enforce_lifecycle:
            self._check_entry(before, mutation, case_name, step_label)
        marker_count = len(case.functions)

        self._mutate(case, mutation)

        after = get_current_phase(case)
        if self.enforce_lifecycle:
            self._check_exit(
                before, after, case.functions[marker_count:], case_name, step_label
            )

        new_text = await self._call(
            "serialize", self.codec.serialize([case]), case_name, step_label
        )
        await self._call(
            "validate", self.codec.validate(case, self.schema_ref), case_name, step_label
        )

        return _PreparedAmendment(
            case=case,
            new_text=new_text,
            content_hash=compute_content_hash(new_text),
            diff=generate_simple_diff(old_text, new_text),
            phase_before=before,
            phase_after=after,
        )

    async def _persist(
        self, case_name: str, step_label: str, prepared: _PreparedAmendment
    ) -> AmendmentOutcome:
        """Write the version, then the audit record."""
        case = prepared.case
        try:
            if step_label == CASE_CREATION_STEP:
                version_number = 1
                await self._call(
                    "persist-version",
                    self.store.create_case(
                        case.name,
                        prepared.new_text,
                        prepared.content_hash,
                        client_business_unit=case.client_business_unit,
                        status=case.status,
                    ),
                    case_name,
                    step_label,
                )
            else:
                version_number = await self._call(
                    "allocate-version",
                    self.store.get_next_version_number(case_name),
                    case_name,
                    step_label,
                )
                await self._call(
                    "persist-version",
                    self.store.insert_version(
                        case_name,
                        version_number,
                        prepared.new_text,
                        prepared.content_hash,
                        status=case.status,
                    ),
                    case_name,
                    step_label,
                )
        except KycError as e:
            logger.warning(f"Amendment not persisted: {e}")
            raise

        logger.info(
            f"Stored {case_name} v{version_number} ({short_hash(prepared.content_hash)}) "
            f"after {step_label}"
        )

        classification = detect_change_type(step_label, case)
        try:
            await self._call(
                "audit",
                self.store.insert_amendment_record(
                    case_name, step_label, classification, prepared.diff
                ),
                case_name,
                step_label,
            )
        except KycError as e:
            logger.error(f"{case_name} v{version_number} stored without audit record: {e}")
            raise
        logger.info(f"Audited {case_name} v{version_number} as {classification}")

        return AmendmentOutcome(
            case_name=case_name,
            step_label=step_label,
            version_number=version_number,
            content_hash=prepared.content_hash,
            change_classification=classification,
            diff=prepared.diff,
            phase_before=prepared.phase_before,
            phase_after=prepared.phase_after,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _call(
        self, stage: str, awaitable: Awaitable[T], case_name: str, step_label: str
    ) -> T:
        """Await a collaborator call under the step deadline, tagging errors."""
        try:
            if self.step_timeout is None:
                return await awaitable
            return await asyncio.wait_for(awaitable, self.step_timeout)
        except TimeoutError as e:
            raise StepTimeoutError(
                f"exceeded {self.step_timeout}s deadline",
                case_name=case_name,
                step_label=step_label,
                stage=stage,
            ) from e
        except KycError as e:
            e.case_name = e.case_name or case_name
            e.step_label = e.step_label or step_label
            e.stage = e.stage or stage
            raise

    @staticmethod
    def _mutate(case: KycCase, mutation: Action | Callable[[KycCase], object]) -> None:
        if isinstance(mutation, Action):
            apply_action(case, mutation)
        else:
            mutation(case)

    @staticmethod
    def _check_entry(
        before: LifecyclePhase,
        mutation: Action | Callable[[KycCase], object],
        case_name: str,
        step_label: str,
    ) -> None:
        if is_terminal_phase(before) and not isinstance(mutation, Finalize):
            raise InvalidTransitionError(
                f"case is in terminal phase {before}; only finalization is allowed",
                current=str(before),
                case_name=case_name,
                step_label=step_label,
                stage="lifecycle",
            )

    @staticmethod
    def _check_exit(
        before: LifecyclePhase,
        after: LifecyclePhase,
        added: list[FunctionMarker],
        case_name: str,
        step_label: str,
    ) -> None:
        try:
            for marker in added:
                home = phase_for_function(marker.action)
                if home is None:
                    raise InvalidTransitionError(
                        f"function {marker.action} belongs to no lifecycle phase",
                        current=str(before),
                    )
                if home != before:
                    validate_transition(before, home)
            if after != before:
                validate_transition(before, after)
        except InvalidTransitionError as e:
            e.case_name = case_name
            e.step_label = step_label
            e.stage = "lifecycle"
            raise
