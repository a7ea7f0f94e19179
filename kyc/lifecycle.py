"""Phase registry and phase inference for the KYC case lifecycle.

The registry is a fixed table: each phase lists the phases that may follow
it and the function markers that belong to it. A case's phase is never
stored; it is inferred from the markers and data present on the case,
checking the most advanced phase first.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from app.models.enums import TokenStatus
from kyc.domain import KycCase
from kyc.errors import InvalidTransitionError


class LifecyclePhase(StrEnum):
    """A stage in the KYC case lifecycle."""

    CREATION = "CASE-CREATION"
    POLICY_DISCOVERY = "POLICY-DISCOVERY"
    DOCUMENT_SOLICITATION = "DOCUMENT-SOLICITATION"
    OWNERSHIP_CONTROL = "OWNERSHIP-CONTROL"
    RISK_REVIEW = "RISK-REVIEW"
    FINALIZATION = "FINALIZATION"


# Function marker names
DISCOVER_POLICIES = "DISCOVER-POLICIES"
SOLICIT_DOCUMENTS = "SOLICIT-DOCUMENTS"
BUILD_OWNERSHIP_TREE = "BUILD-OWNERSHIP-TREE"
VERIFY_OWNERSHIP = "VERIFY-OWNERSHIP"
ASSESS_RISK = "ASSESS-RISK"
REGULATOR_NOTIFY = "REGULATOR-NOTIFY"


@dataclass(frozen=True)
class PhaseDefinition:
    """What a phase adds to a case and where it may go next."""

    phase: LifecyclePhase
    description: str
    additions: tuple[str, ...]
    functions: frozenset[str]
    next_phases: frozenset[LifecyclePhase]


LIFECYCLE_DEFINITIONS: dict[LifecyclePhase, PhaseDefinition] = {
    LifecyclePhase.CREATION: PhaseDefinition(
        phase=LifecyclePhase.CREATION,
        description="Initialize the case with nature, purpose, and client business unit",
        additions=("kyc-case", "nature-purpose", "client-business-unit"),
        functions=frozenset(),
        next_phases=frozenset({LifecyclePhase.POLICY_DISCOVERY}),
    ),
    LifecyclePhase.POLICY_DISCOVERY: PhaseDefinition(
        phase=LifecyclePhase.POLICY_DISCOVERY,
        description="Discover which policies apply based on product & jurisdiction",
        additions=("policy nodes (auto-injected)",),
        functions=frozenset({DISCOVER_POLICIES}),
        next_phases=frozenset({LifecyclePhase.DOCUMENT_SOLICITATION}),
    ),
    LifecyclePhase.DOCUMENT_SOLICITATION: PhaseDefinition(
        phase=LifecyclePhase.DOCUMENT_SOLICITATION,
        description="Request proofs (W8/W9, UBO declarations, etc.)",
        additions=("obligation nodes",),
        functions=frozenset({SOLICIT_DOCUMENTS}),
        next_phases=frozenset({LifecyclePhase.OWNERSHIP_CONTROL}),
    ),
    LifecyclePhase.OWNERSHIP_CONTROL: PhaseDefinition(
        phase=LifecyclePhase.OWNERSHIP_CONTROL,
        description="Build legal & beneficial ownership graph + operational control roles",
        additions=(
            "ownership-structure",
            "legal owners",
            "beneficial owners",
            "controllers",
            "operational roles",
        ),
        functions=frozenset({BUILD_OWNERSHIP_TREE, VERIFY_OWNERSHIP}),
        next_phases=frozenset({LifecyclePhase.RISK_REVIEW}),
    ),
    LifecyclePhase.RISK_REVIEW: PhaseDefinition(
        phase=LifecyclePhase.RISK_REVIEW,
        description="Compute KYC score; escalate or approve",
        additions=("risk assessment results",),
        functions=frozenset({ASSESS_RISK, REGULATOR_NOTIFY}),
        # Can loop back for additional documents
        next_phases=frozenset(
            {LifecyclePhase.FINALIZATION, LifecyclePhase.DOCUMENT_SOLICITATION}
        ),
    ),
    LifecyclePhase.FINALIZATION: PhaseDefinition(
        phase=LifecyclePhase.FINALIZATION,
        description="Token issuance / completion",
        additions=("kyc-token status update",),
        functions=frozenset(),
        next_phases=frozenset(),
    ),
}

# Phases in inference order, most advanced first
_INFERENCE_ORDER = (
    LifecyclePhase.FINALIZATION,
    LifecyclePhase.RISK_REVIEW,
    LifecyclePhase.OWNERSHIP_CONTROL,
    LifecyclePhase.DOCUMENT_SOLICITATION,
    LifecyclePhase.POLICY_DISCOVERY,
)


def _has_phase_data(case: KycCase, phase: LifecyclePhase) -> bool:
    """True if the case carries structural data belonging to the phase."""
    if phase == LifecyclePhase.FINALIZATION:
        return case.token is not None and case.token.status != TokenStatus.PENDING.value
    if phase == LifecyclePhase.OWNERSHIP_CONTROL:
        return case.ownership is not None
    if phase == LifecyclePhase.DOCUMENT_SOLICITATION:
        return len(case.obligations) > 0
    if phase == LifecyclePhase.POLICY_DISCOVERY:
        return len(case.policies) > 0
    return False


def get_current_phase(case: KycCase) -> LifecyclePhase:
    """Infer the most advanced phase a case has reached.

    A case showing markers from several phases is classified by the most
    advanced one, so an approved case that also has obligations is in
    FINALIZATION.
    """
    for phase in _INFERENCE_ORDER:
        markers = LIFECYCLE_DEFINITIONS[phase].functions
        if _has_phase_data(case, phase) or case.has_function(*markers):
            return phase
    return LifecyclePhase.CREATION


def validate_transition(current: LifecyclePhase, target: LifecyclePhase) -> None:
    """Check that ``target`` may follow ``current``.

    Raises:
        InvalidTransitionError: If the registry does not list ``target`` as
            a successor of ``current``.
    """
    definition = LIFECYCLE_DEFINITIONS.get(current)
    if definition is None:
        raise InvalidTransitionError(
            f"unknown current phase: {current}", current=str(current), target=str(target)
        )
    if target not in definition.next_phases:
        raise InvalidTransitionError(
            f"invalid transition from {current} to {target}",
            current=str(current),
            target=str(target),
        )


def get_next_allowed_phases(phase: LifecyclePhase) -> list[LifecyclePhase]:
    """Return the phases that may follow ``phase``, in lifecycle order."""
    definition = LIFECYCLE_DEFINITIONS.get(phase)
    if definition is None:
        return []
    return [p for p in LifecyclePhase if p in definition.next_phases]


def can_add_function(phase: LifecyclePhase, action: str) -> bool:
    """True if the function marker ``action`` belongs to ``phase``."""
    definition = LIFECYCLE_DEFINITIONS.get(phase)
    if definition is None:
        return False
    return action in definition.functions


def phase_for_function(action: str) -> LifecyclePhase | None:
    """Return the phase that owns a function marker, or None if unknown."""
    for phase in LifecyclePhase:
        if can_add_function(phase, action):
            return phase
    return None


def is_terminal_phase(phase: LifecyclePhase) -> bool:
    return phase == LifecyclePhase.FINALIZATION


def phase_metadata(phase: LifecyclePhase) -> tuple[str, list[str], list[str]]:
    """Return (description, additions, functions) for display."""
    definition = LIFECYCLE_DEFINITIONS.get(phase)
    if definition is None:
        return "Unknown phase", [], []
    return (
        definition.description,
        list(definition.additions),
        sorted(definition.functions),
    )
