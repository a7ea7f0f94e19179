"""Tests for the phase registry and phase inference."""

import pytest

from kyc.domain import FunctionMarker, KycCase, KycToken, OwnershipStructure
from kyc.errors import InvalidTransitionError
from kyc.lifecycle import (
    ASSESS_RISK,
    BUILD_OWNERSHIP_TREE,
    DISCOVER_POLICIES,
    LIFECYCLE_DEFINITIONS,
    REGULATOR_NOTIFY,
    SOLICIT_DOCUMENTS,
    VERIFY_OWNERSHIP,
    LifecyclePhase,
    can_add_function,
    get_current_phase,
    get_next_allowed_phases,
    is_terminal_phase,
    phase_for_function,
    phase_metadata,
    validate_transition,
)


def _make_case(**kwargs) -> KycCase:
    return KycCase(name="FUND-001", **kwargs)


class TestGetCurrentPhase:
    """Tests for phase inference from case structure."""

    def test_empty_case_is_creation(self) -> None:
        assert get_current_phase(_make_case()) == LifecyclePhase.CREATION

    def test_policies_mean_policy_discovery(self) -> None:
        case = _make_case(policies=["KYCPOL-UK-2025"])
        assert get_current_phase(case) == LifecyclePhase.POLICY_DISCOVERY

    def test_discovery_marker_alone(self) -> None:
        case = _make_case(functions=[FunctionMarker(DISCOVER_POLICIES)])
        assert get_current_phase(case) == LifecyclePhase.POLICY_DISCOVERY

    def test_obligations_mean_document_solicitation(self) -> None:
        case = _make_case(policies=["P"], obligations=["OBL-W8BEN-E"])
        assert get_current_phase(case) == LifecyclePhase.DOCUMENT_SOLICITATION

    def test_solicitation_marker_alone(self) -> None:
        case = _make_case(functions=[FunctionMarker(SOLICIT_DOCUMENTS)])
        assert get_current_phase(case) == LifecyclePhase.DOCUMENT_SOLICITATION

    def test_ownership_data(self) -> None:
        case = _make_case(ownership=OwnershipStructure(entity="FUND-001"))
        assert get_current_phase(case) == LifecyclePhase.OWNERSHIP_CONTROL

    def test_ownership_markers(self) -> None:
        for marker in (BUILD_OWNERSHIP_TREE, VERIFY_OWNERSHIP):
            case = _make_case(functions=[FunctionMarker(marker)])
            assert get_current_phase(case) == LifecyclePhase.OWNERSHIP_CONTROL

    def test_risk_markers(self) -> None:
        for marker in (ASSESS_RISK, REGULATOR_NOTIFY):
            case = _make_case(functions=[FunctionMarker(marker)])
            assert get_current_phase(case) == LifecyclePhase.RISK_REVIEW

    def test_final_token_wins_over_obligations(self) -> None:
        """Most advanced marker decides the phase."""
        case = _make_case(obligations=["OBL-W8BEN-E"], token=KycToken(status="approved"))
        assert get_current_phase(case) == LifecyclePhase.FINALIZATION

    def test_pending_token_is_not_final(self) -> None:
        case = _make_case(obligations=["OBL-W8BEN-E"], token=KycToken(status="pending"))
        assert get_current_phase(case) == LifecyclePhase.DOCUMENT_SOLICITATION

    @pytest.mark.parametrize("status", ["approved", "declined", "review"])
    def test_any_final_status(self, status: str) -> None:
        case = _make_case(token=KycToken(status=status))
        assert get_current_phase(case) == LifecyclePhase.FINALIZATION


class TestValidateTransition:
    """Tests for the registry's successor table."""

    def test_creation_to_policy_discovery(self) -> None:
        validate_transition(LifecyclePhase.CREATION, LifecyclePhase.POLICY_DISCOVERY)

    def test_creation_to_finalization_rejected(self) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(LifecyclePhase.CREATION, LifecyclePhase.FINALIZATION)
        assert exc_info.value.current == "CASE-CREATION"
        assert exc_info.value.target == "FINALIZATION"

    def test_risk_review_can_loop_back(self) -> None:
        validate_transition(
            LifecyclePhase.RISK_REVIEW, LifecyclePhase.DOCUMENT_SOLICITATION
        )
        validate_transition(LifecyclePhase.RISK_REVIEW, LifecyclePhase.FINALIZATION)

    def test_finalization_has_no_successors(self) -> None:
        for phase in LifecyclePhase:
            with pytest.raises(InvalidTransitionError):
                validate_transition(LifecyclePhase.FINALIZATION, phase)

    def test_no_self_transitions(self) -> None:
        with pytest.raises(InvalidTransitionError):
            validate_transition(
                LifecyclePhase.POLICY_DISCOVERY, LifecyclePhase.POLICY_DISCOVERY
            )


class TestRegistryQueries:
    """Tests for registry lookups."""

    def test_every_phase_defined(self) -> None:
        assert set(LIFECYCLE_DEFINITIONS) == set(LifecyclePhase)

    def test_next_allowed_phases_in_lifecycle_order(self) -> None:
        assert get_next_allowed_phases(LifecyclePhase.RISK_REVIEW) == [
            LifecyclePhase.DOCUMENT_SOLICITATION,
            LifecyclePhase.FINALIZATION,
        ]
        assert get_next_allowed_phases(LifecyclePhase.FINALIZATION) == []

    def test_can_add_function(self) -> None:
        assert can_add_function(LifecyclePhase.RISK_REVIEW, REGULATOR_NOTIFY)
        assert not can_add_function(LifecyclePhase.CREATION, DISCOVER_POLICIES)

    def test_phase_for_function(self) -> None:
        assert phase_for_function(VERIFY_OWNERSHIP) == LifecyclePhase.OWNERSHIP_CONTROL
        assert phase_for_function("UNKNOWN") is None

    def test_terminal(self) -> None:
        assert is_terminal_phase(LifecyclePhase.FINALIZATION)
        assert not any(
            is_terminal_phase(p) for p in LifecyclePhase if p != LifecyclePhase.FINALIZATION
        )

    def test_metadata(self) -> None:
        description, additions, functions = phase_metadata(
            LifecyclePhase.OWNERSHIP_CONTROL
        )
        assert "ownership" in description
        assert "beneficial owners" in additions
        assert functions == [BUILD_OWNERSHIP_TREE, VERIFY_OWNERSHIP]
