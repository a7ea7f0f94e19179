"""Tests for the kycctl command handlers that need no database."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from kyc import cli
from kyc.amendment import AmendmentOutcome
from kyc.errors import ValidationError
from kyc.lifecycle import LifecyclePhase


class TestSteps:
    """Tests for the steps command."""

    def test_lists_steps(self, capsys) -> None:
        assert cli.steps_command() == 0
        out = capsys.readouterr().out
        assert "policy-discovery" in out
        assert "Finalize case as approved" in out

    def test_main_dispatch(self, capsys) -> None:
        with patch("sys.argv", ["kycctl", "steps"]):
            assert cli.main() == 0
        assert "regulator-notify" in capsys.readouterr().out


class TestAmend:
    """Tests for the amend command."""

    @pytest.mark.asyncio
    async def test_success(self, capsys) -> None:
        pipeline = AsyncMock()
        pipeline.apply_step.return_value = AmendmentOutcome(
            case_name="FUND-001",
            step_label="policy-discovery",
            version_number=2,
            content_hash="ab" * 32,
            change_classification="policy-injection",
            diff="+ KYCPOL-UK-2025\n",
            phase_before=LifecyclePhase.CREATION,
            phase_after=LifecyclePhase.POLICY_DISCOVERY,
        )
        with patch("kyc.cli._build_pipeline", return_value=pipeline):
            assert await cli.amend_command("FUND-001", "policy-discovery") == 0

        out = capsys.readouterr().out
        assert "v2" in out
        assert "policy-injection" in out

    @pytest.mark.asyncio
    async def test_failure_returns_1(self) -> None:
        pipeline = AsyncMock()
        pipeline.apply_step.side_effect = ValidationError("rejected", case_name="FUND-001")
        with patch("kyc.cli._build_pipeline", return_value=pipeline):
            assert await cli.amend_command("FUND-001", "policy-discovery") == 1

    @pytest.mark.asyncio
    async def test_unknown_step_returns_1(self) -> None:
        pipeline = AsyncMock()
        pipeline.apply_step.side_effect = ValueError("Unknown amendment step: 'x'")
        with patch("kyc.cli._build_pipeline", return_value=pipeline):
            assert await cli.amend_command("FUND-001", "x") == 1


class TestDerive:
    """Tests for the derive command without a case."""

    @pytest.mark.asyncio
    async def test_standard_derivations(self, tmp_path, capsys) -> None:
        attributes = tmp_path / "attrs.json"
        attributes.write_text(
            json.dumps(
                {
                    "TAX_RESIDENCY_COUNTRY": "IR",
                    "INCORPORATION_JURISDICTION": "US",
                    "UBO_NAME": ["A", "B"],
                    "UBO_PERCENT": [60.0, 40.0],
                    "PEP_STATUS": False,
                }
            )
        )

        assert await cli.derive_command(attributes, None, None) == 0

        out = capsys.readouterr().out
        assert "✅ HIGH_RISK_JURISDICTION_FLAG = true" in out
        assert "6/6 derivations succeeded" in out

    @pytest.mark.asyncio
    async def test_missing_attribute_fails_compile(self, tmp_path) -> None:
        attributes = tmp_path / "attrs.json"
        attributes.write_text(json.dumps({"TAX_RESIDENCY_COUNTRY": "IR"}))
        assert await cli.derive_command(attributes, None, None) == 1

    @pytest.mark.asyncio
    async def test_unreadable_file(self, tmp_path) -> None:
        assert await cli.derive_command(tmp_path / "missing.json", None, None) == 1
