"""Command-line interface for the KYC case ledger (``kycctl``)."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from app.config import settings
from kyc.amendment import AmendmentPipeline
from kyc.diff import short_hash
from kyc.domain import KycCase
from kyc.errors import KycError
from kyc.lifecycle import get_current_phase, get_next_allowed_phases, phase_metadata
from kyc.mutations import ACTIONS_BY_STEP

logger = logging.getLogger(__name__)


def _build_pipeline() -> AmendmentPipeline:
    from kyc.dsl_client import DslServiceClient
    from kyc.store import SqlVersionStore

    return AmendmentPipeline(SqlVersionStore(), DslServiceClient())


# =============================================================================
# Write commands
# =============================================================================


async def create_command(name: str, nature: str, purpose: str, cbu: str) -> int:
    """Create a new case at version 1."""
    case = KycCase(name=name, nature=nature, purpose=purpose, client_business_unit=cbu)
    try:
        outcome = await _build_pipeline().create_case(case)
    except KycError as e:
        logger.error(f"Create failed: {e}")
        return 1

    print(f"Created {outcome.case_name} v{outcome.version_number} ({short_hash(outcome.content_hash)})")
    return 0


async def amend_command(case_name: str, step: str) -> int:
    """Apply a named amendment step to a case."""
    try:
        outcome = await _build_pipeline().apply_step(case_name, step)
    except ValueError as e:
        logger.error(str(e))
        return 1
    except KycError as e:
        logger.error(f"Amendment failed: {e}")
        return 1

    print(
        f"Amended {outcome.case_name} -> v{outcome.version_number} "
        f"({short_hash(outcome.content_hash)})"
    )
    print(f"  Change: {outcome.change_classification}")
    print(f"  Phase:  {outcome.phase_before} -> {outcome.phase_after}")
    print()
    print(outcome.diff)
    return 0


# =============================================================================
# Read commands
# =============================================================================


def steps_command() -> int:
    """List the amendment steps that can be applied."""
    print("Available amendment steps:")
    for step, action in ACTIONS_BY_STEP.items():
        print(f"  {step:<24} {action.description}")
    return 0


async def phase_command(case_name: str) -> int:
    """Show the inferred lifecycle phase of a case's latest version."""
    from kyc.dsl_client import DslServiceClient
    from kyc.store import SqlVersionStore

    try:
        stored = await SqlVersionStore().get_latest_version(case_name)
        cases = await DslServiceClient().parse(stored.snapshot_text)
    except KycError as e:
        logger.error(f"Cannot load {case_name}: {e}")
        return 1
    if len(cases) != 1:
        logger.error(f"Expected one case in {case_name} v{stored.version_number}, found {len(cases)}")
        return 1

    phase = get_current_phase(cases[0])
    description, additions, functions = phase_metadata(phase)
    print(f"{case_name} v{stored.version_number}: {phase}")
    print(f"  {description}")
    if additions:
        print(f"  Adds:      {', '.join(additions)}")
    if functions:
        print(f"  Functions: {', '.join(functions)}")
    next_phases = get_next_allowed_phases(phase)
    print(f"  Next:      {', '.join(next_phases) if next_phases else '(terminal)'}")
    return 0


async def versions_command(case_name: str) -> int:
    """List stored versions of a case."""
    from app.crud.case import list_versions
    from app.models.base import async_session_maker

    async with async_session_maker() as session:
        versions = await list_versions(session, case_name)

    if not versions:
        logger.error(f"No versions found for {case_name}")
        return 1
    print(f"Versions of {case_name}:")
    for v in versions:
        print(f"  v{v.version:<4} {v.short_hash}  {v.created_at:%Y-%m-%d %H:%M:%S}")
    return 0


async def cases_command() -> int:
    """List all cases."""
    from app.crud.case import list_cases
    from app.models.base import async_session_maker

    async with async_session_maker() as session:
        cases = await list_cases(session)

    if not cases:
        print("No cases.")
        return 0
    print(f"{'CASE':<30} {'VERSIONS':>8}  {'STATUS':<10} LAST UPDATED")
    for c in cases:
        updated = f"{c.last_updated:%Y-%m-%d %H:%M:%S}" if c.last_updated else "-"
        print(f"{c.name:<30} {c.version_count:>8}  {c.status:<10} {updated}")
    return 0


async def amendments_command(case_name: str) -> int:
    """Show the amendment audit trail of a case."""
    from app.crud.case import list_amendments
    from app.models.base import async_session_maker

    async with async_session_maker() as session:
        amendments = await list_amendments(session, case_name)

    if not amendments:
        print(f"No amendments recorded for {case_name}.")
        return 0
    for a in amendments:
        print(f"[{a.created_at:%Y-%m-%d %H:%M:%S}] {a.step} ({a.change_type})")
        if a.diff:
            for line in a.diff.splitlines():
                print(f"    {line}")
    return 0


# =============================================================================
# Derived attributes
# =============================================================================


async def derive_command(
    attributes_path: Path, case_name: str | None, version: int | None
) -> int:
    """Evaluate the standard derived attributes over a JSON attribute file.

    When a case is named, its public attributes are merged in (the file wins
    on conflicts) and the results are recorded against that case.
    """
    from kyc.lineage import Evaluator, explain_result
    from kyc.lineage.catalog import STANDARD_DERIVATIONS, case_attributes

    try:
        attributes: dict[str, Any] = json.loads(attributes_path.read_text())
    except (OSError, ValueError) as e:
        logger.error(f"Cannot read {attributes_path}: {e}")
        return 1
    if not isinstance(attributes, dict):
        logger.error(f"{attributes_path} must contain a JSON object")
        return 1

    store = None
    if case_name:
        from kyc.dsl_client import DslServiceClient
        from kyc.store import SqlVersionStore

        store = SqlVersionStore()
        try:
            stored = await store.get_latest_version(case_name)
            cases = await DslServiceClient().parse(stored.snapshot_text)
        except KycError as e:
            logger.error(f"Cannot load {case_name}: {e}")
            return 1
        if cases:
            attributes = {**case_attributes(cases[0]), **attributes}
        if version is None:
            version = stored.version_number

    evaluator = Evaluator(attributes)
    try:
        evaluator.compile_derivations(STANDARD_DERIVATIONS)
    except KycError as e:
        logger.error(str(e))
        return 1
    results = evaluator.evaluate(STANDARD_DERIVATIONS)

    for result in results:
        print(explain_result(result))
        print()
    succeeded = sum(1 for r in results if r.success)
    print(f"{succeeded}/{len(results)} derivations succeeded")

    if store is not None and case_name:
        try:
            await store.record_lineage_evaluations(
                case_name, version, results, STANDARD_DERIVATIONS
            )
        except KycError as e:
            logger.error(f"Failed to record evaluations: {e}")
            return 1
    return 0 if succeeded == len(results) else 1


# =============================================================================
# Entry point
# =============================================================================


def main() -> int:
    """Main entry point for CLI."""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(levelname)-5.5s [%(name)s] %(message)s",
    )

    parser = argparse.ArgumentParser(description="KYC case ledger CLI")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    create_parser = subparsers.add_parser("create", help="Create a new case")
    create_parser.add_argument("name", help="Case name (e.g., FUND-001)")
    create_parser.add_argument("--nature", default="", help="Nature of the business")
    create_parser.add_argument("--purpose", default="", help="Purpose of the relationship")
    create_parser.add_argument("--cbu", default="", help="Client business unit")

    amend_parser = subparsers.add_parser("amend", help="Apply an amendment step")
    amend_parser.add_argument("case", help="Case name")
    amend_parser.add_argument(
        "--step",
        required=True,
        help=f"Step to apply ({', '.join(ACTIONS_BY_STEP)})",
    )

    subparsers.add_parser("steps", help="List available amendment steps")

    phase_parser = subparsers.add_parser("phase", help="Show a case's lifecycle phase")
    phase_parser.add_argument("case", help="Case name")

    versions_parser = subparsers.add_parser("versions", help="List versions of a case")
    versions_parser.add_argument("case", help="Case name")

    subparsers.add_parser("cases", help="List all cases")

    amendments_parser = subparsers.add_parser(
        "amendments", help="Show the amendment audit trail of a case"
    )
    amendments_parser.add_argument("case", help="Case name")

    derive_parser = subparsers.add_parser(
        "derive", help="Evaluate standard derived attributes"
    )
    derive_parser.add_argument(
        "attributes", type=Path, help="JSON file of attribute values"
    )
    derive_parser.add_argument("--case", help="Merge in and record against this case")
    derive_parser.add_argument(
        "--version", type=int, help="Case version to record against (default: latest)"
    )

    args = parser.parse_args()

    if args.command == "create":
        return asyncio.run(create_command(args.name, args.nature, args.purpose, args.cbu))

    elif args.command == "amend":
        return asyncio.run(amend_command(args.case, args.step))

    elif args.command == "steps":
        return steps_command()

    elif args.command == "phase":
        return asyncio.run(phase_command(args.case))

    elif args.command == "versions":
        return asyncio.run(versions_command(args.case))

    elif args.command == "cases":
        return asyncio.run(cases_command())

    elif args.command == "amendments":
        return asyncio.run(amendments_command(args.case))

    elif args.command == "derive":
        return asyncio.run(derive_command(args.attributes, args.case, args.version))

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
