"""Derived attribute evaluator.

An ``Evaluator`` holds one environment of attribute values. Rules are
compiled against the environment's names, then evaluated in the order the
caller gives. Each successful result is written back into the environment
under its own derived code, so a later rule in the same batch can use it:

    >>> ev = Evaluator({"X": 11})
    >>> specs = [DerivedAttributeSpec("A", "X > 10"), DerivedAttributeSpec("B", "A == true")]
    >>> ev.compile_derivations(specs)
    >>> [r.value for r in ev.evaluate(specs)]
    [True, True]

There is no dependency ordering: a rule listed before the rule it depends
on sees that attribute as undefined and fails.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from kyc.errors import CompileError, EvaluationError
from kyc.lineage.rules import CompiledRule, compile_rule

logger = logging.getLogger(__name__)

NOT_COMPILED = "not compiled"


@dataclass(frozen=True)
class DerivedAttributeSpec:
    """A named attribute computed by a rule over other attributes."""

    code: str
    rule: str
    source_attributes: tuple[str, ...] = ()
    description: str = ""
    jurisdiction: str | None = None
    regulation: str | None = None


@dataclass
class EvaluationResult:
    """Outcome of evaluating one derived attribute.

    ``inputs`` is a deep copy of the declared source attribute values taken
    when the rule ran.
    """

    derived_code: str
    value: Any
    success: bool
    rule: str
    error: str | None = None
    inputs: dict[str, Any] = field(default_factory=dict)
    evaluated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class Evaluator:
    """Compiles and evaluates derived attribute rules over a shared environment.

    Access to the environment is serialized by a re-entrant lock, so an
    instance can be shared between threads. Evaluation order is still the
    caller's responsibility.
    """

    def __init__(
        self, env: Mapping[str, Any] | None = None, *, keep_history: bool = False
    ):
        """Initialize the evaluator.

        Args:
            env: Initial attribute values. Copied; the caller's mapping is
                not modified.
            keep_history: Accumulate every evaluation result across calls,
                readable via ``history`` until ``reset()``.
        """
        self._env: dict[str, Any] = dict(env or {})
        self._programs: dict[str, CompiledRule] = {}
        self._compiled_codes: set[str] = set()
        self._history: list[EvaluationResult] | None = [] if keep_history else None
        self._lock = threading.RLock()

    # =========================================================================
    # Compilation
    # =========================================================================

    def compile_derivations(self, specs: Iterable[DerivedAttributeSpec]) -> None:
        """Compile rules, in order, against the current environment.

        Every identifier in a rule must already be in the environment or be
        the code of a rule compiled earlier (in this call or a previous one).
        A failing call keeps nothing from that call.

        Raises:
            CompileError: For the first spec that fails, naming its code.
        """
        with self._lock:
            staged: dict[str, CompiledRule] = {}
            for spec in specs:
                try:
                    program = compile_rule(spec.rule)
                    unknown = sorted(
                        name
                        for name in program.names
                        if name not in self._env
                        and name not in self._programs
                        and name not in staged
                    )
                    if unknown:
                        raise CompileError(f"unknown name(s): {', '.join(unknown)}")
                except CompileError as e:
                    error = CompileError(e.message, derived_code=spec.code, rule=spec.rule)
                    logger.warning(f"Rule rejected: {error}")
                    raise error from e
                staged[spec.code] = program

            self._programs.update(staged)
            self._compiled_codes.update(staged)
            logger.debug(f"Compiled {len(staged)} derivation(s)")

    def is_compiled(self, code: str) -> bool:
        with self._lock:
            return code in self._programs

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate(self, specs: Iterable[DerivedAttributeSpec]) -> list[EvaluationResult]:
        """Evaluate specs in the given order.

        A failing rule yields a failed result and leaves the environment
        untouched; the rest of the batch still runs.

        Returns:
            One result per spec, for this call only.
        """
        with self._lock:
            results = [self._evaluate_one(spec) for spec in specs]
            if self._history is not None:
                self._history.extend(results)

        failed = sum(1 for r in results if not r.success)
        logger.debug(f"Evaluated {len(results)} derivation(s), {failed} failed")
        return results

    def _evaluate_one(self, spec: DerivedAttributeSpec) -> EvaluationResult:
        program = self._programs.get(spec.code)
        if program is None:
            return EvaluationResult(
                derived_code=spec.code,
                value=None,
                success=False,
                rule=spec.rule,
                error=NOT_COMPILED,
            )

        inputs = {
            attr: copy.deepcopy(self._env.get(attr)) for attr in spec.source_attributes
        }
        try:
            value = program.run(self._env)
        except EvaluationError as e:
            error = str(e)
        except Exception as e:
            # Any other failure is confined to this rule
            error = f"{type(e).__name__}: {e}"
        else:
            error = None

        if error is not None:
            logger.warning(f"Evaluation of {spec.code} failed: {error}")
            return EvaluationResult(
                derived_code=spec.code,
                value=None,
                success=False,
                rule=spec.rule,
                error=error,
            )

        self._env[spec.code] = value
        return EvaluationResult(
            derived_code=spec.code,
            value=value,
            success=True,
            rule=spec.rule,
            inputs=inputs,
        )

    # =========================================================================
    # Environment
    # =========================================================================

    def get_value(self, code: str) -> tuple[Any, bool]:
        """Read an original or derived attribute: ``(value, present)``."""
        with self._lock:
            if code in self._env:
                return self._env[code], True
            return None, False

    def reset(self) -> None:
        """Forget history, compiled rules and every derived value.

        Attributes from the initial environment are kept unless a rule was
        compiled under the same name.
        """
        with self._lock:
            for code in self._compiled_codes:
                self._env.pop(code, None)
            self._compiled_codes.clear()
            self._programs.clear()
            if self._history is not None:
                self._history.clear()

    @property
    def history(self) -> list[EvaluationResult]:
        """Results retained across calls (empty unless ``keep_history``)."""
        with self._lock:
            return list(self._history or [])

    @property
    def environment(self) -> dict[str, Any]:
        """A copy of the current environment."""
        with self._lock:
            return dict(self._env)


def explain_result(result: EvaluationResult) -> str:
    """Human-readable account of one evaluation."""
    if not result.success:
        return f"❌ {result.derived_code} failed: {result.error}"

    lines = [
        f"✅ {result.derived_code} = {_format_value(result.value)}",
        f"   Rule: {result.rule}",
        "   Inputs:",
    ]
    for name, value in result.inputs.items():
        lines.append(f"     • {name} = {_format_value(value)}")
    lines.append(f"   Evaluated at: {result.evaluated_at.isoformat(timespec='seconds')}")
    return "\n".join(lines)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "nil"
    return str(value)
