"""
Gated checkpoints: scored validation that can block workflow progression.
Following Single Responsibility Principle - handles quality gate evaluation only.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .atomic_io import atomic_write_text
from .exceptions import ActionFailure, ValidationError
from .models import GateResult


@dataclass(frozen=True)
class GateCheck:
    """One requirement a validator checked"""
    category: str
    requirement: str
    satisfied: bool
    recommendation: Optional[str] = None


@dataclass
class GateReport:
    """What a validator returns: a score plus the checks behind it"""
    score: float
    checks: List[GateCheck] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def gaps(self) -> List[str]:
        return [f"{c.category}: {c.requirement}" for c in self.checks if not c.satisfied]


ValidatorOutput = Union[GateReport, Tuple[float, List[str]], float, int]


@dataclass(frozen=True)
class GateSpec:
    """A gate attached to a step: validator, threshold and report name"""
    name: str
    validator: Callable[[], ValidatorOutput]
    threshold: float


class GatedCheckpoint:
    """
    Runs a validator once and compares its score against a pass threshold.

    A failing gate writes a Markdown gap report, raises exactly one
    escalation and returns a GateResult with ``passed=False``. It does not
    raise: the caller decides how to block (the sequencer turns a failed
    result into GateFailure).
    """

    def __init__(self, escalation_sink: Any, report_dir: Path):
        """
        Args:
            escalation_sink: EscalationSink receiving failed-gate escalations
            report_dir: Directory where gap reports are written
        """
        if escalation_sink is None:
            raise ValidationError("A gated checkpoint requires an escalation sink")
        self.escalation_sink = escalation_sink
        self.report_dir = Path(report_dir)

    def run_gate(self, validator: Callable[[], ValidatorOutput], pass_threshold: float,
                 gate_name: str = "quality", workflow_id: str = "workflow",
                 step: Optional[int] = None,
                 context: Optional[Dict[str, Any]] = None) -> GateResult:
        """
        Evaluate a gate.

        Args:
            validator: Zero-argument callable returning a GateReport, a
                (score, gaps) tuple or a bare score
            pass_threshold: Minimum score (same scale as the validator) to pass
            gate_name: Name used for the report file and state entry
            workflow_id: Owning workflow, recorded on the escalation
            step: Step number the gate guards
            context: Extra context copied onto the escalation

        Returns:
            GateResult
        """
        try:
            output = validator()
        except Exception as e:
            raise ActionFailure(f"Validator for gate '{gate_name}' raised: {e}", step_number=step) from e
        report = self._normalize(output, gate_name)
        passed = report.score >= pass_threshold

        if passed:
            return GateResult(gate=gate_name, score=report.score, passed=True,
                              threshold=pass_threshold, gaps=tuple(report.gaps))

        report_path = self._write_gap_report(
            self.generate_gap_report(gate_name, report, pass_threshold, workflow_id),
            workflow_id, gate_name,
        )
        escalation_context = dict(context or {})
        escalation_context.update({
            "score": report.score,
            "threshold": pass_threshold,
            "gaps": report.gaps,
            "gap_report_path": str(report_path),
        })
        escalation_id = self.escalation_sink.raise_escalation(
            question=(f"Quality gate '{gate_name}' scored {report.score} "
                      f"(threshold {pass_threshold}). Review {len(report.gaps)} gap(s) and advise."),
            reasoning=f"Gate '{gate_name}' blocked workflow progression; see {report_path}",
            confidence=1.0,
            context=escalation_context,
            workflow_id=workflow_id,
            step=step,
        )
        return GateResult(gate=gate_name, score=report.score, passed=False, threshold=pass_threshold,
                          gaps=tuple(report.gaps), gap_report_path=str(report_path),
                          escalation_id=escalation_id)

    @staticmethod
    def _normalize(output: ValidatorOutput, gate_name: str) -> GateReport:
        if isinstance(output, GateReport):
            return output
        if isinstance(output, bool):
            raise ValidationError(f"Validator for gate '{gate_name}' must return a score, not a bool")
        if isinstance(output, (int, float)):
            return GateReport(score=float(output))
        if isinstance(output, tuple) and len(output) == 2:
            score, gaps = output
            checks = [GateCheck(category="general", requirement=str(g), satisfied=False) for g in gaps]
            return GateReport(score=float(score), checks=checks)
        raise ValidationError(
            f"Validator for gate '{gate_name}' returned an unsupported value",
            value=output,
        )

    @staticmethod
    def generate_gap_report(gate_name: str, report: GateReport, threshold: float,
                            workflow_id: str) -> str:
        """Render a Markdown report of unsatisfied checks grouped by category"""
        lines = [
            f"# Quality Gate Gap Report: {gate_name}",
            "",
            f"**Workflow:** {workflow_id}",
            f"**Date:** {datetime.now().strftime('%Y-%m-%d')}",
            f"**Score:** {report.score}",
            f"**Threshold:** {threshold}",
            "**Status:** ❌ FAILED",
            "",
        ]
        unsatisfied = [c for c in report.checks if not c.satisfied]
        if not unsatisfied:
            lines.append("No individual checks were reported; the score alone is below threshold.")
            lines.append("")
        else:
            lines.append(f"## Gaps ({len(unsatisfied)})")
            lines.append("")
            categories: Dict[str, List[GateCheck]] = {}
            for check in unsatisfied:
                categories.setdefault(check.category, []).append(check)
            for category, checks in categories.items():
                lines.append(f"### {category.replace('-', ' ').title()}")
                lines.append("")
                for check in checks:
                    lines.append(f"- **Check:** {check.requirement}")
                    if check.recommendation:
                        lines.append(f"  - **Recommendation:** {check.recommendation}")
                lines.append("")
        satisfied = [c for c in report.checks if c.satisfied]
        if satisfied:
            lines.append(f"## Satisfied ({len(satisfied)})")
            lines.append("")
            for check in satisfied:
                lines.append(f"- {check.category}: {check.requirement}")
            lines.append("")
        return "\n".join(lines)

    def _write_gap_report(self, markdown: str, workflow_id: str, gate_name: str) -> Path:
        return atomic_write_text(self.report_dir / f"{workflow_id}-{gate_name}-gaps.md", markdown)
