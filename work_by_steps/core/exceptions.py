"""
Exception classes for the step workflow engine.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Any


@dataclass
class ValidationError(Exception):
    """
    Validation error with context information.

    Raised for bad configuration, bad CLI input and invalid identifiers.
    """
    message: str
    field: Optional[str] = None
    value: Any = None
    context: Optional[Dict[str, Any]] = None

    def __init__(self, message: str, field: Optional[str] = None,
                 value: Any = None, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.field = field
        self.value = value
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context"""
        parts = [self.message]
        if self.field:
            parts.append(f"Field: {self.field}")
        if self.value is not None:
            parts.append(f"Value: {repr(self.value)}")
        if self.context:
            ctx_parts = [f"{k}={v}" for k, v in self.context.items()]
            parts.append(f"Context: {', '.join(ctx_parts)}")
        return " | ".join(parts)

    def __str__(self) -> str:
        return self._format_message()


@dataclass
class WorkflowError(Exception):
    """
    Base error for workflow execution, carrying workflow and step context.
    """
    message: str
    workflow_id: Optional[str] = None
    step_number: Optional[int] = None
    context: Optional[Dict[str, Any]] = None

    def __init__(self, message: str, workflow_id: Optional[str] = None,
                 step_number: Optional[int] = None, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.workflow_id = workflow_id
        self.step_number = step_number
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context"""
        parts = [self.message]
        if self.workflow_id:
            parts.append(f"Workflow: {self.workflow_id}")
        if self.step_number is not None:
            parts.append(f"Step: {self.step_number}")
        if self.context:
            ctx_parts = [f"{k}={v}" for k, v in self.context.items()]
            parts.append(f"Context: {', '.join(ctx_parts)}")
        return " | ".join(parts)

    def __str__(self) -> str:
        return self._format_message()


class ParseError(WorkflowError):
    """Malformed workflow definition. Never retried."""

    def __init__(self, message: str, tag: Optional[str] = None, line: Optional[int] = None,
                 step_number: Optional[int] = None, context: Optional[Dict[str, Any]] = None):
        self.tag = tag
        self.line = line
        ctx = dict(context or {})
        if tag:
            ctx.setdefault("tag", tag)
        if line is not None:
            ctx.setdefault("line", line)
        super().__init__(message, step_number=step_number, context=ctx)


class UndefinedVariableError(WorkflowError):
    """
    A placeholder without a default referenced an unbound variable.

    Carries the known top-level names and remediation hints so the message
    tells the author how to fix the definition.
    """

    def __init__(self, variable: str, available: Optional[List[str]] = None,
                 hints: Optional[List[str]] = None):
        self.variable = variable
        self.available = sorted(available or [])
        self.hints = hints if hints is not None else [
            f"Add '{variable}' to the workflow variables",
            f"Use a default value: {{{{{variable}|default}}}}",
            "Mark the step optional so fast mode can skip it",
        ]
        super().__init__(
            f"Undefined variable: {{{{{variable}}}}}",
            context={
                "available": ", ".join(self.available) or "(none)",
                "hints": "; ".join(self.hints),
            },
        )


class InvalidJumpTarget(WorkflowError):
    """A goto referenced a step number that does not exist."""

    def __init__(self, target: int, valid_steps: List[int], step_number: Optional[int] = None):
        self.target = target
        self.valid_steps = list(valid_steps)
        super().__init__(
            f"Invalid jump target: step {target}",
            step_number=step_number,
            context={"valid_steps": self.valid_steps},
        )


class ActionFailure(WorkflowError):
    """An external call failed, possibly after exhausting its retries."""

    def __init__(self, message: str, attempts: int = 1, step_number: Optional[int] = None,
                 context: Optional[Dict[str, Any]] = None):
        self.attempts = attempts
        super().__init__(message, step_number=step_number, context=context)


class GateFailure(WorkflowError):
    """A gated checkpoint scored below its threshold. Blocks the workflow."""

    def __init__(self, result: Any, workflow_id: Optional[str] = None,
                 step_number: Optional[int] = None):
        self.result = result
        super().__init__(
            f"Quality gate '{result.gate}' failed: score {result.score} < threshold {result.threshold}",
            workflow_id=workflow_id,
            step_number=step_number,
            context={
                "gaps": len(result.gaps),
                "escalation_id": result.escalation_id,
                "gap_report": result.gap_report_path,
            },
        )


class StateCorruption(WorkflowError):
    """Checkpoint unreadable or schema-mismatched. Never auto-repaired."""
    pass


class ResumeMismatch(WorkflowError):
    """Checkpoint belongs to a different workflow definition."""
    pass


class WorkflowCancelled(WorkflowError):
    """Cancellation was honoured at a step boundary."""
    pass


class StepExecutionError(WorkflowError):
    """
    Wraps any failure raised while a step's body runs.

    The original error stays available as ``cause`` (and ``__cause__``).
    """

    def __init__(self, step_number: int, goal: str, content_excerpt: str,
                 cause: Exception, workflow_id: Optional[str] = None):
        self.goal = goal
        self.content_excerpt = content_excerpt
        self.cause = cause
        super().__init__(
            f'Step {step_number} ("{goal}") execution failed: {cause}',
            workflow_id=workflow_id,
            step_number=step_number,
            context={"step_content": content_excerpt},
        )


class SecurityError(Exception):
    """Security-related error for path validation"""
    pass


class ConditionEvaluationWarning(UserWarning):
    """Emitted when a condition is malformed and evaluates to false."""
    pass


# Errors that must never be retried by the retry policy.
FATAL_ERRORS = (
    ParseError,
    UndefinedVariableError,
    InvalidJumpTarget,
    GateFailure,
    StateCorruption,
    ResumeMismatch,
    WorkflowCancelled,
    SecurityError,
)
