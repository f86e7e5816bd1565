"""
Data model classes for the step workflow engine.
Following Single Responsibility Principle - all data models in one module.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from .enums import ActionKind, ActivityStatus, WorkflowStatus
from .exceptions import ParseError


# ============================================================================
# Action Models
# ============================================================================

@dataclass(frozen=True)
class Action:
    """
    A single dispatchable operation inside a step.

    Concrete kinds subclass this and add their own typed fields; each
    subclass validates those fields on construction, so a malformed tag
    fails while the step body is parsed rather than when it is dispatched.
    """
    kind: ClassVar[ActionKind] = ActionKind.NOTE

    content: str = ""
    condition: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class NoteAction(Action):
    """<action> - an instruction for the executing agent"""
    kind: ClassVar[ActionKind] = ActionKind.NOTE


@dataclass(frozen=True)
class PromptAction(Action):
    """<ask> - a question for the user, skipped in fast mode"""
    kind: ClassVar[ActionKind] = ActionKind.PROMPT


@dataclass(frozen=True)
class EmitAction(Action):
    """<output> - text reported to the user"""
    kind: ClassVar[ActionKind] = ActionKind.EMIT


@dataclass(frozen=True)
class ElicitAction(Action):
    """<elicit-required> - an elicitation point, defaults used in fast mode"""
    kind: ClassVar[ActionKind] = ActionKind.ELICIT


@dataclass(frozen=True)
class RenderTemplateAction(Action):
    """<template-output file="..."> - render content into a file"""
    kind: ClassVar[ActionKind] = ActionKind.RENDER_TEMPLATE
    file: str = ""

    def __post_init__(self):
        if not self.file or not self.file.strip():
            raise ParseError("template-output requires a 'file' attribute", tag=self.kind.value)


@dataclass(frozen=True)
class JumpAction(Action):
    """<goto step="N"/> - reposition the step cursor"""
    kind: ClassVar[ActionKind] = ActionKind.JUMP
    target_step: int = 0

    def __post_init__(self):
        if not isinstance(self.target_step, int) or isinstance(self.target_step, bool) or self.target_step < 1:
            raise ParseError(
                f"goto requires a positive integer 'step' attribute, got {self.target_step!r}",
                tag=self.kind.value,
            )


@dataclass(frozen=True)
class InvokeSubworkflowAction(Action):
    """<invoke-workflow path="..."> - run a nested workflow to completion"""
    kind: ClassVar[ActionKind] = ActionKind.INVOKE_SUBWORKFLOW
    path: str = ""
    inputs: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.path or not self.path.strip():
            raise ParseError("invoke-workflow requires a 'path' attribute", tag=self.kind.value)


@dataclass(frozen=True)
class InvokeTaskAction(Action):
    """<invoke-task path="..."/> - hand a task file to the agent"""
    kind: ClassVar[ActionKind] = ActionKind.INVOKE_TASK
    path: str = ""

    def __post_init__(self):
        if not self.path or not self.path.strip():
            raise ParseError("invoke-task requires a 'path' attribute", tag=self.kind.value)


@dataclass(frozen=True)
class Check:
    """A conditional group of actions nested inside a step"""
    condition: str
    actions: Tuple[Action, ...] = ()


# ============================================================================
# Step / Definition Models
# ============================================================================

@dataclass
class Step:
    """
    One numbered unit of a workflow definition.

    ``actions`` and ``checks`` are parsed from ``raw_content`` the first time
    they are requested and cached for the rest of the run.
    """
    number: int
    goal: str
    raw_content: str = ""
    optional: bool = False
    condition: Optional[str] = None
    _actions: Optional[Tuple[Action, ...]] = field(default=None, repr=False, compare=False)
    _checks: Optional[Tuple[Check, ...]] = field(default=None, repr=False, compare=False)

    def parse_body(self) -> Tuple[Tuple[Action, ...], Tuple[Check, ...]]:
        """Parse (once) and return the step's actions and checks"""
        if self._actions is None or self._checks is None:
            from .markup_parser import parse_step_body
            try:
                actions, checks = parse_step_body(self.raw_content)
            except ParseError as e:
                if e.step_number is None:
                    e.step_number = self.number
                raise
            self._actions = tuple(actions)
            self._checks = tuple(checks)
        return self._actions, self._checks

    @property
    def is_parsed(self) -> bool:
        return self._actions is not None

    @property
    def actions(self) -> Tuple[Action, ...]:
        return self.parse_body()[0]

    @property
    def checks(self) -> Tuple[Check, ...]:
        return self.parse_body()[1]

    @property
    def content_excerpt(self) -> str:
        return self.raw_content[:200]


@dataclass(frozen=True)
class WorkflowDefinition:
    """
    Parsed workflow: an ordered, contiguous sequence of steps.

    ``variables`` holds defaults from workflow.yaml; run-time variables and
    sub-workflow inputs override them.
    """
    name: str
    steps: Tuple[Step, ...]
    description: str = ""
    source: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        expected = list(range(1, len(self.steps) + 1))
        actual = [s.number for s in self.steps]
        if actual != expected:
            raise ParseError(
                f"Step numbers must be contiguous starting at 1, got {actual}",
                tag="step",
            )

    @property
    def step_numbers(self) -> List[int]:
        return [s.number for s in self.steps]

    def index_of(self, number: int) -> Optional[int]:
        for i, step in enumerate(self.steps):
            if step.number == number:
                return i
        return None

    def validate(self) -> None:
        """Parse every step body now, raising ParseError on the first bad one"""
        for step in self.steps:
            step.parse_body()


# ============================================================================
# Execution / Checkpoint Models
# ============================================================================

@dataclass
class ActivityRecord:
    """One dispatched unit of work, kept in the checkpoint history"""
    agent_id: str
    agent_name: str
    action: str
    timestamp: datetime = field(default_factory=datetime.now)
    status: ActivityStatus = ActivityStatus.STARTED
    duration: float = 0.0
    output: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "action": self.action,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "duration": self.duration,
            "output": self.output,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActivityRecord':
        return cls(
            agent_id=data["agent_id"],
            agent_name=data.get("agent_name", data["agent_id"]),
            action=data["action"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            status=ActivityStatus(data.get("status", "started")),
            duration=data.get("duration", 0.0),
            output=data.get("output"),
        )


@dataclass
class ExecutionState:
    """Persisted checkpoint of one workflow instance"""
    workflow_id: str
    workflow_name: str
    current_step: int = 0
    status: WorkflowStatus = WorkflowStatus.RUNNING
    variables: Dict[str, Any] = field(default_factory=dict)
    history: List[ActivityRecord] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    gate_results: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    start_time: datetime = field(default_factory=datetime.now)
    last_update: datetime = field(default_factory=datetime.now)
    error: Optional[str] = None
    workflow_source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "workflow_source": self.workflow_source,
            "current_step": self.current_step,
            "status": self.status.value,
            "variables": self.variables,
            "history": [r.to_dict() for r in self.history],
            "outputs": list(self.outputs),
            "gate_results": self.gate_results,
            "start_time": self.start_time.isoformat(),
            "last_update": self.last_update.isoformat(),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExecutionState':
        return cls(
            workflow_id=data["workflow_id"],
            workflow_name=data["workflow_name"],
            current_step=data.get("current_step", 0),
            status=WorkflowStatus(data.get("status", "running")),
            variables=data.get("variables") or {},
            history=[ActivityRecord.from_dict(r) for r in data.get("history") or []],
            outputs=list(data.get("outputs") or []),
            gate_results=data.get("gate_results") or {},
            start_time=datetime.fromisoformat(data["start_time"]),
            last_update=datetime.fromisoformat(data["last_update"]),
            error=data.get("error"),
            workflow_source=data.get("workflow_source"),
        )


@dataclass(frozen=True)
class GateResult:
    """Outcome of a gated checkpoint. Never mutated after creation."""
    gate: str
    score: float
    passed: bool
    threshold: float
    gaps: Tuple[str, ...] = ()
    gap_report_path: Optional[str] = None
    escalation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "passed" if self.passed else "failed",
            "score": self.score,
            "threshold": self.threshold,
            "gaps": list(self.gaps),
            "gap_report_path": self.gap_report_path,
            "escalation_id": self.escalation_id,
        }


@dataclass(frozen=True)
class RetryAttempt:
    """Diagnostic record of one attempt made by the retry policy"""
    attempt: int
    delay: float = 0.0
    error: Optional[str] = None


@dataclass(frozen=True)
class AgentResponse:
    """Opaque response returned by an agent invocation"""
    content: str
    confidence: float = 1.0
