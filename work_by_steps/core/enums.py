"""
Enumeration classes for the step workflow engine.
"""

from enum import Enum


class WorkflowStatus(Enum):
    """Persisted workflow execution status"""
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class ActionKind(Enum):
    """Kinds of dispatchable actions inside a step"""
    NOTE = "action"
    PROMPT = "ask"
    EMIT = "output"
    RENDER_TEMPLATE = "template-output"
    ELICIT = "elicit-required"
    JUMP = "goto"
    INVOKE_SUBWORKFLOW = "invoke-workflow"
    INVOKE_TASK = "invoke-task"


class ActivityStatus(Enum):
    """Status of a recorded activity"""
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class EscalationStatus(Enum):
    """Lifecycle of an escalation"""
    PENDING = "pending"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"
