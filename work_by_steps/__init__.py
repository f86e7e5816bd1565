"""
Work by Steps

A resumable step workflow engine with gated checkpoints and escalations.
"""

from .core import (
    WorkflowEngine,
    ArchitectureWorkflow,
    WorkflowDefinition,
    ExecutionState,
    WorkflowStatus,
    WorkflowError,
    ValidationError,
    VariableEnvironment,
    ConditionEvaluator,
    RetryPolicy,
    GatedCheckpoint,
    FileStateStore,
    MemoryStateStore,
    FileEscalationQueue,
    parse_workflow,
)

__version__ = "0.1.0"
__all__ = [
    "WorkflowEngine",
    "ArchitectureWorkflow",
    "WorkflowDefinition",
    "ExecutionState",
    "WorkflowStatus",
    "WorkflowError",
    "ValidationError",
    "VariableEnvironment",
    "ConditionEvaluator",
    "RetryPolicy",
    "GatedCheckpoint",
    "FileStateStore",
    "MemoryStateStore",
    "FileEscalationQueue",
    "parse_workflow",
]
