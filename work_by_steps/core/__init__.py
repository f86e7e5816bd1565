"""
Core step workflow engine modules.
Following SOLID principles - modules are organized by responsibility.
"""

# Exceptions
from .exceptions import (
    ValidationError, WorkflowError, SecurityError, ParseError, UndefinedVariableError,
    InvalidJumpTarget, ActionFailure, GateFailure, StateCorruption, ResumeMismatch,
    WorkflowCancelled, StepExecutionError, ConditionEvaluationWarning,
)

# Enums
from .enums import WorkflowStatus, ActionKind, ActivityStatus, EscalationStatus

# Models
from .models import (
    Action, NoteAction, PromptAction, EmitAction, ElicitAction, RenderTemplateAction,
    JumpAction, InvokeSubworkflowAction, InvokeTaskAction, Check, Step,
    WorkflowDefinition, ActivityRecord, ExecutionState, GateResult, RetryAttempt,
    AgentResponse,
)

# Variables and conditions
from .variable_resolver import VariableEnvironment, NOT_FOUND
from .condition_evaluator import ConditionEvaluator

# Parsing and configuration
from .markup_parser import parse_workflow, parse_step_body
from .config_loader import WorkflowConfig, DefinitionLoader, EngineSettings

# Collaborators
from .retry_handler import RetryPolicy, with_retry
from .quality_gates import GatedCheckpoint, GateCheck, GateReport, GateSpec
from .state_storage import StateStore, FileStateStore, MemoryStateStore
from .escalation_queue import Escalation, EscalationSink, FileEscalationQueue
from .agent_invoker import Agent, PlaceholderAgent, CallableAgent
from .template_writer import TemplateWriter, FileTemplateWriter, normalize_path, replace_section
from .workflow_events import EventLogger, WorkflowEvent

# Sequencers
from .step_sequencer import BaseSequencer, WorkflowEngine
from .architecture_workflow import ArchitectureWorkflow

__all__ = [
    # Exceptions
    "ValidationError", "WorkflowError", "SecurityError", "ParseError",
    "UndefinedVariableError", "InvalidJumpTarget", "ActionFailure", "GateFailure",
    "StateCorruption", "ResumeMismatch", "WorkflowCancelled", "StepExecutionError",
    "ConditionEvaluationWarning",
    # Enums
    "WorkflowStatus", "ActionKind", "ActivityStatus", "EscalationStatus",
    # Models
    "Action", "NoteAction", "PromptAction", "EmitAction", "ElicitAction",
    "RenderTemplateAction", "JumpAction", "InvokeSubworkflowAction", "InvokeTaskAction",
    "Check", "Step", "WorkflowDefinition", "ActivityRecord", "ExecutionState",
    "GateResult", "RetryAttempt", "AgentResponse",
    # Components
    "VariableEnvironment", "NOT_FOUND", "ConditionEvaluator", "parse_workflow",
    "parse_step_body", "WorkflowConfig", "DefinitionLoader", "EngineSettings",
    "RetryPolicy", "with_retry", "GatedCheckpoint", "GateCheck", "GateReport", "GateSpec",
    "StateStore", "FileStateStore", "MemoryStateStore", "Escalation", "EscalationSink",
    "FileEscalationQueue", "Agent", "PlaceholderAgent", "CallableAgent", "TemplateWriter",
    "FileTemplateWriter", "normalize_path", "replace_section", "EventLogger",
    "WorkflowEvent", "BaseSequencer", "WorkflowEngine", "ArchitectureWorkflow",
]
