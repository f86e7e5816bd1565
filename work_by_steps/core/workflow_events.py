"""
Workflow event logging for observability and post-mortem inspection.
Following Single Responsibility Principle - handles workflow event logging only.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any
from pathlib import Path
import hashlib
import json
import warnings
import yaml


@dataclass
class WorkflowEvent:
    """
    A single workflow execution event.

    event_type is one of: workflow_started, workflow_completed,
    workflow_failed, workflow_cancelled, step_started, step_completed,
    step_skipped, step_failed, action, output, gate, retry.
    """
    workflow_id: str
    event_type: str
    step: Optional[int] = None
    action: Optional[str] = None  # action kind tag, e.g. "template-output"
    status: str = "success"  # "success" | "failed" | "skipped" | "retry"
    input_hash: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    execution_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "workflow_id": self.workflow_id,
            "event_type": self.event_type,
            "step": self.step,
            "action": self.action,
            "status": self.status,
            "input_hash": self.input_hash,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
            "error": self.error,
            "execution_time": self.execution_time
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowEvent':
        """Create from dictionary"""
        return cls(
            workflow_id=data["workflow_id"],
            event_type=data["event_type"],
            step=data.get("step"),
            action=data.get("action"),
            status=data.get("status", "success"),
            input_hash=data.get("input_hash"),
            timestamp=datetime.fromisoformat(data.get("timestamp", datetime.now().isoformat())),
            metadata=data.get("metadata", {}),
            error=data.get("error"),
            execution_time=data.get("execution_time", 0.0)
        )

    @staticmethod
    def hash_input(input_data: Any) -> str:
        """Generate hash for input data"""
        input_str = json.dumps(input_data, sort_keys=True, default=str)
        return hashlib.sha256(input_str.encode()).hexdigest()[:16]


class EventLogger:
    """
    Logger for workflow events.

    Keeps events in memory and, when a log file is given, mirrors them to a
    JSON (or .yaml/.yml) file.
    """

    def __init__(self, log_file: Optional[Path] = None):
        """
        Initialize event logger.

        Args:
            log_file: Optional path to persistent log file
        """
        self.events: List[WorkflowEvent] = []
        self.log_file = log_file
        if log_file and log_file.exists():
            self._load_from_file()

    def log_event(self, event: WorkflowEvent) -> None:
        """Record a workflow event"""
        self.events.append(event)
        if self.log_file:
            self._append_to_file(event)

    def log(self, workflow_id: str, event_type: str, step: Optional[int] = None,
            status: str = "success", error: Optional[str] = None,
            **metadata: Any) -> WorkflowEvent:
        """Record a workflow- or step-level event"""
        event = WorkflowEvent(
            workflow_id=workflow_id,
            event_type=event_type,
            step=step,
            status=status,
            error=error,
            metadata=metadata,
        )
        self.log_event(event)
        return event

    def log_action(
        self,
        workflow_id: str,
        step: int,
        action: str,
        content: str = "",
        status: str = "success",
        error: Optional[str] = None,
        execution_time: float = 0.0,
        metadata: Optional[Dict[str, Any]] = None
    ) -> WorkflowEvent:
        """
        Log a dispatched action.

        Args:
            workflow_id: Workflow ID
            step: Step number the action belongs to
            action: Action kind tag
            content: Substituted action content, hashed for deduplication
            status: Execution status
            error: Error message if failed
            execution_time: Execution time in seconds
            metadata: Additional metadata

        Returns:
            Created WorkflowEvent
        """
        event = WorkflowEvent(
            workflow_id=workflow_id,
            event_type="action",
            step=step,
            action=action,
            status=status,
            input_hash=WorkflowEvent.hash_input(content),
            error=error,
            execution_time=execution_time,
            metadata=metadata or {}
        )
        self.log_event(event)
        return event

    def get_events(
        self,
        workflow_id: Optional[str] = None,
        event_type: Optional[str] = None,
        step: Optional[int] = None,
        status: Optional[str] = None
    ) -> List[WorkflowEvent]:
        """Query events with filters"""
        filtered = self.events

        if workflow_id:
            filtered = [e for e in filtered if e.workflow_id == workflow_id]
        if event_type:
            filtered = [e for e in filtered if e.event_type == event_type]
        if step is not None:
            filtered = [e for e in filtered if e.step == step]
        if status:
            filtered = [e for e in filtered if e.status == status]

        return filtered

    def export_events(
        self,
        output_file: Path,
        format: str = "json",
        filters: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Export events to file.

        Args:
            output_file: Output file path
            format: Export format ("json" or "yaml")
            filters: Optional filters dict (workflow_id, event_type, step, status)
        """
        events_to_export = self.events
        if filters:
            events_to_export = self.get_events(**filters)

        events_dict = [e.to_dict() for e in events_to_export]

        output_file.parent.mkdir(parents=True, exist_ok=True)

        if format == "json":
            with output_file.open('w', encoding='utf-8') as f:
                json.dump(events_dict, f, indent=2, ensure_ascii=False, default=str)
        elif format == "yaml":
            with output_file.open('w', encoding='utf-8') as f:
                yaml.dump(events_dict, f, default_flow_style=False, allow_unicode=True)
        else:
            raise ValueError(f"Unsupported format: {format}")

    def _is_yaml(self) -> bool:
        return self.log_file is not None and self.log_file.suffix in ['.yaml', '.yml']

    def _load_from_file(self) -> None:
        """Load events from log file"""
        try:
            with self.log_file.open('r', encoding='utf-8') as f:
                data = yaml.safe_load(f) if self._is_yaml() else json.load(f)
            if isinstance(data, list):
                self.events = [WorkflowEvent.from_dict(e) for e in data]
        except (OSError, ValueError, KeyError, yaml.YAMLError) as e:
            warnings.warn(f"Failed to load events from {self.log_file}: {e}")

    def _append_to_file(self, event: WorkflowEvent) -> None:
        """Append event to log file"""
        try:
            existing_events = []
            if self.log_file.exists():
                with self.log_file.open('r', encoding='utf-8') as f:
                    existing_events = (yaml.safe_load(f) if self._is_yaml() else json.load(f)) or []

            existing_events.append(event.to_dict())

            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with self.log_file.open('w', encoding='utf-8') as f:
                if self._is_yaml():
                    yaml.dump(existing_events, f, default_flow_style=False, allow_unicode=True)
                else:
                    json.dump(existing_events, f, indent=2, ensure_ascii=False, default=str)
        except (OSError, ValueError, yaml.YAMLError) as e:
            # best-effort: event log failures never stop a workflow
            warnings.warn(f"Failed to append event to {self.log_file}: {e}")
