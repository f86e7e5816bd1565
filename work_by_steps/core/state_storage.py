"""
State storage for persisting workflow checkpoints.
Following Single Responsibility Principle - handles state persistence only.
"""

import copy
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema
import yaml

from .atomic_io import atomic_write_text
from .exceptions import StateCorruption, ValidationError
from .models import ExecutionState


_WORKFLOW_ID = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.-]*$')

CHECKPOINT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["workflow_id", "workflow_name", "current_step", "status",
                 "variables", "history", "start_time", "last_update"],
    "properties": {
        "workflow_id": {"type": "string", "minLength": 1},
        "workflow_name": {"type": "string"},
        "workflow_source": {"type": ["string", "null"]},
        "current_step": {"type": "integer", "minimum": 0},
        "status": {"enum": ["running", "paused", "completed", "error", "cancelled"]},
        "variables": {"type": "object"},
        "history": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["agent_id", "action", "timestamp", "status"],
                "properties": {
                    "status": {"enum": ["started", "completed", "failed"]},
                    "duration": {"type": "number"},
                },
            },
        },
        "outputs": {"type": "array", "items": {"type": "string"}},
        "gate_results": {"type": "object"},
        "start_time": {"type": "string"},
        "last_update": {"type": "string"},
        "error": {"type": ["string", "null"]},
    },
}


def validate_workflow_id(workflow_id: str) -> str:
    """Reject ids that are unsafe to use as file names"""
    if not workflow_id or not _WORKFLOW_ID.match(workflow_id):
        raise ValidationError(
            "Workflow id must start with a letter or digit and contain only letters, digits, '.', '_' or '-'",
            field="workflow_id", value=workflow_id,
        )
    return workflow_id


def state_from_dict(data: Any, source: str) -> ExecutionState:
    """Validate a raw checkpoint mapping and build ExecutionState from it"""
    try:
        jsonschema.validate(data, CHECKPOINT_SCHEMA)
        return ExecutionState.from_dict(data)
    except jsonschema.ValidationError as e:
        raise StateCorruption(f"Checkpoint {source} does not match the checkpoint schema: {e.message}") from e
    except (KeyError, TypeError, ValueError) as e:
        raise StateCorruption(f"Checkpoint {source} could not be decoded: {e}") from e


class StateStore(ABC):
    """Abstract base class for checkpoint storage backends"""

    @abstractmethod
    def save(self, state: ExecutionState) -> None:
        """Persist a checkpoint atomically"""
        pass

    @abstractmethod
    def load(self, workflow_id: str) -> Optional[ExecutionState]:
        """Load a checkpoint, returns None if not found"""
        pass

    @abstractmethod
    def exists(self, workflow_id: str) -> bool:
        """Check if a checkpoint exists for workflow_id"""
        pass


class FileStateStore(StateStore):
    """
    YAML-file state store.

    Writes ``<state_dir>/<workflow_id>.yaml`` atomically and, unless
    disabled, a human-readable ``<workflow_id>.md`` status file beside it.
    Unreadable or schema-mismatched checkpoints raise StateCorruption; they
    are never repaired or silently replaced.
    """

    def __init__(self, state_dir: Path, write_status_markdown: bool = True):
        self.state_dir = Path(state_dir)
        self.write_status_markdown = write_status_markdown

    def path_for(self, workflow_id: str) -> Path:
        return self.state_dir / f"{validate_workflow_id(workflow_id)}.yaml"

    def save(self, state: ExecutionState) -> None:
        """Save execution state to YAML file"""
        path = self.path_for(state.workflow_id)
        text = yaml.dump(state.to_dict(), default_flow_style=False, allow_unicode=True, sort_keys=False)
        atomic_write_text(path, text)
        if self.write_status_markdown:
            atomic_write_text(path.with_suffix(".md"), render_status_markdown(state))

    def load(self, workflow_id: str) -> Optional[ExecutionState]:
        """Load execution state from YAML file"""
        path = self.path_for(workflow_id)
        if not path.exists():
            return None

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise StateCorruption(f"Checkpoint {path} is not valid YAML: {e}", workflow_id=workflow_id) from e
        if data is None:
            raise StateCorruption(f"Checkpoint {path} is empty", workflow_id=workflow_id)
        return state_from_dict(data, str(path))

    def exists(self, workflow_id: str) -> bool:
        """Check if state file exists"""
        return self.path_for(workflow_id).exists()


class MemoryStateStore(StateStore):
    """In-process state store keeping a serialized copy per workflow id"""

    def __init__(self):
        self._states: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, state: ExecutionState) -> None:
        data = copy.deepcopy(state.to_dict())
        with self._lock:
            self._states[validate_workflow_id(state.workflow_id)] = data

    def load(self, workflow_id: str) -> Optional[ExecutionState]:
        with self._lock:
            data = self._states.get(workflow_id)
        if data is None:
            return None
        return state_from_dict(copy.deepcopy(data), f"memory:{workflow_id}")

    def exists(self, workflow_id: str) -> bool:
        with self._lock:
            return workflow_id in self._states


def render_status_markdown(state: ExecutionState, activity_limit: int = 10) -> str:
    """Render a checkpoint as a Markdown status page"""
    lines = [
        f"# Workflow Status: {state.workflow_name}",
        "",
        f"**Workflow ID:** {state.workflow_id}",
        f"**Status:** {state.status.value}",
        f"**Current Step:** {state.current_step}",
        f"**Started:** {state.start_time.isoformat()}",
        f"**Last Updated:** {state.last_update.isoformat()}",
        "",
    ]
    if state.error:
        lines += ["## Error", "", f"```\n{state.error}\n```", ""]

    if state.gate_results:
        lines += ["## Quality Gates", "", "| Gate | Status | Score | Threshold |", "|------|--------|-------|-----------|"]
        for gate, result in state.gate_results.items():
            lines.append(f"| {gate} | {result.get('status')} | {result.get('score')} | {result.get('threshold')} |")
        lines.append("")

    lines += ["## Recent Activity", ""]
    recent = state.history[-activity_limit:]
    if recent:
        lines += ["| Time | Agent | Action | Status | Duration |", "|------|-------|--------|--------|----------|"]
        for record in reversed(recent):
            lines.append(
                f"| {record.timestamp.strftime('%Y-%m-%d %H:%M:%S')} | {record.agent_name} "
                f"| {_cell(record.action)} | {record.status.value} | {record.duration:.2f}s |"
            )
    else:
        lines.append("_No activity recorded yet._")
    lines.append("")

    lines += ["## Variables", ""]
    if state.variables:
        lines += ["| Name | Value |", "|------|-------|"]
        for name in sorted(state.variables):
            lines.append(f"| {name} | {_cell(state.variables[name])} |")
    else:
        lines.append("_No variables._")
    lines.append("")
    return "\n".join(lines)


def _cell(value: Any, limit: int = 80) -> str:
    text = str(value).replace("\n", " ").replace("|", "\\|")
    return text if len(text) <= limit else text[:limit - 3] + "..."
