"""
Escalation sink for human-review requests raised by blocked workflows.
Following Single Responsibility Principle - handles escalation persistence only.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .atomic_io import atomic_write_text
from .enums import EscalationStatus
from .exceptions import ValidationError


@dataclass
class Escalation:
    """A human-review request"""
    id: str
    workflow_id: str
    question: str
    reasoning: str
    confidence: float
    step: Optional[int] = None
    context: Dict[str, Any] = field(default_factory=dict)
    status: EscalationStatus = EscalationStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    resolved_at: Optional[datetime] = None
    response: Optional[Any] = None
    resolution_time: Optional[float] = None  # seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "step": self.step,
            "question": self.question,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "context": self.context,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "response": self.response,
            "resolution_time": self.resolution_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Escalation':
        resolved_at = data.get("resolved_at")
        return cls(
            id=data["id"],
            workflow_id=data["workflow_id"],
            step=data.get("step"),
            question=data["question"],
            reasoning=data.get("reasoning", ""),
            confidence=data.get("confidence", 0.0),
            context=data.get("context") or {},
            status=EscalationStatus(data.get("status", "pending")),
            created_at=datetime.fromisoformat(data["created_at"]),
            resolved_at=datetime.fromisoformat(resolved_at) if resolved_at else None,
            response=data.get("response"),
            resolution_time=data.get("resolution_time"),
        )


class EscalationSink(ABC):
    """Receives escalations raised when automated progress cannot continue"""

    @abstractmethod
    def raise_escalation(self, question: str, reasoning: str, confidence: float,
                         context: Optional[Dict[str, Any]] = None,
                         workflow_id: str = "workflow", step: Optional[int] = None) -> str:
        """Record an escalation and return its id"""
        pass


class FileEscalationQueue(EscalationSink):
    """
    File-based escalation queue.

    Each escalation is stored as ``<queue_dir>/esc-<uuid>.yaml`` and written
    atomically, so the queue can be inspected or answered from another
    process (the CLI ``escalations`` command does this).
    """

    def __init__(self, queue_dir: Path):
        self.queue_dir = Path(queue_dir)
        self._lock = threading.Lock()

    def raise_escalation(self, question: str, reasoning: str, confidence: float,
                         context: Optional[Dict[str, Any]] = None,
                         workflow_id: str = "workflow", step: Optional[int] = None) -> str:
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError("Escalation confidence must be between 0 and 1",
                                  field="confidence", value=confidence)
        escalation = Escalation(
            id=f"esc-{uuid.uuid4()}",
            workflow_id=workflow_id,
            step=step,
            question=question,
            reasoning=reasoning,
            confidence=confidence,
            context=dict(context or {}),
        )
        self._write(escalation)
        return escalation.id

    def get(self, escalation_id: str) -> Optional[Escalation]:
        path = self._path(escalation_id)
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        return Escalation.from_dict(data) if data else None

    def list(self, status: Optional[EscalationStatus] = None,
             workflow_id: Optional[str] = None) -> List[Escalation]:
        """List escalations, oldest first"""
        if not self.queue_dir.exists():
            return []
        escalations = []
        for path in self.queue_dir.glob("esc-*.yaml"):
            escalation = self.get(path.stem)
            if escalation is None:
                continue
            if status and escalation.status != status:
                continue
            if workflow_id and escalation.workflow_id != workflow_id:
                continue
            escalations.append(escalation)
        return sorted(escalations, key=lambda e: e.created_at)

    def respond(self, escalation_id: str, response: Any) -> Escalation:
        """Resolve a pending escalation with a human response"""
        with self._lock:
            escalation = self.get(escalation_id)
            if escalation is None:
                raise ValidationError(f"Escalation not found: {escalation_id}")
            if escalation.status != EscalationStatus.PENDING:
                raise ValidationError(
                    f"Escalation {escalation_id} is already {escalation.status.value}",
                    field="status", value=escalation.status.value,
                )
            escalation.status = EscalationStatus.RESOLVED
            escalation.response = response
            escalation.resolved_at = datetime.now()
            escalation.resolution_time = (escalation.resolved_at - escalation.created_at).total_seconds()
            self._write(escalation)
            return escalation

    def metrics(self) -> Dict[str, Any]:
        escalations = self.list()
        resolved = [e for e in escalations if e.status == EscalationStatus.RESOLVED]
        times = [e.resolution_time for e in resolved if e.resolution_time is not None]
        return {
            "total": len(escalations),
            "pending": sum(1 for e in escalations if e.status == EscalationStatus.PENDING),
            "resolved": len(resolved),
            "cancelled": sum(1 for e in escalations if e.status == EscalationStatus.CANCELLED),
            "average_resolution_time": sum(times) / len(times) if times else 0.0,
        }

    def _path(self, escalation_id: str) -> Path:
        if not escalation_id.startswith("esc-") or "/" in escalation_id or "\\" in escalation_id:
            raise ValidationError(f"Invalid escalation id: {escalation_id}")
        return self.queue_dir / f"{escalation_id}.yaml"

    def _write(self, escalation: Escalation) -> None:
        text = yaml.dump(escalation.to_dict(), default_flow_style=False, allow_unicode=True)
        atomic_write_text(self._path(escalation.id), text)
