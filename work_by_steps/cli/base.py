"""
Base utilities for CLI commands.
"""

import sys
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.agent_invoker import PlaceholderAgent
from ..core.config_loader import DefinitionLoader, EngineSettings
from ..core.escalation_queue import FileEscalationQueue
from ..core.exceptions import SecurityError, ValidationError, WorkflowError
from ..core.models import WorkflowDefinition
from ..core.state_storage import FileStateStore
from ..core.step_sequencer import WorkflowEngine, slugify
from ..core.workflow_events import EventLogger

# Errors reported as a one-line message rather than a traceback
CLI_ERRORS = (WorkflowError, ValidationError, SecurityError)


def _workspace(args) -> Path:
    return Path(args.workspace or ".").resolve()


def _fail(message: str) -> None:
    print(f"❌ {message}", file=sys.stderr)
    sys.exit(1)


def _parse_vars(pairs: List[str]) -> Dict[str, str]:
    """Turn repeated --var key=value options into a mapping"""
    variables: Dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValidationError(f"Invalid --var '{pair}', expected KEY=VALUE", field="var", value=pair)
        variables[key.strip()] = value
    return variables


def _load_definition(args) -> WorkflowDefinition:
    return DefinitionLoader(_workspace(args))(args.workflow)


def _collaborators(workspace: Path, settings: EngineSettings, workflow_id: str) -> Dict[str, Any]:
    """Keyword options shared by every sequencer built from the CLI"""
    return {
        "project_root": workspace,
        "state_store": FileStateStore(settings.path(workspace, "state_dir"),
                                      write_status_markdown=settings.status_markdown),
        "escalation_sink": FileEscalationQueue(settings.path(workspace, "escalation_dir")),
        "report_dir": settings.path(workspace, "report_dir"),
        "event_logger": EventLogger(settings.path(workspace, "events_dir") / f"{workflow_id}.json"),
        "retry_policy": settings.retry_policy(),
    }


def _init_engine(args, definition: WorkflowDefinition,
                 variables: Optional[Dict[str, Any]] = None) -> WorkflowEngine:
    """Build a markup workflow engine from CLI options and engine settings"""
    workspace = _workspace(args)
    settings = EngineSettings.load(workspace)
    workflow_id = args.id or f"{slugify(definition.name)}-{uuid.uuid4().hex[:8]}"
    return WorkflowEngine(
        definition,
        workflow_id=workflow_id,
        agent=PlaceholderAgent() if getattr(args, 'echo_agent', False) else None,
        variables=variables,
        fast_mode=getattr(args, 'fast', False) or settings.fast_mode,
        **_collaborators(workspace, settings, workflow_id),
    )
