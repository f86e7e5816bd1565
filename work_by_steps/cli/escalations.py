"""
CLI commands for the escalation queue: list, respond
"""

from .base import CLI_ERRORS, _fail, _workspace
from ..core.config_loader import EngineSettings
from ..core.enums import EscalationStatus
from ..core.escalation_queue import FileEscalationQueue


def _queue(args) -> FileEscalationQueue:
    workspace = _workspace(args)
    settings = EngineSettings.load(workspace)
    return FileEscalationQueue(settings.path(workspace, "escalation_dir"))


def cmd_escalations_list(args):
    """List escalations"""
    try:
        queue = _queue(args)
        status = EscalationStatus(args.status) if args.status else None
        escalations = queue.list(status=status, workflow_id=args.workflow)
    except CLI_ERRORS as e:
        _fail(str(e))
        return

    if not escalations:
        print("No escalations found")
        return
    for escalation in escalations:
        step = f" step {escalation.step}" if escalation.step is not None else ""
        print(f"[{escalation.status.value}] {escalation.id} ({escalation.workflow_id}{step})")
        print(f"   {escalation.question}")
        if escalation.response is not None:
            print(f"   Response: {escalation.response}")

    metrics = queue.metrics()
    print(f"\n📊 {metrics['pending']} pending, {metrics['resolved']} resolved")


def cmd_escalations_respond(args):
    """Resolve a pending escalation"""
    try:
        escalation = _queue(args).respond(args.escalation_id, args.response)
    except CLI_ERRORS as e:
        _fail(str(e))
        return
    print(f"✅ Escalation {escalation.id} resolved")
