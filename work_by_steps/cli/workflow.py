"""
CLI commands for workflow execution: run, resume, status, validate, architecture
"""

import sys
import uuid

from .base import (
    CLI_ERRORS, _collaborators, _fail, _init_engine, _load_definition, _parse_vars, _workspace,
)
from ..core.architecture_workflow import ArchitectureWorkflow
from ..core.config_loader import EngineSettings
from ..core.enums import WorkflowStatus
from ..core.exceptions import GateFailure, StepExecutionError
from ..core.models import ExecutionState
from ..core.state_storage import FileStateStore


def _print_outcome(state: ExecutionState) -> None:
    print(f"✅ Workflow '{state.workflow_name}' completed ({state.workflow_id})")
    print(f"   Steps completed: {state.current_step}")
    for output in state.outputs:
        print(f"   - {output}")


def _report_failure(error: Exception, workflow_id: str) -> None:
    cause = error.cause if isinstance(error, StepExecutionError) else error
    if isinstance(cause, GateFailure):
        result = cause.result
        print(f"⚠️  Gate '{result.gate}' blocked the workflow: {result.score} < {result.threshold}",
              file=sys.stderr)
        if result.gap_report_path:
            print(f"   Gap report: {result.gap_report_path}", file=sys.stderr)
        if result.escalation_id:
            print(f"   Escalation: {result.escalation_id}", file=sys.stderr)
    _fail(f"{error}\n   Resume with --id {workflow_id} once the problem is fixed")


def cmd_run(args):
    """Run a workflow from the first step"""
    try:
        definition = _load_definition(args)
        engine = _init_engine(args, definition, variables=_parse_vars(args.var))
    except CLI_ERRORS as e:
        _fail(str(e))
        return

    print(f"▶️  Running '{definition.name}' as {engine.workflow_id}")
    try:
        state = engine.run()
    except CLI_ERRORS as e:
        _report_failure(e, engine.workflow_id)
        return
    _print_outcome(state)


def cmd_resume(args):
    """Resume a workflow from its last checkpoint"""
    try:
        definition = _load_definition(args)
        engine = _init_engine(args, definition)
    except CLI_ERRORS as e:
        _fail(str(e))
        return

    print(f"▶️  Resuming '{definition.name}' ({engine.workflow_id})")
    try:
        state = engine.resume()
    except CLI_ERRORS as e:
        _report_failure(e, engine.workflow_id)
        return
    _print_outcome(state)


def cmd_status(args):
    """Show a workflow checkpoint"""
    workspace = _workspace(args)
    try:
        settings = EngineSettings.load(workspace)
        state = FileStateStore(settings.path(workspace, "state_dir")).load(args.id)
    except CLI_ERRORS as e:
        _fail(str(e))
        return
    if state is None:
        _fail(f"No checkpoint found for '{args.id}'")
        return

    icon = {
        WorkflowStatus.COMPLETED: "✅",
        WorkflowStatus.ERROR: "❌",
        WorkflowStatus.CANCELLED: "⏹️",
    }.get(state.status, "🔄")
    print(f"📋 Workflow: {state.workflow_name} ({state.workflow_id})")
    print(f"{icon} Status: {state.status.value}")
    print(f"   Last completed step: {state.current_step}")
    print(f"   Last update: {state.last_update.strftime('%Y-%m-%d %H:%M:%S')}")
    if state.error:
        print(f"   Error: {state.error}")
    for gate, result in state.gate_results.items():
        print(f"   Gate {gate}: {result.get('status')} (score {result.get('score')}, "
              f"threshold {result.get('threshold')})")
    if state.outputs:
        print(f"   Outputs: {len(state.outputs)}")


def cmd_validate(args):
    """Parse a workflow and every step body"""
    try:
        definition = _load_definition(args)
        definition.validate()
    except CLI_ERRORS as e:
        _fail(f"Invalid workflow: {e}")
        return
    print(f"✅ Workflow '{definition.name}' is valid ({len(definition.steps)} steps)")
    for step in definition.steps:
        flags = []
        if step.optional:
            flags.append("optional")
        if step.condition:
            flags.append(f"if {step.condition}")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"   {step.number}. {step.goal}{suffix}")


def cmd_architecture(args):
    """Run (or resume) the nine-step architecture workflow"""
    if args.resume and not args.id:
        _fail("--resume requires --id")
        return
    workspace = _workspace(args)
    try:
        settings = EngineSettings.load(workspace)
        workflow_id = args.id or f"{ArchitectureWorkflow.NAME}-{uuid.uuid4().hex[:8]}"
        workflow = ArchitectureWorkflow(
            args.prd,
            workflow_id=workflow_id,
            output_path=args.output,
            template_path=workspace / args.template if args.template else None,
            fast_mode=settings.fast_mode,
            **_collaborators(workspace, settings, workflow_id),
        )
    except CLI_ERRORS as e:
        _fail(str(e))
        return

    print(f"▶️  {'Resuming' if args.resume else 'Running'} architecture workflow ({workflow_id})")
    try:
        state = workflow.resume() if args.resume else workflow.run()
    except CLI_ERRORS as e:
        _report_failure(e, workflow_id)
        return
    _print_outcome(state)
