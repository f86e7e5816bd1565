"""
Step sequencer: the resumable control loop shared by every workflow variant.
Following Single Responsibility Principle - handles step sequencing only.
"""

import re
import threading
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence

from .agent_invoker import Agent
from .condition_evaluator import ConditionEvaluator
from .config_loader import DefinitionLoader
from .enums import ActionKind, ActivityStatus, WorkflowStatus
from .escalation_queue import EscalationSink, FileEscalationQueue
from .exceptions import (
    ActionFailure, GateFailure, InvalidJumpTarget, ResumeMismatch,
    StepExecutionError, ValidationError, WorkflowCancelled, WorkflowError,
)
from .models import (
    Action, ActivityRecord, AgentResponse, ExecutionState, GateResult,
    InvokeSubworkflowAction, InvokeTaskAction, JumpAction,
    RenderTemplateAction, Step, WorkflowDefinition,
)
from .quality_gates import GateSpec, GatedCheckpoint, ValidatorOutput
from .retry_handler import RetryPolicy
from .state_storage import FileStateStore, StateStore, validate_workflow_id
from .template_writer import FileTemplateWriter, TemplateWriter
from .variable_resolver import VariableEnvironment
from .workflow_events import EventLogger


def slugify(name: str) -> str:
    """Turn a workflow name into a string usable inside a workflow id"""
    slug = re.sub(r'[^A-Za-z0-9_.-]+', '-', name).strip('-.')
    return slug or "workflow"


class BaseSequencer(ABC):
    """
    Deterministic step loop over a mutable variable environment.

    Subclasses supply the steps and implement ``_execute_step``; this class
    owns advancement, condition skips, fast-mode skips, jumps, cooperative
    cancellation, checkpointing and resume validation.
    """

    def __init__(
        self,
        steps: Sequence[Step],
        workflow_id: str,
        state_store: Optional[StateStore] = None,
        project_root: Optional[Path] = None,
        variables: Optional[Dict[str, Any]] = None,
        fast_mode: bool = False,
        event_logger: Optional[EventLogger] = None,
        retry_policy: Optional[RetryPolicy] = None,
        escalation_sink: Optional[EscalationSink] = None,
        report_dir: Optional[Path] = None,
        path_exists: Optional[Callable[[Path], bool]] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.steps = tuple(steps)
        self.workflow_id = validate_workflow_id(workflow_id)
        self.project_root = Path(project_root) if project_root else Path.cwd()
        workflow_dir = self.project_root / ".workflow"
        self.state_store = state_store or FileStateStore(workflow_dir / "state")
        self.fast_mode = fast_mode
        self.events = event_logger or EventLogger()
        self.retry_policy = retry_policy or RetryPolicy()
        self.escalation_sink = escalation_sink or FileEscalationQueue(workflow_dir / "escalations")
        self.gate_checkpoint = GatedCheckpoint(self.escalation_sink, report_dir or workflow_dir / "reports")
        self.path_exists = path_exists
        self.env = VariableEnvironment.with_builtins(variables, project_root=self.project_root)
        self.state: Optional[ExecutionState] = None
        self._cancel = cancel_event or threading.Event()

    @property
    @abstractmethod
    def workflow_name(self) -> str:
        """Identity recorded in checkpoints and checked on resume"""
        pass

    @property
    def workflow_source(self) -> Optional[str]:
        """Resolved location of the definition, when it was loaded from a file"""
        return None

    @abstractmethod
    def _execute_step(self, step: Step) -> Optional[int]:
        """
        Run one step's body.

        Returns:
            Index of the step to run next when the body jumped, else None
        """
        pass

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> ExecutionState:
        """Start a fresh run from the first step"""
        now = datetime.now()
        self.state = ExecutionState(
            workflow_id=self.workflow_id,
            workflow_name=self.workflow_name,
            workflow_source=self.workflow_source,
            current_step=0,
            status=WorkflowStatus.RUNNING,
            variables=self.env.to_dict(),
            start_time=now,
            last_update=now,
        )
        self.events.log(self.workflow_id, "workflow_started", name=self.workflow_name,
                        fast_mode=self.fast_mode)
        return self._execute_from(0)

    def resume(self) -> ExecutionState:
        """
        Continue from the last checkpoint of this workflow id.

        Raises:
            WorkflowError: No checkpoint exists, or the workflow already completed
            ResumeMismatch: The checkpoint belongs to a different workflow
            StateCorruption: The checkpoint cannot be read
        """
        state = self.state_store.load(self.workflow_id)
        if state is None:
            raise WorkflowError("No checkpoint found to resume", workflow_id=self.workflow_id)
        if state.workflow_name != self.workflow_name:
            raise ResumeMismatch(
                f"Checkpoint belongs to workflow '{state.workflow_name}', not '{self.workflow_name}'",
                workflow_id=self.workflow_id,
            )
        if state.workflow_source != self.workflow_source:
            raise ResumeMismatch(
                f"Checkpoint was created from '{state.workflow_source}', not '{self.workflow_source}'",
                workflow_id=self.workflow_id,
            )
        if state.status == WorkflowStatus.COMPLETED or state.current_step >= len(self.steps):
            raise WorkflowError("Workflow already completed", workflow_id=self.workflow_id,
                                step_number=state.current_step)

        self.state = state
        self.env = VariableEnvironment(state.variables)
        self.events.log(self.workflow_id, "workflow_resumed", step=state.current_step,
                        previous_status=state.status.value)
        return self._execute_from(state.current_step)

    def cancel(self) -> None:
        """Request cancellation; honoured at the next step boundary"""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _execute_from(self, index: int) -> ExecutionState:
        self.state.status = WorkflowStatus.RUNNING
        self.state.error = None
        try:
            while index < len(self.steps):
                if self._cancel.is_set():
                    raise WorkflowCancelled("Workflow cancelled", workflow_id=self.workflow_id,
                                            step_number=self.state.current_step)
                step = self.steps[index]

                if self.fast_mode and step.optional:
                    self.events.log(self.workflow_id, "step_skipped", step=step.number,
                                    status="skipped", reason="optional step in fast mode")
                    self.state.current_step = step.number
                    index += 1
                    continue

                if step.condition and not self.evaluator().evaluate(step.condition):
                    self.events.log(self.workflow_id, "step_skipped", step=step.number,
                                    status="skipped", reason=f"condition false: {step.condition}")
                    self.state.current_step = step.number
                    index += 1
                    continue

                self.events.log(self.workflow_id, "step_started", step=step.number, goal=step.goal)
                started = time.monotonic()
                try:
                    jump_index = self._execute_step(step)
                except WorkflowCancelled:
                    raise
                except Exception as e:
                    self.events.log(self.workflow_id, "step_failed", step=step.number,
                                    status="failed", error=str(e))
                    raise StepExecutionError(step.number, step.goal, step.content_excerpt, e,
                                             workflow_id=self.workflow_id) from e

                self.state.current_step = step.number
                self._save()
                self.events.log(self.workflow_id, "step_completed", step=step.number,
                                duration=round(time.monotonic() - started, 3))
                index = jump_index if jump_index is not None else index + 1

        except WorkflowCancelled as e:
            self._finish(WorkflowStatus.CANCELLED, str(e))
            self.events.log(self.workflow_id, "workflow_cancelled", step=self.state.current_step,
                            status="failed")
            raise
        except Exception as e:
            self._finish(WorkflowStatus.ERROR, str(e))
            self.events.log(self.workflow_id, "workflow_failed", step=self.state.current_step,
                            status="failed", error=str(e))
            raise

        self._finish(WorkflowStatus.COMPLETED)
        self.events.log(self.workflow_id, "workflow_completed", step=self.state.current_step)
        return self.state

    def _finish(self, status: WorkflowStatus, error: Optional[str] = None) -> None:
        self.state.status = status
        self.state.error = error
        self._save()

    def _save(self) -> None:
        self.state.variables = self.env.to_dict()
        self.state.last_update = datetime.now()
        self.state_store.save(self.state)

    # ------------------------------------------------------------------
    # Shared helpers for subclasses
    # ------------------------------------------------------------------

    def evaluator(self) -> ConditionEvaluator:
        return ConditionEvaluator(self.env, self.project_root, self.path_exists)

    def _jump_index(self, target: int, from_step: int) -> int:
        for i, step in enumerate(self.steps):
            if step.number == target:
                return i
        raise InvalidJumpTarget(target, [s.number for s in self.steps], step_number=from_step)

    def _agent_context(self, step: Step, **extra: Any) -> Dict[str, Any]:
        context = {
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "step": step.number,
            "goal": step.goal,
            "variables": self.env.to_dict(),
        }
        context.update(extra)
        return context

    def _invoke_agent(self, agent: Agent, task: str, step: Step, label: str,
                      policy: Optional[RetryPolicy] = None, **context: Any) -> AgentResponse:
        """Invoke an agent through the retry policy and record the activity"""
        policy = policy or self.retry_policy
        agent_context = self._agent_context(step, **context)
        return self._record_activity(
            agent.agent_id, agent.name, label, step,
            lambda: policy.call(lambda: agent.invoke(task, agent_context),
                                description=f"{agent.name} {label}"),
            policy,
            output=lambda response: response.content,
        )

    def _record_activity(self, agent_id: str, agent_name: str, label: str, step: Step,
                         fn: Callable[[], Any], policy: Optional[RetryPolicy] = None,
                         output: Optional[Callable[[Any], str]] = None) -> Any:
        record = ActivityRecord(agent_id=agent_id, agent_name=agent_name, action=label)
        started = time.monotonic()
        try:
            result = fn()
        except Exception as e:
            record.status = ActivityStatus.FAILED
            record.duration = round(time.monotonic() - started, 3)
            record.output = str(e)[:500]
            self.state.history.append(record)
            raise
        record.status = ActivityStatus.COMPLETED
        record.duration = round(time.monotonic() - started, 3)
        if output:
            record.output = output(result)[:500]
        self.state.history.append(record)
        if policy is not None and len(policy.attempts) > 1:
            self.events.log(self.workflow_id, "retry", step=step.number, status="retry",
                            action=label, attempts=[a.attempt for a in policy.attempts],
                            delays=[a.delay for a in policy.attempts])
        return result

    def _run_gate(self, step: Step, gate_name: str, validator: Callable[[], ValidatorOutput],
                  threshold: float) -> GateResult:
        """Run a gated checkpoint; a failed gate blocks with GateFailure"""
        result = self.gate_checkpoint.run_gate(validator, threshold, gate_name=gate_name,
                                               workflow_id=self.workflow_id, step=step.number,
                                               context={"goal": step.goal})
        self.state.gate_results[gate_name] = result.to_dict()
        self.events.log(self.workflow_id, "gate", step=step.number,
                        status="success" if result.passed else "failed",
                        gate=gate_name, score=result.score, threshold=threshold,
                        escalation_id=result.escalation_id)
        if not result.passed:
            raise GateFailure(result, workflow_id=self.workflow_id, step_number=step.number)
        return result


class WorkflowEngine(BaseSequencer):
    """
    Markup-driven workflow engine.

    Executes a parsed WorkflowDefinition, dispatching each action kind to
    its collaborator: the agent for instructions, prompts, elicitations and
    tasks; the template writer for template output; a child engine for
    nested workflows.
    """

    def __init__(
        self,
        definition: WorkflowDefinition,
        workflow_id: Optional[str] = None,
        agent: Optional[Agent] = None,
        template_writer: Optional[TemplateWriter] = None,
        loader: Optional[Callable[[str], WorkflowDefinition]] = None,
        gates: Optional[Dict[int, GateSpec]] = None,
        **options: Any,
    ):
        variables = dict(definition.variables)
        variables.update(options.pop("variables", None) or {})
        super().__init__(
            definition.steps,
            workflow_id or f"{slugify(definition.name)}-{uuid.uuid4().hex[:8]}",
            variables=variables,
            **options,
        )
        self.definition = definition
        self.agent = agent
        self.template_writer = template_writer or FileTemplateWriter(self.project_root)
        self.loader = loader or DefinitionLoader(self.project_root)
        self.gates = dict(gates or {})
        unknown = sorted(set(self.gates) - set(definition.step_numbers))
        if unknown:
            raise ValidationError(f"Gates attached to unknown steps: {unknown}", field="gates")
        self._handlers = {
            ActionKind.NOTE: self._handle_note,
            ActionKind.PROMPT: self._handle_prompt,
            ActionKind.ELICIT: self._handle_prompt,
            ActionKind.EMIT: self._handle_emit,
            ActionKind.RENDER_TEMPLATE: self._handle_render_template,
            ActionKind.JUMP: self._handle_jump,
            ActionKind.INVOKE_SUBWORKFLOW: self._handle_subworkflow,
            ActionKind.INVOKE_TASK: self._handle_task,
        }

    @property
    def workflow_name(self) -> str:
        return self.definition.name

    @property
    def workflow_source(self) -> Optional[str]:
        if not self.definition.source:
            return None
        return str(Path(self.definition.source).resolve())

    def _execute_step(self, step: Step) -> Optional[int]:
        actions, checks = step.parse_body()
        jump_index = self._dispatch_all(actions, step)
        if jump_index is None:
            for check in checks:
                if not self.evaluator().evaluate(check.condition):
                    continue
                jump_index = self._dispatch_all(check.actions, step)
                if jump_index is not None:
                    break

        gate = self.gates.get(step.number)
        if gate is not None:
            self._run_gate(step, gate.name, gate.validator, gate.threshold)
        return jump_index

    def _dispatch_all(self, actions: Sequence[Action], step: Step) -> Optional[int]:
        """Dispatch actions in order; stop at the first jump"""
        for action in actions:
            if action.condition and not self.evaluator().evaluate(action.condition):
                self.events.log_action(self.workflow_id, step.number, action.kind.value,
                                       action.content, status="skipped",
                                       metadata={"condition": action.condition})
                continue
            started = time.monotonic()
            jump_index = self._handlers[action.kind](action, step)
            self.events.log_action(self.workflow_id, step.number, action.kind.value, action.content,
                                   execution_time=round(time.monotonic() - started, 3))
            if jump_index is not None:
                return jump_index
        return None

    # Handlers return the jump index, or None to continue with the next action

    def _handle_note(self, action: Action, step: Step) -> None:
        task = self.env.substitute(action.content)
        if self.agent is not None:
            self._invoke_agent(self.agent, task, step, action.kind.value)

    def _handle_prompt(self, action: Action, step: Step) -> None:
        task = self.env.substitute(action.content)
        if self.fast_mode:
            self.events.log(self.workflow_id, "prompt_skipped", step=step.number, status="skipped",
                            kind=action.kind.value, text=task)
            return
        if self.agent is not None:
            self._invoke_agent(self.agent, task, step, action.kind.value)

    def _handle_emit(self, action: Action, step: Step) -> None:
        text = self.env.substitute(action.content)
        self.state.outputs.append(text)
        self.events.log(self.workflow_id, "output", step=step.number, text=text)

    def _handle_render_template(self, action: RenderTemplateAction, step: Step) -> None:
        relative_path = self.env.substitute(action.file)
        body = self.env.substitute(action.content)
        written = self._record_activity(
            "template-writer", "Template Writer", f"template-output {relative_path}", step,
            lambda: self.retry_policy.call(lambda: self.template_writer.write(relative_path, body),
                                           description=f"Writing {relative_path}"),
            self.retry_policy,
            output=str,
        )
        self.state.outputs.append(str(written))

    def _handle_jump(self, action: JumpAction, step: Step) -> int:
        return self._jump_index(action.target_step, step.number)

    def _handle_task(self, action: InvokeTaskAction, step: Step) -> None:
        relative_path = self.env.substitute(action.path)
        try:
            task = self.template_writer.read(relative_path)
        except OSError as e:
            raise ActionFailure(f"Could not read task file {relative_path}: {e}",
                                step_number=step.number) from e
        if self.agent is not None:
            self._invoke_agent(self.agent, task, step, f"invoke-task {relative_path}")
        else:
            self.events.log(self.workflow_id, "task", step=step.number, path=relative_path)

    def _handle_subworkflow(self, action: InvokeSubworkflowAction, step: Step) -> None:
        path = self.env.substitute(action.path)
        inputs = {key: self.env.substitute(value) for key, value in action.inputs.items()}
        try:
            definition = self.loader(path)
        except (WorkflowError, ValidationError) as e:
            raise ActionFailure(f"Nested workflow failed to load: {path}: {e}",
                                step_number=step.number) from e

        child = WorkflowEngine(
            definition,
            workflow_id=f"{self.workflow_id}--{slugify(definition.name)}",
            agent=self.agent,
            template_writer=self.template_writer,
            loader=self.loader,
            state_store=self.state_store,
            project_root=self.project_root,
            variables=self.env.snapshot(inputs).to_dict(),
            fast_mode=self.fast_mode,
            event_logger=self.events,
            retry_policy=self.retry_policy,
            escalation_sink=self.escalation_sink,
            report_dir=self.gate_checkpoint.report_dir,
            path_exists=self.path_exists,
            cancel_event=self._cancel,
        )

        def run_child() -> ExecutionState:
            try:
                return child.run()
            except WorkflowCancelled:
                raise
            except WorkflowError as e:
                raise ActionFailure(f"Nested workflow failed: {definition.name}: {e}",
                                    step_number=step.number) from e

        self._record_activity(
            child.workflow_id, definition.name, f"invoke-workflow {path}", step, run_child,
            output=lambda state: f"{state.status.value} at step {state.current_step}",
        )
