"""
Integration tests for the markup-driven workflow engine.
"""
import threading
from dataclasses import replace
import pytest

from work_by_steps.core.agent_invoker import CallableAgent
from work_by_steps.core.enums import ActivityStatus, WorkflowStatus
from work_by_steps.core.exceptions import (
    ActionFailure, GateFailure, InvalidJumpTarget, StepExecutionError, ValidationError,
    WorkflowCancelled,
)
from work_by_steps.core.markup_parser import parse_workflow
from work_by_steps.core.quality_gates import GateSpec
from work_by_steps.core.step_sequencer import WorkflowEngine


def _engine(markup, engine_options, workflow_id="demo-1", **kwargs):
    options = dict(engine_options)
    options.update(kwargs)
    return WorkflowEngine(parse_workflow(markup, name="demo"), workflow_id=workflow_id, **options)


class TestWorkflowRun:
    """Test a plain run from the first step."""

    MARKUP = """
<step n="1" goal="Brief the agent">
  <action>Plan the {{project_name}} release</action>
</step>
<step n="2" goal="Report">
  <output>Hello {{project_name}}</output>
</step>
<step n="3" goal="Write notes">
  <template-output file="docs/{{project_name}}.md">
# {{project_name}} notes
  </template-output>
</step>
"""

    def test_runs_every_step(self, engine_options, recording_agent, recorded_calls,
                             memory_store, temp_workspace):
        """Test actions, outputs, template writes and the final checkpoint."""
        engine = _engine(self.MARKUP, engine_options, agent=recording_agent,
                         variables={"project_name": "Acme"})

        state = engine.run()

        assert state.status == WorkflowStatus.COMPLETED
        assert state.current_step == 3
        assert state.outputs[0] == "Hello Acme"
        written = temp_workspace / "docs" / "Acme.md"
        assert state.outputs[1] == str(written.resolve())
        assert written.read_text(encoding="utf-8") == "# Acme notes"

        assert recorded_calls[0]["task"] == "Plan the Acme release"
        context = recorded_calls[0]["context"]
        assert context["step"] == 1
        assert context["workflow_id"] == "demo-1"
        assert context["variables"]["project_name"] == "Acme"

        saved = memory_store.load("demo-1")
        assert saved.status == WorkflowStatus.COMPLETED
        assert saved.current_step == 3
        assert [r.agent_id for r in saved.history] == ["recorder", "template-writer"]
        assert all(r.status == ActivityStatus.COMPLETED for r in saved.history)

    def test_no_agent_is_a_dry_run(self, engine_options):
        """Test that instructions without an agent are only logged."""
        engine = _engine(self.MARKUP, engine_options, variables={"project_name": "Acme"})

        state = engine.run()

        assert state.status == WorkflowStatus.COMPLETED
        assert [e.event_type for e in engine.events.get_events(step=1)] == [
            "step_started", "action", "step_completed",
        ]

    def test_definition_variables_are_defaults(self, engine_options):
        """Test that run-time variables override workflow.yaml defaults."""
        definition = parse_workflow('<step n="1" goal="g"><output>{{a}} {{b}}</output></step>')
        definition = replace(definition, variables={"a": "default-a", "b": "default-b"})

        state = WorkflowEngine(definition, workflow_id="demo-1", variables={"b": "override"},
                               **engine_options).run()

        assert state.outputs == ["default-a override"]

    def test_generated_workflow_id(self, engine_options):
        engine = WorkflowEngine(parse_workflow('<step n="1" goal="g"></step>', name="Create Story"),
                                **engine_options)

        assert engine.workflow_id.startswith("Create-Story-")

    def test_undefined_variable_fails_step(self, engine_options):
        """Test that an unresolvable placeholder fails the step with context."""
        engine = _engine('<step n="1" goal="Say"><output>{{missing}}</output></step>', engine_options)

        with pytest.raises(StepExecutionError) as exc_info:
            engine.run()

        assert exc_info.value.step_number == 1
        assert exc_info.value.goal == "Say"
        assert "Undefined variable" in str(exc_info.value.cause)
        assert engine.state.status == WorkflowStatus.ERROR


class TestSkipping:
    """Test condition, fast-mode and action-level skips."""

    MARKUP = """
<step n="1" goal="Always"><output>one</output></step>
<step n="2" goal="Full mode only" if="{{mode}} == 'full'"><output>two</output></step>
<step n="3" goal="Optional" optional="true"><output>three</output></step>
<step n="4" goal="Ask"><ask>Anything else?</ask><output>four</output></step>
"""

    def test_condition_false_skips_step(self, engine_options):
        engine = _engine(self.MARKUP, engine_options, variables={"mode": "quick"})

        state = engine.run()

        assert state.outputs == ["one", "three", "four"]
        skipped = engine.events.get_events(event_type="step_skipped")
        assert [e.step for e in skipped] == [2]
        assert "condition false" in skipped[0].metadata["reason"]

    def test_staging_run_never_deploys(self, engine_options, recording_agent, recorded_calls,
                                       memory_store):
        """Test that a false step condition keeps its actions from ever running."""
        markup = """
<step n="1" goal="Build"><action>build</action></step>
<step n="2" goal="Deploy" if="env == prod"><action>deploy</action><output>deployed</output></step>
<step n="3" goal="Notify"><action>notify</action></step>
"""
        engine = _engine(markup, engine_options, agent=recording_agent, variables={"env": "staging"})

        state = engine.run()

        assert state.status == WorkflowStatus.COMPLETED
        assert state.current_step == 3
        assert [call["task"] for call in recorded_calls] == ["build", "notify"]
        assert state.outputs == []
        assert engine.events.get_events(event_type="step_started", step=2) == []
        saved = memory_store.load("demo-1")
        assert saved.status == WorkflowStatus.COMPLETED
        assert saved.current_step == 3

    def test_skipped_step_advances_checkpoint_before_failure(self, engine_options, memory_store):
        """Test that a step skipped just before a failure is recorded as passed."""
        def failing_on_publish(task, context):
            if task == "publish":
                raise RuntimeError("registry offline")
            return "ok"

        markup = """
<step n="1" goal="Always"><output>one</output></step>
<step n="2" goal="Optional" optional="true"><output>two</output></step>
<step n="3" goal="Publish"><action>publish</action></step>
"""
        engine = _engine(markup, engine_options, fast_mode=True,
                         agent=CallableAgent(failing_on_publish))

        with pytest.raises(StepExecutionError):
            engine.run()

        saved = memory_store.load("demo-1")
        assert saved.status == WorkflowStatus.ERROR
        assert saved.current_step == 2

    def test_fast_mode_skips_optional_steps_and_prompts(self, engine_options, recording_agent,
                                                        recorded_calls):
        """Test that fast mode skips optional steps and never sends prompts."""
        engine = _engine(self.MARKUP, engine_options, variables={"mode": "full"},
                         fast_mode=True, agent=recording_agent)

        state = engine.run()

        assert state.status == WorkflowStatus.COMPLETED
        assert state.outputs == ["one", "two", "four"]
        assert recorded_calls == []
        assert len(engine.events.get_events(event_type="prompt_skipped")) == 1

    def test_prompts_reach_the_agent_outside_fast_mode(self, engine_options, recording_agent,
                                                       recorded_calls):
        engine = _engine(self.MARKUP, engine_options, variables={"mode": "full"},
                         agent=recording_agent)

        engine.run()

        assert [c["task"] for c in recorded_calls] == ["Anything else?"]

    def test_action_conditions(self, engine_options):
        """Test that an action's own if attribute gates only that action."""
        markup = ('<step n="1" goal="g">'
                  '<output if="{{count}} > 1">many</output>'
                  '<output if="{{count}} == 1">one</output>'
                  '<output>always</output></step>')

        state = _engine(markup, engine_options, variables={"count": 3}).run()

        assert state.outputs == ["many", "always"]

    def test_checks_run_when_condition_holds(self, engine_options):
        markup = ('<step n="1" goal="g"><output>start</output>'
                  '<check if="ready is true"><output>ready</output></check>'
                  '<check if="ready is false"><output>waiting</output></check></step>')

        state = _engine(markup, engine_options, variables={"ready": True}).run()

        assert state.outputs == ["start", "ready"]


class TestJumps:
    """Test goto handling."""

    def test_forward_jump(self, engine_options):
        markup = """
<step n="1" goal="Start"><goto step="3"/><output>not reached</output></step>
<step n="2" goal="Skipped"><output>two</output></step>
<step n="3" goal="End"><output>end</output></step>
"""
        state = _engine(markup, engine_options).run()

        assert state.outputs == ["end"]
        assert state.current_step == 3

    def test_backward_jump_until_condition_changes(self, engine_options):
        """Test that a conditional backward jump re-runs earlier steps."""
        probes = []

        def path_exists(path):
            probes.append(path)
            return len(probes) > 1

        markup = """
<step n="1" goal="Work"><output>one</output></step>
<step n="2" goal="Loop"><goto step="1" if="file marker.txt not exists"/><output>two</output></step>
"""
        state = _engine(markup, engine_options, path_exists=path_exists).run()

        assert state.outputs == ["one", "one", "two"]
        assert len(probes) == 2

    def test_jump_from_check(self, engine_options):
        markup = """
<step n="1" goal="Decide"><check if="skip is true"><goto step="3"/></check></step>
<step n="2" goal="Middle"><output>two</output></step>
<step n="3" goal="End"><output>three</output></step>
"""
        state = _engine(markup, engine_options, variables={"skip": True}).run()

        assert state.outputs == ["three"]

    def test_invalid_jump_target(self, engine_options, memory_store):
        """Test that a jump to a missing step fails with the valid step list."""
        markup = '<step n="1" goal="a"><output>one</output></step><step n="2" goal="b"><goto step="9"/></step>'
        engine = _engine(markup, engine_options)

        with pytest.raises(StepExecutionError) as exc_info:
            engine.run()

        cause = exc_info.value.cause
        assert isinstance(cause, InvalidJumpTarget)
        assert cause.target == 9
        assert cause.valid_steps == [1, 2]
        saved = memory_store.load("demo-1")
        assert saved.status == WorkflowStatus.ERROR
        assert saved.current_step == 1
        assert "Invalid jump target" in saved.error


class TestTasksAndSubworkflows:
    """Test invoke-task and invoke-workflow."""

    def test_invoke_task_reads_file(self, engine_options, recording_agent, recorded_calls,
                                    temp_workspace):
        (temp_workspace / "tasks").mkdir()
        (temp_workspace / "tasks" / "review.md").write_text("Review the story", encoding="utf-8")

        _engine('<step n="1" goal="t"><invoke-task path="tasks/review.md"/></step>', engine_options,
                agent=recording_agent).run()

        assert recorded_calls[0]["task"] == "Review the story"

    def test_missing_task_file(self, engine_options):
        engine = _engine('<step n="1" goal="t"><invoke-task path="tasks/none.md"/></step>', engine_options)

        with pytest.raises(StepExecutionError) as exc_info:
            engine.run()

        assert isinstance(exc_info.value.cause, ActionFailure)

    def test_subworkflow_runs_with_isolated_variables(self, engine_options, memory_store,
                                                      temp_workspace):
        """Test that the child gets a snapshot plus inputs and its own checkpoint."""
        (temp_workspace / "workflows").mkdir()
        (temp_workspace / "workflows" / "child.md").write_text(
            '<step n="1" goal="Child"><output>child {{story_id}} for {{project_name}}</output></step>',
            encoding="utf-8",
        )
        markup = ('<step n="1" goal="Parent">'
                  '<invoke-workflow path="workflows/child.md">'
                  '<input name="story_id">{{base}}-1</input>'
                  '</invoke-workflow>'
                  '<output>parent done</output></step>')
        engine = _engine(markup, engine_options, variables={"base": "S", "project_name": "Acme"})

        state = engine.run()

        assert state.outputs == ["parent done"]
        child = memory_store.load("demo-1--child")
        assert child.status == WorkflowStatus.COMPLETED
        assert child.outputs == ["child S-1 for Acme"]
        assert "story_id" not in engine.env
        assert state.history[0].agent_id == "demo-1--child"
        assert state.history[0].output == "completed at step 1"

    def test_subworkflow_failure_propagates(self, engine_options, memory_store, temp_workspace):
        (temp_workspace / "child.md").write_text('<step n="1" goal="Bad"><goto step="5"/></step>',
                                                 encoding="utf-8")
        engine = _engine('<step n="1" goal="Parent"><invoke-workflow path="child.md"/></step>',
                         engine_options)

        with pytest.raises(StepExecutionError) as exc_info:
            engine.run()

        assert isinstance(exc_info.value.cause, ActionFailure)
        assert "Nested workflow failed" in str(exc_info.value.cause)
        assert memory_store.load("demo-1--child").status == WorkflowStatus.ERROR
        assert engine.state.history[0].status == ActivityStatus.FAILED

    def test_subworkflow_load_failure(self, engine_options):
        engine = _engine('<step n="1" goal="Parent"><invoke-workflow path="missing.md"/></step>',
                         engine_options)

        with pytest.raises(StepExecutionError) as exc_info:
            engine.run()

        assert "Nested workflow failed to load" in str(exc_info.value.cause)


class TestAgentRetries:
    """Test retry behaviour around agent calls."""

    def test_transient_failure_is_retried(self, engine_options, sleeps):
        calls = []

        def flaky(task, context):
            calls.append(task)
            if len(calls) == 1:
                raise ConnectionError("reset")
            return "ok"

        engine = _engine('<step n="1" goal="g"><action>do it</action></step>', engine_options,
                         agent=CallableAgent(flaky))

        state = engine.run()

        assert state.status == WorkflowStatus.COMPLETED
        assert sleeps == [2.0]
        retry_events = engine.events.get_events(event_type="retry")
        assert retry_events[0].metadata["attempts"] == [1, 2]

    def test_exhausted_retries_fail_the_step(self, engine_options, sleeps):
        def broken(task, context):
            raise ConnectionError("down")

        engine = _engine('<step n="1" goal="g"><action>do it</action></step>', engine_options,
                         agent=CallableAgent(broken, agent_id="broken"))

        with pytest.raises(StepExecutionError) as exc_info:
            engine.run()

        failure = exc_info.value.cause
        assert isinstance(failure, ActionFailure)
        assert failure.attempts == 3
        assert isinstance(failure.__cause__, ConnectionError)
        assert sleeps == [2.0, 4.0]
        assert engine.state.history[0].status == ActivityStatus.FAILED


class TestGates:
    """Test gated checkpoints attached to steps."""

    MARKUP = '<step n="1" goal="Draft"><output>draft</output></step><step n="2" goal="Ship"><output>shipped</output></step>'

    def test_passing_gate(self, engine_options):
        engine = _engine(self.MARKUP, engine_options,
                         gates={1: GateSpec("quality", lambda: 90, threshold=80)})

        state = engine.run()

        assert state.status == WorkflowStatus.COMPLETED
        assert state.gate_results["quality"]["status"] == "passed"

    def test_failing_gate_blocks(self, engine_options, escalation_queue, memory_store):
        """Test that a failing gate stops the run, escalates and writes a report."""
        engine = _engine(self.MARKUP, engine_options,
                         gates={1: GateSpec("quality", lambda: (40, ["missing tests"]), threshold=80)})

        with pytest.raises(StepExecutionError) as exc_info:
            engine.run()

        failure = exc_info.value.cause
        assert isinstance(failure, GateFailure)
        assert failure.result.score == 40
        assert engine.state.outputs == ["draft"]

        saved = memory_store.load("demo-1")
        assert saved.status == WorkflowStatus.ERROR
        assert saved.current_step == 0
        assert saved.gate_results["quality"]["status"] == "failed"

        escalations = escalation_queue.list()
        assert len(escalations) == 1
        assert escalations[0].id == failure.result.escalation_id
        assert escalations[0].step == 1

    def test_gate_on_unknown_step(self, engine_options):
        with pytest.raises(ValidationError):
            _engine(self.MARKUP, engine_options, gates={7: GateSpec("quality", lambda: 90, 80)})


class TestCancellation:
    """Test cooperative cancellation."""

    MARKUP = '<step n="1" goal="a"><action>first</action></step><step n="2" goal="b"><action>second</action></step>'

    def test_cancelled_before_start(self, engine_options, memory_store):
        cancel_event = threading.Event()
        cancel_event.set()
        engine = _engine(self.MARKUP, engine_options, cancel_event=cancel_event)

        with pytest.raises(WorkflowCancelled):
            engine.run()

        saved = memory_store.load("demo-1")
        assert saved.status == WorkflowStatus.CANCELLED
        assert saved.current_step == 0

    def test_cancel_honoured_at_next_step_boundary(self, engine_options, memory_store):
        """Test that a cancel requested mid-step lets the step finish first."""
        holder = []

        def agent_fn(task, context):
            holder[0].cancel()
            return "ok"

        engine = _engine(self.MARKUP, engine_options, agent=CallableAgent(agent_fn))
        holder.append(engine)

        with pytest.raises(WorkflowCancelled):
            engine.run()

        saved = memory_store.load("demo-1")
        assert saved.status == WorkflowStatus.CANCELLED
        assert saved.current_step == 1
        assert len(saved.history) == 1
        assert engine.cancelled
