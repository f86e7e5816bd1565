"""
Integration tests for checkpoint and resume.
"""
import pytest

from work_by_steps.core.agent_invoker import CallableAgent
from work_by_steps.core.enums import WorkflowStatus
from work_by_steps.core.exceptions import (
    ResumeMismatch, StateCorruption, StepExecutionError, WorkflowError,
)
from work_by_steps.core.markup_parser import parse_workflow
from work_by_steps.core.step_sequencer import WorkflowEngine


MARKUP = """
<step n="1" goal="Collect"><action>collect</action><output>collected for {{owner}}</output></step>
<step n="2" goal="Draft"><action>draft</action></step>
<step n="3" goal="Publish"><output>published</output></step>
"""


@pytest.fixture
def options(engine_options, file_store):
    """Engine options persisting checkpoints to disk."""
    options = dict(engine_options)
    options["state_store"] = file_store
    return options


def _engine(options, agent, name="release", **kwargs):
    return WorkflowEngine(parse_workflow(MARKUP, name=name), workflow_id="release-1",
                          agent=agent, **dict(options, **kwargs))


class TestResume:
    """Test resuming from persisted checkpoints."""

    def test_resume_continues_after_last_completed_step(self, options, file_store):
        """Test that a failed run resumes at the failed step with its saved variables."""
        seen = []

        def failing_on_draft(task, context):
            seen.append(task)
            if task == "draft":
                raise RuntimeError("agent offline")
            return "ok"

        with pytest.raises(StepExecutionError):
            _engine(options, CallableAgent(failing_on_draft), variables={"owner": "Ada"}).run()

        checkpoint = file_store.load("release-1")
        assert checkpoint.status == WorkflowStatus.ERROR
        assert checkpoint.current_step == 1
        assert seen == ["collect", "draft", "draft", "draft"]

        resumed_tasks = []
        healthy = CallableAgent(lambda task, context: resumed_tasks.append(task) or "ok")
        state = _engine(options, healthy, variables={"owner": "Grace"}).resume()

        assert state.status == WorkflowStatus.COMPLETED
        assert state.current_step == 3
        assert resumed_tasks == ["draft"]
        assert state.outputs == ["collected for Ada", "published"]
        assert state.variables["owner"] == "Ada"
        assert file_store.load("release-1").status == WorkflowStatus.COMPLETED

    def test_resume_after_cancellation(self, options, file_store):
        holder = []

        def cancel_after_collect(task, context):
            if task == "collect":
                holder[0].cancel()
            return "ok"

        engine = _engine(options, CallableAgent(cancel_after_collect), variables={"owner": "Ada"})
        holder.append(engine)
        with pytest.raises(WorkflowError):
            engine.run()
        assert file_store.load("release-1").status == WorkflowStatus.CANCELLED

        state = _engine(options, CallableAgent(lambda task, context: "ok")).resume()

        assert state.status == WorkflowStatus.COMPLETED
        assert state.outputs == ["collected for Ada", "published"]

    def test_resume_completed_workflow(self, options):
        agent = CallableAgent(lambda task, context: "ok")
        _engine(options, agent, variables={"owner": "Ada"}).run()

        with pytest.raises(WorkflowError, match="already completed"):
            _engine(options, agent).resume()

    def test_resume_without_checkpoint(self, options):
        with pytest.raises(WorkflowError, match="No checkpoint found"):
            _engine(options, None).resume()

    def test_resume_different_workflow(self, options, file_store):
        """Test that a checkpoint cannot be resumed by another definition."""
        def failing(task, context):
            raise RuntimeError("offline")

        with pytest.raises(StepExecutionError):
            _engine(options, CallableAgent(failing), variables={"owner": "Ada"}).run()

        with pytest.raises(ResumeMismatch):
            _engine(options, None, name="other").resume()

        assert file_store.load("release-1").workflow_name == "release"

    def test_resume_same_name_from_another_file(self, options, file_store, temp_workspace):
        """Test that two instruction files sharing a name are told apart on resume."""
        first = temp_workspace / "a" / "instructions.md"
        second = temp_workspace / "b" / "instructions.md"
        first_markup = ('<step n="1" goal="Build"><output>A1</output></step>'
                        '<step n="2" goal="Ship"><action>ship</action></step>')
        second_markup = ('<step n="1" goal="Build"><output>B1</output></step>'
                         '<step n="2" goal="Deploy"><output>B2 deploy prod</output></step>')

        def offline(task, context):
            raise RuntimeError("offline")

        with pytest.raises(StepExecutionError):
            WorkflowEngine(parse_workflow(first_markup, name="instructions", source=str(first)),
                           workflow_id="release-1", agent=CallableAgent(offline), **options).run()

        other = WorkflowEngine(parse_workflow(second_markup, name="instructions", source=str(second)),
                               workflow_id="release-1", **options)
        with pytest.raises(ResumeMismatch):
            other.resume()

        checkpoint = file_store.load("release-1")
        assert checkpoint.workflow_source == str(first.resolve())
        assert checkpoint.outputs == ["A1"]
        assert checkpoint.status == WorkflowStatus.ERROR

    def test_resume_same_file_is_accepted(self, options, temp_workspace):
        path = temp_workspace / "workflows" / "release.md"
        calls = []

        def flaky_once(task, context):
            calls.append(task)
            if len(calls) <= 3:
                raise RuntimeError("offline")
            return "ok"

        definition = parse_workflow(MARKUP, name="release", source=str(path))
        agent = CallableAgent(flaky_once)
        with pytest.raises(StepExecutionError):
            WorkflowEngine(definition, workflow_id="release-1", agent=agent,
                           variables={"owner": "Ada"}, **options).run()

        state = WorkflowEngine(parse_workflow(MARKUP, name="release", source=str(path)),
                               workflow_id="release-1", agent=agent, **options).resume()

        assert state.status == WorkflowStatus.COMPLETED

    def test_skipped_steps_are_not_revisited(self, options, file_store):
        """Test that steps skipped before a failure stay skipped on resume."""
        markup = """
<step n="1" goal="Always"><output>one</output></step>
<step n="2" goal="Optional" optional="true"><output>two</output></step>
<step n="3" goal="Deploy" if="env == prod"><output>deployed</output></step>
<step n="4" goal="Publish"><action>publish</action><output>published</output></step>
"""
        def offline(task, context):
            raise RuntimeError("registry offline")

        with pytest.raises(StepExecutionError):
            WorkflowEngine(parse_workflow(markup, name="release"), workflow_id="release-1",
                           agent=CallableAgent(offline), fast_mode=True,
                           variables={"env": "staging"}, **options).run()

        assert file_store.load("release-1").current_step == 3

        engine = WorkflowEngine(parse_workflow(markup, name="release"), workflow_id="release-1",
                                agent=CallableAgent(lambda task, context: "ok"), **options)
        state = engine.resume()

        assert state.status == WorkflowStatus.COMPLETED
        assert state.outputs == ["one", "published"]
        assert [e.step for e in engine.events.get_events(event_type="step_started")] == [4]

    def test_corrupt_checkpoint(self, options, file_store):
        """Test that a damaged checkpoint is reported, not repaired."""
        path = file_store.path_for("release-1")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("workflow_id: release-1\ncurrent_step: -4\n", encoding="utf-8")

        with pytest.raises(StateCorruption):
            _engine(options, None).resume()

        assert path.read_text(encoding="utf-8") == "workflow_id: release-1\ncurrent_step: -4\n"
