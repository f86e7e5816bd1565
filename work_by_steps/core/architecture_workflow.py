"""
Nine-step architecture workflow with mandatory quality gates.
Following Single Responsibility Principle - handles the architecture sequence only.
"""

import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .agent_invoker import Agent, PlaceholderAgent
from .exceptions import WorkflowError
from .models import AgentResponse, Step
from .step_sequencer import BaseSequencer
from .template_writer import FileTemplateWriter, TemplateWriter, replace_section
from ..validators import ArchitectureValidator, SecurityGateValidator


INLINE_TEMPLATE = """# Architecture Document

Project: {{project_name}}
Date: {{date}}
PRD: {{prd_path}}
"""


class ArchitectureWorkflow(BaseSequencer):
    """
    Produces ``docs/architecture.md`` from a PRD.

    Steps 2-7 ask the architect (and, for the test strategy, the test
    architect) for one document section each; steps 8 and 9 are gated
    checkpoints that block on failure and raise an escalation.

    Example:
        workflow = ArchitectureWorkflow("docs/prd.md", project_root=root,
                                        architect_agent=my_agent)
        state = workflow.run()
    """

    NAME = "architecture"
    ARCHITECT_ATTEMPTS = 3
    TEST_ARCHITECT_ATTEMPTS = 2
    SECURITY_THRESHOLD = 95
    VALIDATION_THRESHOLD = 85
    LOW_CONFIDENCE = 0.75

    STEPS = (
        (1, "Load PRD and initialise architecture document"),
        (2, "System Overview"),
        (3, "Component Architecture"),
        (4, "Data Models and API Specifications"),
        (5, "Non-Functional Requirements"),
        (6, "Test Strategy"),
        (7, "Technical Decisions"),
        (8, "Security gate"),
        (9, "Architecture validation gate"),
    )

    def __init__(
        self,
        prd_path: str,
        workflow_id: Optional[str] = None,
        architect_agent: Optional[Agent] = None,
        test_architect_agent: Optional[Agent] = None,
        template_writer: Optional[TemplateWriter] = None,
        output_path: str = "docs/architecture.md",
        template_path: Optional[Path] = None,
        **options: Any,
    ):
        steps = [Step(number=n, goal=goal, raw_content=goal) for n, goal in self.STEPS]
        super().__init__(steps, workflow_id or f"{self.NAME}-{uuid.uuid4().hex[:8]}", **options)
        self.architect = architect_agent or PlaceholderAgent("architect", "Architect")
        self.test_architect = test_architect_agent or PlaceholderAgent("test-architect", "Test Architect")
        self.template_writer = template_writer or FileTemplateWriter(self.project_root)
        self.template_path = Path(template_path) if template_path else None
        self.env.set("prd_path", str(prd_path))
        self.env.set("architecture_output_path", output_path)
        if "project_name" not in self.env:
            self.env.set("project_name", self.project_root.name)

        self._handlers: Dict[int, Callable[[Step], None]] = {
            1: self._load_prd,
            2: lambda step: self._architect_section(step, "System Overview"),
            3: lambda step: self._architect_section(step, "Component Architecture"),
            4: self._data_models_and_apis,
            5: lambda step: self._architect_section(step, "Non-Functional Requirements"),
            6: self._test_strategy,
            7: lambda step: self._architect_section(step, "Technical Decisions"),
            8: self._security_gate,
            9: self._validation_gate,
        }

    @property
    def workflow_name(self) -> str:
        return self.NAME

    @property
    def output_path(self) -> str:
        return self.env.resolve("architecture_output_path")

    def _execute_step(self, step: Step) -> Optional[int]:
        self._handlers[step.number](step)
        return None

    # ------------------------------------------------------------------
    # Document helpers
    # ------------------------------------------------------------------

    def read_document(self) -> str:
        try:
            return self.template_writer.read(self.output_path)
        except FileNotFoundError:
            return ""

    def _write_document(self, content: str) -> Path:
        return self.retry_policy.call(lambda: self.template_writer.write(self.output_path, content),
                                      description=f"Writing {self.output_path}")

    def _prd_content(self) -> str:
        content = self.env.resolve("prd_content")
        if not isinstance(content, str):
            raise WorkflowError("PRD content not loaded; step 1 has not completed",
                                workflow_id=self.workflow_id)
        return content

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _load_prd(self, step: Step) -> None:
        prd = Path(self.env.resolve("prd_path"))
        if not prd.is_absolute():
            prd = self.project_root / prd
        if not prd.is_file():
            raise WorkflowError(f"PRD not found: {prd}", workflow_id=self.workflow_id,
                                step_number=step.number)
        self.env.set("prd_content", prd.read_text(encoding='utf-8'))

        template = INLINE_TEMPLATE
        if self.template_path is not None and self.template_path.is_file():
            template = self.template_path.read_text(encoding='utf-8')
        written = self._write_document(self.env.substitute(template))
        self.state.outputs.append(str(written))
        self.events.log(self.workflow_id, "document_initialized", step=step.number, path=str(written))

    def _architect_section(self, step: Step, section: str,
                           agent: Optional[Agent] = None, attempts: Optional[int] = None) -> None:
        agent = agent or self.architect
        policy = self.retry_policy.with_attempts(attempts or self.ARCHITECT_ATTEMPTS)
        task = (f"Write the '{section}' section of the architecture document for "
                f"{self.env.resolve('project_name')}.\n\nPRD:\n{self._prd_content()}")
        document = self.read_document()
        response = self._invoke_agent(agent, task, step, f"Generate {section}", policy=policy,
                                      section=section, document=document)
        self._write_document(replace_section(document, section, response.content))
        self._check_confidence(step, section, agent, response)

    def _data_models_and_apis(self, step: Step) -> None:
        self._architect_section(step, "Data Models")
        self._architect_section(step, "API Specifications")

    def _test_strategy(self, step: Step) -> None:
        self._architect_section(step, "Test Strategy", agent=self.test_architect,
                                attempts=self.TEST_ARCHITECT_ATTEMPTS)

    def _security_gate(self, step: Step) -> None:
        document = self.read_document()
        self._run_gate(step, "security", lambda: SecurityGateValidator().validate(document),
                       self.SECURITY_THRESHOLD)

    def _validation_gate(self, step: Step) -> None:
        document = self.read_document()
        prd = self._prd_content()
        self._run_gate(step, "architecture-validation",
                       lambda: ArchitectureValidator().validate(document, prd),
                       self.VALIDATION_THRESHOLD)

    def _check_confidence(self, step: Step, section: str, agent: Agent,
                          response: AgentResponse) -> None:
        """Low-confidence sections raise a non-blocking escalation for review"""
        if response.confidence >= self.LOW_CONFIDENCE:
            return
        escalation_id = self.escalation_sink.raise_escalation(
            question=f"{agent.name} produced '{section}' with low confidence. Please review it.",
            reasoning=(f"Confidence {response.confidence:.2f} is below "
                       f"{self.LOW_CONFIDENCE}; the workflow continues"),
            confidence=response.confidence,
            context={"section": section, "document": self.output_path},
            workflow_id=self.workflow_id,
            step=step.number,
        )
        self.events.log(self.workflow_id, "low_confidence", step=step.number, status="escalated",
                        section=section, confidence=response.confidence,
                        escalation_id=escalation_id)
