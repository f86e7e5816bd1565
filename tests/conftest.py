"""
Shared pytest fixtures and configuration for all tests.
"""
import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Any, Dict, Generator, List

from work_by_steps.core.agent_invoker import CallableAgent
from work_by_steps.core.escalation_queue import FileEscalationQueue
from work_by_steps.core.retry_handler import RetryPolicy
from work_by_steps.core.state_storage import FileStateStore, MemoryStateStore


@pytest.fixture
def temp_workspace() -> Generator[Path, None, None]:
    """Create a temporary workspace directory for testing."""
    temp_dir = tempfile.mkdtemp(prefix="work_by_steps_test_")
    workspace = Path(temp_dir)

    workflow_dir = workspace / ".workflow"
    workflow_dir.mkdir(parents=True, exist_ok=True)

    yield workspace

    # Cleanup
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def sleeps() -> List[float]:
    """Delays requested by retry policies built with the no_sleep_policy fixture."""
    return []


@pytest.fixture
def no_sleep_policy(sleeps: List[float]) -> RetryPolicy:
    """Retry policy that records delays instead of sleeping."""
    return RetryPolicy(max_attempts=3, sleep=sleeps.append)


@pytest.fixture
def memory_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def file_store(temp_workspace: Path) -> FileStateStore:
    return FileStateStore(temp_workspace / ".workflow" / "state")


@pytest.fixture
def escalation_queue(temp_workspace: Path) -> FileEscalationQueue:
    return FileEscalationQueue(temp_workspace / ".workflow" / "escalations")


@pytest.fixture
def recorded_calls() -> List[Dict[str, Any]]:
    return []


@pytest.fixture
def recording_agent(recorded_calls: List[Dict[str, Any]]) -> CallableAgent:
    """Agent that records every task it receives and echoes it back."""
    def respond(task: str, context: Dict[str, Any]) -> str:
        recorded_calls.append({"task": task, "context": context})
        return f"done: {task}"

    return CallableAgent(respond, agent_id="recorder", name="Recorder")


@pytest.fixture
def engine_options(temp_workspace: Path, memory_store: MemoryStateStore,
                   escalation_queue: FileEscalationQueue,
                   no_sleep_policy: RetryPolicy) -> Dict[str, Any]:
    """Keyword options for building sequencers in tests."""
    return {
        "project_root": temp_workspace,
        "state_store": memory_store,
        "escalation_sink": escalation_queue,
        "report_dir": temp_workspace / ".workflow" / "reports",
        "retry_policy": no_sleep_policy,
    }


SAMPLE_PRD = """# Product Requirements

## Functional Requirements

- Customers can place orders online
- Administrators manage the product catalog

## Non-Functional Requirements

- Pages respond within two seconds
"""

SECURITY_PARAGRAPH = (
    "Authentication uses OAuth with JWT bearer tokens and authorization is enforced with RBAC. "
    "Session handling relies on short lived tokens. Secrets live in a secrets manager and every "
    "API key follows a credential rotation schedule. Input validation and parameterized queries "
    "prevent SQL injection, and output encoding with a content security policy prevents XSS. "
    "A strict CORS policy and rate limiting protect the API, and API authentication requires a "
    "bearer token. Data at rest uses AES encryption, data in transit uses TLS, and key management "
    "is handled by KMS. The OWASP threat model lists each threat with its mitigation, security "
    "testing includes a penetration test, and the incident response plan covers breach response."
)

TEST_STRATEGY_PARAGRAPH = (
    "We use pytest as the test framework and follow the test pyramid with a unit test suite, an "
    "integration test suite and a small E2E suite. The CI/CD pipeline runs in GitHub Actions on "
    "every push. A quality gate enforces an 80% coverage minimum. The ATDD approach writes an "
    "acceptance test for each acceptance criteria entry."
)

FILLER = ("Each component handles orders and the product catalog with clear ownership "
          "and small interfaces so pages respond quickly. ")

SECTION_WORDS = {
    "System Overview": 200,
    "Component Architecture": 300,
    "Data Models": 200,
    "API Specifications": 200,
    "Non-Functional Requirements": 400,
    "Test Strategy": 300,
    "Technical Decisions": 200,
}


def section_body(section: str) -> str:
    """Section text long enough to satisfy the architecture validator"""
    lead = ""
    if section == "Non-Functional Requirements":
        lead = SECURITY_PARAGRAPH + "\n\n"
    elif section == "Test Strategy":
        lead = TEST_STRATEGY_PARAGRAPH + "\n\n"
    repeats = SECTION_WORDS[section] // 14 + 2
    return lead + FILLER * repeats


@pytest.fixture
def sample_prd(temp_workspace: Path) -> Path:
    """PRD written to docs/prd.md inside the workspace."""
    prd = temp_workspace / "docs" / "prd.md"
    prd.parent.mkdir(parents=True, exist_ok=True)
    prd.write_text(SAMPLE_PRD, encoding="utf-8")
    return prd


@pytest.fixture
def rich_document() -> str:
    """Architecture document that passes both architecture gates."""
    parts = ["# Architecture Document", ""]
    for section in SECTION_WORDS:
        parts += [f"## {section}", "", section_body(section), ""]
    return "\n".join(parts)


@pytest.fixture
def rich_architect() -> CallableAgent:
    """Agent writing a complete body for whichever section it is asked for."""
    return CallableAgent(lambda task, context: section_body(context["section"]),
                         agent_id="architect", name="Architect")


@pytest.fixture
def prd_text() -> str:
    return SAMPLE_PRD
