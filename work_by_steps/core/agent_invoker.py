"""
Agent invoker implementations used by the step sequencer.
Following Single Responsibility Principle - handles agent invocation only.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Union

from .exceptions import ValidationError
from .models import AgentResponse


class Agent(ABC):
    """
    Abstract base class for agent collaborators.

    The sequencer treats the agent as opaque: it hands over a task string
    plus a context mapping and records whatever comes back. Timeouts and
    transport errors are the agent's concern; any exception raised here is
    retried by the retry policy.
    """

    agent_id: str = "agent"
    name: str = "Agent"

    @abstractmethod
    def invoke(self, task: str, context: Optional[Dict[str, Any]] = None) -> AgentResponse:
        """
        Perform a task.

        Args:
            task: Substituted instruction text
            context: Variables snapshot and step metadata

        Returns:
            AgentResponse with content and confidence (0.0 - 1.0)
        """
        pass


class PlaceholderAgent(Agent):
    """
    Default placeholder agent.

    Echoes the task back with full confidence - useful for dry runs and
    for testing workflow structure.
    """

    def __init__(self, agent_id: str = "placeholder", name: str = "Placeholder Agent"):
        self.agent_id = agent_id
        self.name = name

    def invoke(self, task: str, context: Optional[Dict[str, Any]] = None) -> AgentResponse:
        return AgentResponse(content=f"[{self.agent_id}] {task}", confidence=1.0)


class CallableAgent(Agent):
    """Adapts a plain function ``fn(task, context)`` to the Agent interface"""

    def __init__(self, fn: Callable[[str, Dict[str, Any]], Union[AgentResponse, str, Dict[str, Any]]],
                 agent_id: str = "callable", name: Optional[str] = None):
        if not callable(fn):
            raise ValidationError("CallableAgent requires a callable")
        self.fn = fn
        self.agent_id = agent_id
        self.name = name or agent_id

    def invoke(self, task: str, context: Optional[Dict[str, Any]] = None) -> AgentResponse:
        result = self.fn(task, context or {})
        if isinstance(result, AgentResponse):
            return result
        if isinstance(result, str):
            return AgentResponse(content=result)
        if isinstance(result, dict) and "content" in result:
            return AgentResponse(content=str(result["content"]),
                                 confidence=float(result.get("confidence", 1.0)))
        raise ValidationError(
            f"Agent '{self.agent_id}' returned an unsupported response",
            value=result,
        )
