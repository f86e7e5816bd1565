"""
Variable environment for resolving placeholders in step content.
Following Single Responsibility Principle - handles variable resolution only.
"""

import copy
import re
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .exceptions import UndefinedVariableError


class _NotFound:
    """Sentinel for an unresolvable path"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_FOUND"

    def __bool__(self) -> bool:
        return False


NOT_FOUND = _NotFound()

PLACEHOLDER_PATTERN = re.compile(r'\{\{([a-zA-Z0-9_.-]+)(?:\|([^}]*))?\}\}')


class VariableEnvironment:
    """
    Mutable variable mapping owned by a single running workflow.

    Supports:
    - Dotted paths: {{user.name}} walks nested dicts
    - Defaults: {{user.name|anonymous}}
    - Built-ins: project-root, date

    A placeholder without a default that cannot be resolved raises
    UndefinedVariableError instead of substituting a blank.
    """

    def __init__(self, variables: Optional[Dict[str, Any]] = None):
        self._variables: Dict[str, Any] = dict(variables or {})

    @classmethod
    def with_builtins(cls, variables: Optional[Dict[str, Any]] = None,
                      project_root: Optional[Path] = None,
                      today: Optional[date] = None) -> 'VariableEnvironment':
        """Create an environment seeded with project-root and date"""
        env = cls(variables)
        if project_root is not None:
            env._variables.setdefault("project-root", str(project_root))
        env._variables.setdefault("date", (today or date.today()).isoformat())
        return env

    def resolve(self, path: str) -> Any:
        """
        Resolve a dotted path.

        Returns NOT_FOUND as soon as any segment is missing or an
        intermediate segment is None. A flat key containing dots takes
        precedence over nested traversal.
        """
        if path in self._variables:
            return self._variables[path]

        current: Any = self._variables
        for part in path.split('.'):
            if current is None:
                return NOT_FOUND
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return NOT_FOUND
        return current

    def resolve_with_default(self, path: str, default: Any) -> Any:
        value = self.resolve(path)
        return default if value is NOT_FOUND else value

    def is_defined(self, path: str) -> bool:
        return self.resolve(path) is not NOT_FOUND

    def substitute(self, text: Optional[str]) -> str:
        """Replace every {{path}} / {{path|default}} placeholder in text"""
        if not text:
            return text or ""

        def replacement(match):
            path = match.group(1)
            default = match.group(2)
            value = self.resolve(path)
            # A bound None substitutes like a missing value
            if value is NOT_FOUND or value is None:
                if default is not None:
                    return default
                raise UndefinedVariableError(path, available=self.names())
            return self._stringify(value)

        return PLACEHOLDER_PATTERN.sub(replacement, text)

    def set(self, path: str, value: Any) -> None:
        """Set a value, creating intermediate dicts for dotted paths"""
        parts = path.split('.')
        current = self._variables
        for part in parts[:-1]:
            nxt = current.get(part)
            if not isinstance(nxt, dict):
                nxt = {}
                current[part] = nxt
            current = nxt
        current[parts[-1]] = value

    def update(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            self._variables[key] = value

    def snapshot(self, overrides: Optional[Dict[str, Any]] = None) -> 'VariableEnvironment':
        """Independent copy of this environment with overrides applied on top"""
        data = copy.deepcopy(self._variables)
        data.update(copy.deepcopy(overrides or {}))
        return VariableEnvironment(data)

    def names(self) -> List[str]:
        return sorted(self._variables.keys())

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._variables)

    def __contains__(self, path: str) -> bool:
        return self.is_defined(path)

    def __iter__(self) -> Iterator[str]:
        return iter(self._variables)

    def __len__(self) -> int:
        return len(self._variables)

    def __repr__(self) -> str:
        return f"VariableEnvironment({self.names()})"

    @staticmethod
    def _stringify(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)
