"""
Condition evaluator for step, action and check conditions.
Following Single Responsibility Principle - handles condition evaluation only.
"""

import re
import warnings
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from .exceptions import ConditionEvaluationWarning, UndefinedVariableError
from .variable_resolver import NOT_FOUND, VariableEnvironment


_OR_SPLIT = re.compile(r'\s+OR\s+')
_AND_SPLIT = re.compile(r'\s+AND\s+')
_FILE_NOT_EXISTS = re.compile(r'^file\s+(.+?)\s+not\s+exists$')
_FILE_EXISTS = re.compile(r'^file\s+(.+?)\s+exists$')
_PREDICATE = re.compile(r'^([A-Za-z0-9_.-]+)\s+is\s+(defined|empty|true|false)$')
_PREDICATE_HINT = re.compile(r'\bis\s+(defined|empty|true|false)\b')
_COMPARISON = re.compile(r'^(.+?)\s*(==|!=|<=|>=|<|>)\s*(.+?)$')
_OPERATOR_HINT = re.compile(r'==|!=|<=|>=|<|>')
_NUMBER = re.compile(r'^-?(\d+(\.\d*)?|\.\d+)$')
_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_.-]*$')


class _MalformedCondition(Exception):
    pass


class ConditionEvaluator:
    """
    Evaluates `if=` expressions against a variable environment.

    Supports, in precedence order:
    - Logical operators: OR, AND, NOT (upper-case literal tokens)
    - Predicates: file <path> exists, file <path> not exists,
      <name> is defined / is empty / is true / is false
    - Comparisons: ==, !=, <, >, <=, >=
    - Literal "true"

    Never raises: malformed expressions emit ConditionEvaluationWarning and
    evaluate to False.
    """

    def __init__(self, variables: Union[VariableEnvironment, Dict[str, Any], None] = None,
                 project_root: Optional[Path] = None,
                 path_exists: Optional[Callable[[Path], bool]] = None):
        """
        Initialize condition evaluator.

        Args:
            variables: Environment (or plain dict) the expressions are evaluated against
            project_root: Base directory for relative `file ... exists` paths
            path_exists: Filesystem existence check, defaults to Path.exists
        """
        if isinstance(variables, VariableEnvironment):
            self.env = variables
        else:
            self.env = VariableEnvironment(variables or {})
        self.project_root = Path(project_root) if project_root else Path.cwd()
        self.path_exists = path_exists or (lambda p: p.exists())

    def evaluate(self, condition: Optional[str]) -> bool:
        """
        Evaluate a condition expression.

        Args:
            condition: Condition expression string; empty means "always"

        Returns:
            Boolean result of evaluation
        """
        if condition is None or not condition.strip():
            return True

        try:
            resolved = self.env.substitute(condition)
        except UndefinedVariableError as e:
            warnings.warn(f"Condition evaluation failed: {condition}, error: {e}",
                          ConditionEvaluationWarning)
            return False

        try:
            return self._evaluate(resolved.strip())
        except (_MalformedCondition, TypeError) as e:
            warnings.warn(f"Condition evaluation failed: {condition}, error: {e}",
                          ConditionEvaluationWarning)
            return False

    def _evaluate(self, expr: str) -> bool:
        if not expr:
            raise _MalformedCondition("empty operand")

        or_parts = _OR_SPLIT.split(expr)
        if len(or_parts) > 1:
            results = [self._evaluate(p.strip()) for p in or_parts]
            return any(results)

        and_parts = _AND_SPLIT.split(expr)
        if len(and_parts) > 1:
            results = [self._evaluate(p.strip()) for p in and_parts]
            return all(results)

        if expr == "NOT" or expr.startswith("NOT "):
            return not self._evaluate(expr[3:].strip())

        predicate = self._evaluate_predicate(expr)
        if predicate is not None:
            return predicate

        match = _COMPARISON.match(expr)
        if match:
            lhs, op, rhs = match.groups()
            return self._compare(self._coerce(lhs), op, self._coerce(rhs))
        if _OPERATOR_HINT.search(expr):
            raise _MalformedCondition(f"incomplete comparison '{expr}'")

        return expr.lower() == "true"

    def _evaluate_predicate(self, expr: str) -> Optional[bool]:
        """Return the predicate's value, or None when expr is not a predicate"""
        match = _FILE_NOT_EXISTS.match(expr)
        if match:
            return not self.path_exists(self._file_path(match.group(1)))
        match = _FILE_EXISTS.match(expr)
        if match:
            return self.path_exists(self._file_path(match.group(1)))

        match = _PREDICATE.match(expr)
        if match:
            name, predicate = match.groups()
            value = self.env.resolve(name)
            if predicate == "defined":
                return value is not NOT_FOUND
            if predicate == "empty":
                return value is NOT_FOUND or value is None or value == ""
            if predicate == "true":
                return value is True or (isinstance(value, str) and value.lower() == "true")
            return value is False or (isinstance(value, str) and value.lower() == "false")

        # Predicate keywords are never reinterpreted as a comparison
        if _PREDICATE_HINT.search(expr):
            raise _MalformedCondition(f"malformed predicate '{expr}'")
        return None

    def _file_path(self, raw: str) -> Path:
        path = Path(self._unquote(raw.strip()))
        return path if path.is_absolute() else self.project_root / path

    def _coerce(self, token: str) -> Any:
        token = token.strip()
        if self._is_quoted(token):
            return token[1:-1]
        literal = self._coerce_literal(token)
        if isinstance(literal, str) and _NAME.match(token):
            value = self.env.resolve(token)
            if value is not NOT_FOUND:
                return self._coerce_literal(value) if isinstance(value, str) else value
        return literal

    @staticmethod
    def _coerce_literal(token: str) -> Any:
        if _NUMBER.match(token):
            return float(token) if '.' in token else int(token)
        lowered = token.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        return token

    @staticmethod
    def _is_quoted(token: str) -> bool:
        return len(token) >= 2 and token[0] == token[-1] and token[0] in ('"', "'")

    @classmethod
    def _unquote(cls, token: str) -> str:
        return token[1:-1] if cls._is_quoted(token) else token

    @staticmethod
    def _compare(lhs: Any, op: str, rhs: Any) -> bool:
        if op == "==":
            return lhs == rhs
        if op == "!=":
            return lhs != rhs
        if op == "<":
            return lhs < rhs
        if op == ">":
            return lhs > rhs
        if op == "<=":
            return lhs <= rhs
        return lhs >= rhs
