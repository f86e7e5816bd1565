"""
Configuration loading for workflow definitions and engine settings.
Following Single Responsibility Principle - handles configuration loading only.
"""

import re
import warnings
from dataclasses import dataclass, field, fields, replace
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .exceptions import ValidationError
from .markup_parser import parse_workflow
from .models import WorkflowDefinition
from .retry_handler import RetryPolicy
from .variable_resolver import NOT_FOUND, VariableEnvironment


_CONFIG_SOURCE_REF = re.compile(r'^\{config_source\}:([A-Za-z0-9_.-]+)$')


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ValidationError(f"Configuration file not found: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ValidationError(f"Expected a mapping at the top of {path}", value=type(data).__name__)
    return data


@dataclass
class WorkflowConfig:
    """
    A workflow.yaml file.

    Example:
        name: create-architecture
        description: Design the system architecture
        instructions: "{installed_path}/instructions.md"
        config_source: "{project-root}/bmad/config.yaml"
        variables:
          user_name: "{config_source}:user_name"
          output_folder: "{project-root}/docs"
          date: date:system-generated
    """
    name: str
    path: Path
    project_root: Path
    instructions: Path
    description: str = ""
    config_source: Optional[Path] = None
    variables: Dict[str, Any] = field(default_factory=dict)

    @property
    def installed_path(self) -> Path:
        return self.path.parent

    @classmethod
    def load(cls, path: Path, project_root: Optional[Path] = None) -> 'WorkflowConfig':
        path = Path(path)
        project_root = Path(project_root) if project_root else Path.cwd()
        data = _read_yaml(path)

        name = data.get("name")
        if not name or not isinstance(name, str):
            raise ValidationError("workflow.yaml requires a 'name'", field="name")

        installed_path = path.parent

        def expand(value: str) -> str:
            return (value.replace("{project-root}", str(project_root))
                         .replace("{installed_path}", str(installed_path)))

        instructions_raw = data.get("instructions") or "instructions.md"
        instructions = Path(expand(str(instructions_raw)))
        if not instructions.is_absolute():
            instructions = installed_path / instructions

        config_source = None
        source_data: Dict[str, Any] = {}
        if data.get("config_source"):
            config_source = Path(expand(str(data["config_source"])))
            if not config_source.is_absolute():
                config_source = project_root / config_source
            source_data = _read_yaml(config_source)

        raw_variables = data.get("variables") or {}
        if not isinstance(raw_variables, dict):
            raise ValidationError("'variables' must be a mapping", field="variables")

        variables: Dict[str, Any] = {}
        source_env = VariableEnvironment(source_data)
        for key, value in raw_variables.items():
            variables[key] = cls._resolve_value(key, value, expand, source_env, config_source)

        return cls(
            name=name,
            path=path,
            project_root=project_root,
            instructions=instructions,
            description=data.get("description") or "",
            config_source=config_source,
            variables=variables,
        )

    @staticmethod
    def _resolve_value(key: str, value: Any, expand, source_env: VariableEnvironment,
                       config_source: Optional[Path]) -> Any:
        if not isinstance(value, str):
            return value
        if value == "date:system-generated":
            return date.today().isoformat()
        match = _CONFIG_SOURCE_REF.match(value)
        if match:
            if config_source is None:
                raise ValidationError(
                    f"Variable '{key}' references config_source but none is configured",
                    field=key, value=value,
                )
            resolved = source_env.resolve(match.group(1))
            if resolved is NOT_FOUND:
                raise ValidationError(
                    f"Key '{match.group(1)}' not found in {config_source}",
                    field=key, value=value,
                )
            return resolved
        return expand(value)

    def load_definition(self) -> WorkflowDefinition:
        """Read the instructions file and parse it into a definition"""
        if not self.instructions.exists():
            raise ValidationError(f"Instructions file not found: {self.instructions}",
                                  field="instructions")
        text = self.instructions.read_text(encoding='utf-8')
        definition = parse_workflow(text, name=self.name, description=self.description,
                                    source=str(self.instructions))
        return replace(definition, variables=dict(self.variables))


class DefinitionLoader:
    """
    Loads sub-workflow definitions referenced by <invoke-workflow path="...">.

    A .yaml/.yml path is read as a workflow.yaml; anything else is parsed as
    instruction markup named after the file stem.
    """

    def __init__(self, project_root: Path):
        self.project_root = Path(project_root)

    def __call__(self, path: str) -> WorkflowDefinition:
        target = Path(path)
        if not target.is_absolute():
            target = self.project_root / target
        if target.suffix in (".yaml", ".yml"):
            return WorkflowConfig.load(target, self.project_root).load_definition()
        if not target.exists():
            raise ValidationError(f"Workflow file not found: {target}", field="path", value=path)
        return parse_workflow(target.read_text(encoding='utf-8'), name=target.stem, source=str(target))


@dataclass
class EngineSettings:
    """Engine settings read from the `engine:` section of .workflow/config.yaml"""
    fast_mode: bool = False
    state_dir: str = ".workflow/state"
    escalation_dir: str = ".workflow/escalations"
    report_dir: str = ".workflow/reports"
    events_dir: str = ".workflow/events"
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: Optional[float] = 32.0
    jitter: float = 0.0
    status_markdown: bool = True

    @classmethod
    def load(cls, workspace: Path) -> 'EngineSettings':
        config_file = Path(workspace) / ".workflow" / "config.yaml"
        if not config_file.exists():
            return cls()
        section = _read_yaml(config_file).get("engine") or {}
        if not isinstance(section, dict):
            raise ValidationError("'engine' section must be a mapping", field="engine")
        return cls.from_dict(section)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineSettings':
        known = {f.name: f for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                warnings.warn(f"Unknown engine setting '{key}' ignored")
                continue
            values[key] = cls._check_type(key, value)
        return cls(**values)

    @staticmethod
    def _check_type(key: str, value: Any) -> Any:
        if key in ("fast_mode", "status_markdown"):
            if not isinstance(value, bool):
                raise ValidationError(f"Setting '{key}' must be a boolean", field=key, value=value)
        elif key == "max_attempts":
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValidationError(f"Setting '{key}' must be a positive integer", field=key, value=value)
        elif key in ("base_delay", "jitter", "max_delay"):
            if value is None and key == "max_delay":
                return None
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ValidationError(f"Setting '{key}' must be a non-negative number", field=key, value=value)
            if key == "jitter" and value > 1:
                raise ValidationError("Setting 'jitter' must be between 0 and 1", field=key, value=value)
            return float(value)
        elif not isinstance(value, str):
            raise ValidationError(f"Setting '{key}' must be a path string", field=key, value=value)
        return value

    def path(self, workspace: Path, setting: str) -> Path:
        """Resolve a directory setting against the workspace"""
        target = Path(getattr(self, setting))
        return target if target.is_absolute() else Path(workspace) / target

    def retry_policy(self, max_attempts: Optional[int] = None) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=max_attempts or self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )
