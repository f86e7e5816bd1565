"""
Markup parser turning workflow instructions into steps, actions and checks.
Following Single Responsibility Principle - handles definition parsing only.

All functions are pure: they take text and return new model objects, and
the module-level patterns are only ever used through search/finditer with
explicit positions.
"""

import re
from typing import Dict, List, Optional, Tuple

from .exceptions import ParseError
from .models import (
    Action, Check, ElicitAction, EmitAction, InvokeSubworkflowAction,
    InvokeTaskAction, JumpAction, NoteAction, PromptAction,
    RenderTemplateAction, Step, WorkflowDefinition,
)


_STEP_BLOCK = re.compile(r'<step(?=[\s>])((?:[^>"]|"[^"]*")*)>(.*?)</step>', re.DOTALL)
_CHECK_BLOCK = re.compile(r'<check(?=[\s>])((?:[^>"]|"[^"]*")*)>(.*?)</check>', re.DOTALL)
_ATTRIBUTE = re.compile(r'([A-Za-z_][\w-]*)\s*=\s*"([^"]*)"')
_ACTION_TAG = re.compile(
    r'<(action|ask|output|template-output|elicit-required|goto|invoke-workflow|invoke-task)'
    r'(?=[\s/>])((?:[^>"]|"[^"]*")*?)(/?)>'
)
_INPUT_TAG = re.compile(r'<input(?=[\s/>])((?:[^>"]|"[^"]*")*?)(?:/>|>(.*?)</input>)', re.DOTALL)

# Tags that are routinely written without a closing tag
_VOID_TAGS = {"goto", "invoke-task"}


def parse_attributes(text: str) -> Dict[str, str]:
    """Parse key="value" pairs from the inside of an opening tag"""
    return {m.group(1): m.group(2) for m in _ATTRIBUTE.finditer(text or "")}


def _parse_int(value: Optional[str], attribute: str, tag: str, line: Optional[int] = None) -> int:
    if value is None or not value.strip():
        raise ParseError(f"<{tag}> requires a numeric '{attribute}' attribute", tag=tag, line=line)
    try:
        return int(value.strip())
    except ValueError:
        raise ParseError(
            f"Attribute '{attribute}' on <{tag}> must be an integer, got {value!r}",
            tag=tag, line=line,
        )


def _parse_bool(value: Optional[str], attribute: str, tag: str, line: Optional[int] = None) -> bool:
    if value is None:
        return False
    lowered = value.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    raise ParseError(
        f"Attribute '{attribute}' on <{tag}> must be 'true' or 'false', got {value!r}",
        tag=tag, line=line,
    )


def _line_of(text: str, offset: int) -> int:
    return text.count('\n', 0, offset) + 1


def parse_workflow(text: str, name: str = "workflow", description: str = "",
                   source: Optional[str] = None) -> WorkflowDefinition:
    """
    Parse workflow instruction markup into a WorkflowDefinition.

    Only step headers are validated here; step bodies are parsed lazily
    (see Step.parse_body) or eagerly through WorkflowDefinition.validate().

    Raises:
        ParseError: On missing steps, bad attributes or non-contiguous numbering
    """
    steps: List[Step] = []
    for match in _STEP_BLOCK.finditer(text or ""):
        line = _line_of(text, match.start())
        attrs = parse_attributes(match.group(1))
        number = _parse_int(attrs.get("n"), "n", "step", line)
        goal = attrs.get("goal")
        if goal is None:
            raise ParseError(f"<step n=\"{number}\"> requires a 'goal' attribute", tag="step", line=line)
        steps.append(Step(
            number=number,
            goal=goal,
            raw_content=match.group(2).strip(),
            optional=_parse_bool(attrs.get("optional"), "optional", "step", line),
            condition=attrs.get("if") or None,
        ))

    if not steps:
        raise ParseError("No <step> blocks found in workflow instructions", tag="step")

    return WorkflowDefinition(name=name, steps=tuple(steps), description=description, source=source)


def parse_step_body(content: str) -> Tuple[List[Action], List[Check]]:
    """
    Parse a step's raw content into (actions, checks).

    Actions come from the content with <check> blocks removed; each check's
    own actions come from its body. Both lists keep declaration order.
    """
    checks: List[Check] = []
    for match in _CHECK_BLOCK.finditer(content or ""):
        attrs = parse_attributes(match.group(1))
        condition = attrs.get("if")
        if not condition:
            raise ParseError("<check> requires an 'if' attribute", tag="check")
        body = match.group(2)
        if re.search(r'<check(?=[\s>])', body):
            raise ParseError("Nested <check> blocks are not supported", tag="check")
        checks.append(Check(condition=condition, actions=tuple(parse_actions(body))))

    remaining = _CHECK_BLOCK.sub('', content or "")
    return parse_actions(remaining), checks


def parse_actions(text: str) -> List[Action]:
    """Parse every action tag in text, in document order"""
    actions: List[Action] = []
    pos = 0
    while True:
        match = _ACTION_TAG.search(text, pos)
        if not match:
            break
        tag, attr_text, self_closing = match.groups()
        body = ""
        pos = match.end()
        if not self_closing:
            close = text.find(f"</{tag}>", pos)
            if close == -1:
                if tag not in _VOID_TAGS:
                    raise ParseError(f"Unclosed <{tag}> tag", tag=tag, line=_line_of(text, match.start()))
            else:
                body = text[pos:close]
                pos = close + len(f"</{tag}>")
        actions.append(build_action(tag, parse_attributes(attr_text), body))
    return actions


def build_action(tag: str, attrs: Dict[str, str], body: str = "") -> Action:
    """Build the typed Action for a tag, validating its required attributes"""
    if "optional" in attrs:
        raise ParseError(f"Attribute 'optional' is only allowed on <step>, found on <{tag}>", tag=tag)

    condition = attrs.get("if") or None
    content = (body or "").strip()

    if tag == "action":
        return NoteAction(content=content, condition=condition, attributes=attrs)
    if tag == "ask":
        return PromptAction(content=content, condition=condition, attributes=attrs)
    if tag == "output":
        return EmitAction(content=content, condition=condition, attributes=attrs)
    if tag == "elicit-required":
        return ElicitAction(content=content, condition=condition, attributes=attrs)
    if tag == "template-output":
        return RenderTemplateAction(content=content, condition=condition, attributes=attrs,
                                    file=attrs.get("file", ""))
    if tag == "goto":
        return JumpAction(content=content, condition=condition, attributes=attrs,
                          target_step=_parse_int(attrs.get("step"), "step", tag))
    if tag == "invoke-workflow":
        inputs = {}
        for match in _INPUT_TAG.finditer(content):
            input_attrs = parse_attributes(match.group(1))
            input_name = input_attrs.get("name")
            if not input_name:
                raise ParseError("<input> requires a 'name' attribute", tag="input")
            inputs[input_name] = input_attrs.get("value", (match.group(2) or "").strip())
        return InvokeSubworkflowAction(content=_INPUT_TAG.sub('', content).strip(), condition=condition,
                                       attributes=attrs, path=attrs.get("path", ""), inputs=inputs)
    if tag == "invoke-task":
        return InvokeTaskAction(content=content, condition=condition, attributes=attrs,
                                path=attrs.get("path", ""))
    raise ParseError(f"Unknown action tag <{tag}>", tag=tag)
