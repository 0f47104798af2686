# pipeline/model.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import PipelineParseError
from .ordered import DuplicateKeyError, OrderedMap

WAIT_SCALARS = ("wait", "waiter")
INPUT_SCALARS = ("block", "input", "manual")


class Step(ABC):
    """
    Base for every step kind.

    `fields` is the mutable bag of keys this engine doesn't model directly.
    The if_changed filter reads and removes `if_changed` from it, and may
    add `skip`.
    """

    @property
    def fields(self) -> Optional[Dict[str, Any]]:
        return None

    @abstractmethod
    def to_obj(self) -> Any:
        """Plain YAML/JSON form of the step."""


@dataclass
class CommandStep(Step):
    """A step that runs a command (or only plugins) on an agent."""
    command: str = ""
    env: Dict[str, str] = field(default_factory=dict)
    remaining_fields: Dict[str, Any] = field(default_factory=dict)
    has_command: bool = True

    @property
    def fields(self) -> Dict[str, Any]:
        return self.remaining_fields

    def to_obj(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.has_command:
            out["command"] = self.command
        if self.env:
            out["env"] = dict(self.env)
        out.update(self.remaining_fields)
        return out


@dataclass
class GroupStep(Step):
    """A group of steps; `if_changed` applies to the group as a whole."""
    group: Optional[str] = None
    steps: List[Step] = field(default_factory=list)
    remaining_fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def fields(self) -> Dict[str, Any]:
        return self.remaining_fields

    def to_obj(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"group": self.group, "steps": [s.to_obj() for s in self.steps]}
        out.update(self.remaining_fields)
        return out


@dataclass
class TriggerStep(Step):
    """Triggers another pipeline. Kept as a generic mapping."""
    contents: Dict[str, Any] = field(default_factory=dict)

    @property
    def fields(self) -> Dict[str, Any]:
        return self.contents

    def to_obj(self) -> Dict[str, Any]:
        return dict(self.contents)


@dataclass
class WaitStep(Step):
    scalar: str = ""
    contents: Dict[str, Any] = field(default_factory=dict)

    def to_obj(self) -> Any:
        if self.scalar:
            return self.scalar
        return dict(self.contents) if self.contents else "wait"


@dataclass
class InputStep(Step):
    """Block and input steps."""
    scalar: str = ""
    contents: Dict[str, Any] = field(default_factory=dict)

    def to_obj(self) -> Any:
        return self.scalar if self.scalar else dict(self.contents)


@dataclass
class UnknownStep(Step):
    """A step we couldn't classify; passed through untouched apart from `if_changed`."""
    contents: Any = None

    @property
    def fields(self) -> Optional[Dict[str, Any]]:
        return self.contents if isinstance(self.contents, dict) else None

    def to_obj(self) -> Any:
        return self.contents


@dataclass
class Pipeline:
    """A parsed pipeline document."""
    steps: List[Step] = field(default_factory=list)
    env: Optional[OrderedMap[str, str]] = None
    remaining_fields: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict form for JSON/YAML encoding; `steps` and `env` win over remaining fields."""
        out: Dict[str, Any] = {k: v for k, v in self.remaining_fields.items() if v is not None}
        out["steps"] = [s.to_obj() for s in self.steps]
        if self.env is not None and len(self.env) > 0:
            out["env"] = self.env.to_dict()
        return out


# ----------------------------------------------------------------------
# Decoding from generic YAML/JSON objects
# ----------------------------------------------------------------------

def env_value(v: Any) -> str:
    """Coerce a scalar env value to the string the backend expects."""
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (dict, list)):
        raise PipelineParseError(f"env values must be scalars, got {type(v).__name__}")
    return str(v)


def env_from_obj(o: Any) -> OrderedMap[str, str]:
    if o is None:
        return OrderedMap()
    if not isinstance(o, dict):
        raise PipelineParseError(f"env must be a mapping, got {type(o).__name__}")
    try:
        return OrderedMap((str(k), env_value(v)) for k, v in o.items())
    except DuplicateKeyError as e:
        raise PipelineParseError(f"env: {e}") from e


def steps_from_list(o: Any) -> List[Step]:
    if o is None:
        return []
    if not isinstance(o, list):
        raise PipelineParseError(f"unmarshaling steps: got {type(o).__name__}, want a list")
    return [step_from_obj(s) for s in o]


def step_from_obj(o: Any) -> Step:
    """Build the right kind of Step from a decoded YAML/JSON value."""
    if isinstance(o, str):
        if o in WAIT_SCALARS:
            return WaitStep(scalar=o)
        if o in INPUT_SCALARS:
            return InputStep(scalar=o)
        return UnknownStep(contents=o)

    if not isinstance(o, dict):
        raise PipelineParseError(f"unmarshaling step: unsupported type {type(o).__name__}")

    if "type" in o:
        kind = o["type"]
        if not isinstance(kind, str):
            raise PipelineParseError(
                f"unmarshaling step: step's `type` key was {type(kind).__name__} (value {kind!r}), want string"
            )
        kind = {"script": "command", "waiter": "wait", "manual": "block", "input": "block"}.get(kind, kind)
        if kind not in ("command", "wait", "block", "trigger", "group"):
            raise PipelineParseError(f"unmarshaling step: unknown step type {o['type']!r}")
    elif "command" in o or "commands" in o or "plugins" in o:
        kind = "command"
    elif "wait" in o or "waiter" in o:
        kind = "wait"
    elif "block" in o or "input" in o or "manual" in o:
        kind = "block"
    elif "trigger" in o:
        kind = "trigger"
    elif "group" in o:
        kind = "group"
    else:
        return UnknownStep(contents=o)

    try:
        if kind == "command":
            return _command_step(o)
        if kind == "group":
            return _group_step(o)
    except PipelineParseError:
        # Probably picked the wrong kind of step; keep it verbatim.
        return UnknownStep(contents=o)
    if kind == "trigger":
        return TriggerStep(contents=dict(o))
    if kind == "wait":
        return WaitStep(contents=dict(o))
    return InputStep(contents=dict(o))


def _command_step(o: Dict[str, Any]) -> CommandStep:
    step = CommandStep(has_command=False)
    for key, value in o.items():
        if key in ("command", "commands"):
            step.has_command = True
            if isinstance(value, str):
                step.command = value
            elif isinstance(value, list) and all(isinstance(c, str) for c in value):
                step.command = "\n".join(value)
            elif value is None:
                step.command = ""
            else:
                raise PipelineParseError(f"{key} must be a string or list of strings")
        elif key == "env":
            step.env = env_from_obj(value).to_dict()
        else:
            step.remaining_fields[key] = value
    return step


def _group_step(o: Dict[str, Any]) -> GroupStep:
    if "group" not in o or "steps" not in o:
        raise PipelineParseError("invalid group")
    name = o["group"]
    if name is not None and not isinstance(name, str):
        raise PipelineParseError("invalid group")
    return GroupStep(
        group=name,
        steps=steps_from_list(o["steps"]),
        remaining_fields={k: v for k, v in o.items() if k not in ("group", "steps")},
    )


def pipeline_from_obj(o: Any) -> Pipeline:
    """
    Build a Pipeline from a decoded document.

    A document is either a mapping with a top-level `steps` key, or (legacy)
    a bare sequence of steps.
    """
    if o is None:
        raise PipelineParseError("empty document")
    if isinstance(o, list):
        return Pipeline(steps=steps_from_list(o))
    if not isinstance(o, dict):
        raise PipelineParseError(f"unsupported document contents of type {type(o).__name__}")

    steps = steps_from_list(o.get("steps"))
    if not steps:
        raise PipelineParseError("pipeline has no steps")
    env = env_from_obj(o["env"]) if "env" in o else None
    remaining = {k: v for k, v in o.items() if k not in ("steps", "env")}
    return Pipeline(steps=steps, env=env, remaining_fields=remaining)
