# pipeline/interpolate.py
# Shell-style variable expansion for pipeline documents.
#
# Supported forms:
#   $NAME  ${NAME}
#   ${NAME:-default}  ${NAME-default}
#   ${NAME:?message}  ${NAME?message}
#   ${NAME:offset}  ${NAME:offset:length}
#   $$ and \$ both produce a literal "$"

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from ..errors import InterpolationError
from .model import env_value


def _is_name_start(c: str) -> bool:
    return c.isascii() and (c.isalpha() or c == "_")


def _is_name_char(c: str) -> bool:
    return c.isascii() and (c.isalnum() or c == "_")


class _Expander:
    def __init__(self, text: str, env: Mapping[str, str]):
        self.text = text
        self.env = env
        self.pos = 0

    def peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.text[i] if i < len(self.text) else ""

    def expand(self, stop_at_brace: bool = False) -> str:
        """
        Expand from the current position.

        With stop_at_brace, stop at (and consume) the first unmatched "}",
        which is how default values and messages inside ${...} are read.
        """
        out = []
        while self.pos < len(self.text):
            c = self.text[self.pos]
            if stop_at_brace and c == "}":
                self.pos += 1
                return "".join(out)
            if c == "\\" and self.peek(1) == "$":
                out.append("$")
                self.pos += 2
            elif c == "$":
                out.append(self._dollar())
            else:
                out.append(c)
                self.pos += 1
        if stop_at_brace:
            raise InterpolationError(f"unterminated expression in {self.text!r}")
        return "".join(out)

    def _name(self) -> str:
        start = self.pos
        if not _is_name_start(self.peek()):
            return ""
        while self.pos < len(self.text) and _is_name_char(self.text[self.pos]):
            self.pos += 1
        return self.text[start:self.pos]

    def _dollar(self) -> str:
        nxt = self.peek(1)
        if nxt == "$":
            self.pos += 2
            return "$"
        if nxt == "{":
            self.pos += 2
            return self._braced()
        if _is_name_start(nxt):
            self.pos += 1
            return self.env.get(self._name(), "")
        # A lone "$" is literal.
        self.pos += 1
        return "$"

    def _braced(self) -> str:
        name = self._name()
        if not name:
            raise InterpolationError(f"invalid variable name in {self.text!r} at offset {self.pos}")
        is_set = name in self.env
        value = self.env.get(name, "")

        c = self.peek()
        if c == "}":
            self.pos += 1
            return value
        if c == "":
            raise InterpolationError(f"unterminated expression in {self.text!r}")

        if c == ":" and self.peek(1) == "-":
            self.pos += 2
            default = self.expand(stop_at_brace=True)
            return value if value else default
        if c == "-":
            self.pos += 1
            default = self.expand(stop_at_brace=True)
            return value if is_set else default
        if c == ":" and self.peek(1) == "?":
            self.pos += 2
            message = self.expand(stop_at_brace=True)
            if not value:
                raise InterpolationError(f"${name}: {message or 'not set'}")
            return value
        if c == "?":
            self.pos += 1
            message = self.expand(stop_at_brace=True)
            if not is_set:
                raise InterpolationError(f"${name}: {message or 'not set'}")
            return value
        if c == ":":
            self.pos += 1
            return self._substring(name, value)

        raise InterpolationError(f"invalid option {c!r} for variable {name!r} in {self.text!r}")

    def _number(self, allow_negative: bool) -> int:
        start = self.pos
        if allow_negative and self.peek() == "-":
            self.pos += 1
        while self.peek().isdigit():
            self.pos += 1
        raw = self.text[start:self.pos]
        if raw in ("", "-"):
            raise InterpolationError(f"expected a number at offset {start} in {self.text!r}")
        return int(raw)

    def _substring(self, name: str, value: str) -> str:
        offset = self._number(allow_negative=False)
        length: Optional[int] = None
        if self.peek() == ":":
            self.pos += 1
            length = self._number(allow_negative=True)
        if self.peek() != "}":
            raise InterpolationError(f"invalid substring expression for {name!r} in {self.text!r}")
        self.pos += 1

        tail = value[offset:]
        if length is None:
            return tail
        if length < 0:
            end = len(tail) + length
            return tail[:end] if end > 0 else ""
        return tail[:length]


def interpolate(text: str, env: Mapping[str, str]) -> str:
    """Expand every variable expression in `text` against `env`."""
    if "$" not in text:
        return text
    return _Expander(text, env).expand()


def is_pure_substitution(value: str) -> bool:
    """
    Report whether value is a bare runtime variable reference, such as
    "$SECRET" or "${SECRET}", with no default or surrounding text.
    """
    if not value.startswith("$"):
        return False
    try:
        return interpolate(value, {}) == ""
    except InterpolationError:
        return False


# ----------------------------------------------------------------------
# Whole-document interpolation
# ----------------------------------------------------------------------

def interpolate_any(o: Any, env: Mapping[str, str]) -> Any:
    """Return a copy of `o` with every string (including mapping keys) expanded."""
    if isinstance(o, str):
        return interpolate(o, env)
    if isinstance(o, list):
        return [interpolate_any(v, env) for v in o]
    if isinstance(o, dict):
        out: Dict[Any, Any] = {}
        for k, v in o.items():
            key = interpolate(k, env) if isinstance(k, str) else k
            out[key] = interpolate_any(v, env)
        return out
    return o


def interpolate_document(
    doc: Any,
    runtime_env: Mapping[str, str],
    prefer_runtime_env: bool = False,
) -> Any:
    """
    Interpolate a decoded pipeline document.

    The document's own `env` block is expanded first, entry by entry. Each
    resolved entry is then visible to later entries and to the rest of the
    document. By default a pipeline entry shadows a runtime variable of the
    same name; with prefer_runtime_env the runtime value is kept instead.
    """
    merged: Dict[str, str] = dict(runtime_env)

    if not isinstance(doc, dict):
        return interpolate_any(doc, merged)

    out: Dict[Any, Any] = {}
    pipeline_env = doc.get("env")
    if isinstance(pipeline_env, dict):
        resolved: Dict[Any, Any] = {}
        for k, v in pipeline_env.items():
            key = interpolate(k, merged) if isinstance(k, str) else k
            value = interpolate(v, merged) if isinstance(v, str) else v
            resolved[key] = value
            if prefer_runtime_env and key in runtime_env:
                continue
            merged[str(key)] = "" if isinstance(value, (dict, list)) else env_value(value)
        pipeline_env = resolved

    for k, v in doc.items():
        if k == "env" and isinstance(pipeline_env, dict):
            out["env"] = pipeline_env
            continue
        key = interpolate(k, merged) if isinstance(k, str) else k
        out[key] = interpolate_any(v, merged)
    return out
