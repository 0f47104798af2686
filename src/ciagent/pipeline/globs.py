# pipeline/globs.py
# Path globs for if_changed.
#
#   *      any run of characters except "/"
#   **     any run of characters including "/" ("**/" also matches nothing)
#   ?      one character except "/"
#   [abc]  character class; [!abc] or [^abc] negates
#   {a,b}  alternatives, may nest
#   \x     literal x
#
# Unlike fnmatch, malformed patterns are errors rather than literals, so a
# typo in if_changed is reported instead of silently never matching.

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

from ..errors import GlobError


@dataclass(frozen=True)
class Glob:
    pattern: str
    regex: "re.Pattern[str]"

    def match(self, path: str) -> bool:
        return self.regex.fullmatch(path) is not None


def compile_glob(pattern: str) -> Glob:
    """Compile a glob pattern, raising GlobError if it's malformed."""
    parts: List[str] = []
    i = 0
    depth = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "\\":
            if i + 1 >= n:
                raise GlobError(f"{pattern!r}: trailing backslash")
            parts.append(re.escape(pattern[i + 1]))
            i += 2
        elif c == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                i += 2
                if i < n and pattern[i] == "/":
                    parts.append("(?:.*/)?")
                    i += 1
                else:
                    parts.append(".*")
            else:
                parts.append("[^/]*")
                i += 1
        elif c == "?":
            parts.append("[^/]")
            i += 1
        elif c == "[":
            end, cls = _char_class(pattern, i)
            parts.append(cls)
            i = end
        elif c == "{":
            depth += 1
            parts.append("(?:")
            i += 1
        elif c == "," and depth > 0:
            parts.append("|")
            i += 1
        elif c == "}" and depth > 0:
            depth -= 1
            parts.append(")")
            i += 1
        else:
            parts.append(re.escape(c))
            i += 1

    if depth > 0:
        raise GlobError(f"{pattern!r}: unterminated '{{'")
    try:
        regex = re.compile("".join(parts), re.DOTALL)
    except re.error as e:
        # e.g. a reversed range such as [z-a]
        raise GlobError(f"{pattern!r}: {e}") from e
    return Glob(pattern=pattern, regex=regex)


def _char_class(pattern: str, start: int):
    i = start + 1
    n = len(pattern)
    negate = False
    if i < n and pattern[i] in "!^":
        negate = True
        i += 1
    members: List[str] = []
    first = True
    while i < n:
        c = pattern[i]
        if c == "]" and not first:
            body = "".join(members)
            return i + 1, f"[{'^/' if negate else ''}{body}]"
        if c == "[":
            raise GlobError(f"{pattern!r}: '[' inside character class")
        if c == "\\":
            if i + 1 >= n:
                break
            members.append(re.escape(pattern[i + 1]))
            i += 2
        elif c == "-" and members and i + 1 < n and pattern[i + 1] != "]":
            members.append("-")
            i += 1
        else:
            members.append(re.escape(c))
            i += 1
        first = False
    raise GlobError(f"{pattern!r}: unterminated '['")


def match_any(globs: List[Glob], path: str) -> bool:
    return any(g.match(path) for g in globs)
