# pipeline/parser.py
from __future__ import annotations

import json
import re
from typing import Any, Iterator, List, Optional, Tuple

import yaml

from ..errors import PipelineParseError

_DOC_START = re.compile(r"^---(?:[ \t].*)?$")
_DOC_END = re.compile(r"^\.\.\.(?:[ \t].*)?$")


class _Loader(yaml.SafeLoader):
    """SafeLoader that leaves timestamps as plain strings."""
    pass


_Loader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _is_blank(segment: str) -> bool:
    for line in segment.splitlines():
        if _DOC_START.match(line) or _DOC_END.match(line):
            # A marker may carry content of its own: "--- {steps: [wait]}"
            line = line[3:]
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            return False
    return True


def split_documents(text: str) -> List[str]:
    """
    Split a YAML stream into its documents.

    Each "---" marker at column 0 starts a new document (the marker line stays
    with the document it opens, along with any content after it). Segments
    holding only comments, bare markers or whitespace are dropped.
    """
    segments: List[List[str]] = [[]]
    for line in text.splitlines(keepends=True):
        bare = line.rstrip("\r\n")
        if _DOC_START.match(bare):
            segments.append([line])
        elif _DOC_END.match(bare):
            segments.append([])
        else:
            segments[-1].append(line)
    docs = ["".join(seg) for seg in segments]
    return [d for d in docs if not _is_blank(d)]


def decode_document(doc: str) -> Any:
    """Decode one document as JSON (if it looks like JSON) or YAML."""
    stripped = doc.lstrip()
    if stripped[:1] in ("{", "["):
        try:
            return json.loads(stripped)
        except json.JSONDecodeError:
            pass  # YAML flow syntax is a superset; let the YAML parser report it.
    try:
        return yaml.load(doc, Loader=_Loader)
    except yaml.YAMLError as e:
        raise PipelineParseError(str(e)) from e


def iter_documents(text: str) -> Iterator[Tuple[Optional[Any], Optional[Exception]]]:
    """
    Lazily decode each document in `text`.

    Yields (document, None) or (None, error). A bad document doesn't stop the
    stream; the consumer decides whether to keep pulling.
    """
    docs = split_documents(text)
    if not docs:
        yield None, PipelineParseError("empty document")
        return
    for doc in docs:
        try:
            yield decode_document(doc), None
        except PipelineParseError as e:
            yield None, e
