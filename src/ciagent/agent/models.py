from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict

from pydantic import BaseModel, Field

from ciagent.pipeline.model import Pipeline


# -------------------- Schemas --------------------

class PipelineChange(BaseModel):
    """Body of a pipeline upload request."""
    uuid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    pipeline: Dict[str, Any]
    filename: str = ""
    replace: bool = False

    @classmethod
    def for_pipeline(cls, pipeline: Pipeline, filename: str, replace: bool = False) -> PipelineChange:
        """
        Build a change with a fresh idempotency UUID.

        The UUID identifies this logical upload; every retry sends the same
        one so the server can de-duplicate.
        """
        return cls(pipeline=pipeline.to_dict(), filename=filename, replace=replace)


class PipelineUploadStatus(BaseModel):
    state: str
    message: str = ""


# -------------------- Responses --------------------

@dataclass
class APIResponse:
    """Status, headers and decoded JSON body of an API call."""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Dict[str, Any] = field(default_factory=dict)

    def header(self, name: str) -> str:
        for k, v in self.headers.items():
            if k.lower() == name.lower():
                return v
        return ""
