import io

import pytest

from ciagent.ui.console import Console
from ciagent.upload.config import PipelineUploadConfig, UploadContext


class CapturingConsole(Console):
    """Console that writes to an in-memory buffer."""

    def __init__(self, debug=False):
        super().__init__(debug=debug, stream=io.StringIO())

    @property
    def output(self):
        return self.stream.getvalue()

    @property
    def warnings(self):
        return [line[len("WARN: "):] for line in self.output.splitlines() if line.startswith("WARN: ")]


@pytest.fixture
def console():
    return CapturingConsole()


@pytest.fixture
def ctx():
    return UploadContext()


@pytest.fixture
def cfg():
    return PipelineUploadConfig()
