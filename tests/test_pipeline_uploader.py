import pytest

from ciagent.agent.models import APIResponse, PipelineChange, PipelineUploadStatus
from ciagent.agent.pipeline_uploader import (
    BACKOFF_HEADER,
    PipelineUploader,
    extract_job_id_uuid,
    retry_after,
)
from ciagent.errors import APIError, Cancelled, PipelineUploadError
from ciagent.pipeline.model import CommandStep, Pipeline

JOB = "b6a8d4c0-0d0f-4d6c-9a8e-123456789abc"


def _change():
    return PipelineChange.for_pipeline(Pipeline(steps=[CommandStep(command="make")]), "pipeline.yml")


class FakeClient:
    """Replays scripted responses (or raises scripted errors) in order."""

    def __init__(self, uploads=(), statuses=()):
        self.uploads = list(uploads)
        self.statuses = list(statuses)
        self.upload_calls = []
        self.status_calls = []

    def upload_pipeline(self, job_id, change, headers=None):
        self.upload_calls.append((job_id, change.uuid, dict(headers or {})))
        item = self.uploads.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def pipeline_upload_status(self, job_id, upload_uuid, headers=None):
        self.status_calls.append((job_id, upload_uuid, dict(headers or {})))
        item = self.statuses.pop(0)
        if isinstance(item, Exception):
            raise item
        state, retry = item
        resp = APIResponse(status=200, headers={"Retry-After": retry} if retry else {})
        return PipelineUploadStatus(state=state), resp


def _accepted(change, job=JOB, retry=None):
    headers = {"Location": f"https://agent.example.com/v3/jobs/{job}/pipelines/{change.uuid}"}
    if retry is not None:
        headers["Retry-After"] = retry
    return APIResponse(status=202, headers=headers)


def _uploader(client, change, ctx, slept, attempts=5):
    return PipelineUploader(
        client=client, job_id=JOB, change=change, ctx=ctx, attempts=attempts, interval=5.0, sleep=slept.append
    )


def test_sync_upload(console, ctx):
    change = _change()
    client = FakeClient(uploads=[APIResponse(status=201)])
    slept = []
    _uploader(client, change, ctx, slept).upload(console)
    assert len(client.upload_calls) == 1
    assert client.status_calls == []
    assert slept == []


def test_retries_keep_the_same_uuid_and_count_attempts(console, ctx):
    change = _change()
    client = FakeClient(
        uploads=[APIError("boom", status=500), APIError("network"), APIResponse(status=201)]
    )
    slept = []
    _uploader(client, change, ctx, slept).upload(console)

    assert [c[1] for c in client.upload_calls] == [change.uuid] * 3
    assert [c[2][BACKOFF_HEADER] for c in client.upload_calls] == ["1", "2", "3"]
    assert slept == [5.0, 5.0]
    assert "Attempt 1/5 Retrying in 5s" in console.output


@pytest.mark.parametrize("status", [400, 401, 404, 422])
def test_terminal_statuses_are_not_retried(console, ctx, status):
    client = FakeClient(uploads=[APIError("client error", status=status)])
    slept = []
    with pytest.raises(PipelineUploadError, match="failed to upload and accept pipeline: client error"):
        _uploader(client, _change(), ctx, slept).upload(console)
    assert len(client.upload_calls) == 1
    assert slept == []
    assert "ERROR: Unrecoverable error, skipping retries" in console.output


def test_serialization_errors_are_not_retried(console, ctx):
    client = FakeClient(uploads=[TypeError("Object of type set is not JSON serializable")])
    with pytest.raises(PipelineUploadError) as excinfo:
        _uploader(client, _change(), ctx, []).upload(console)
    assert isinstance(excinfo.value.__cause__, TypeError)
    assert len(client.upload_calls) == 1


def test_exhaustion_chains_last_error(console, ctx):
    client = FakeClient(uploads=[APIError(f"fail {i}", status=503) for i in range(3)])
    slept = []
    with pytest.raises(PipelineUploadError, match="fail 2") as excinfo:
        _uploader(client, _change(), ctx, slept, attempts=3).upload(console)
    assert isinstance(excinfo.value.__cause__, APIError)
    assert len(slept) == 2


def test_async_upload_polls_until_applied(console, ctx):
    change = _change()
    client = FakeClient(
        uploads=[_accepted(change, retry="2")],
        statuses=[("pending", "3"), ("processing", None), ("applied", None)],
    )
    slept = []
    _uploader(client, change, ctx, slept).upload(console)

    # Retry-After on the 202, then on the pending status, then the default interval.
    assert slept == [2.0, 3.0, 5.0]
    assert [c[1] for c in client.status_calls] == [change.uuid] * 3
    assert [c[2][BACKOFF_HEADER] for c in client.status_calls] == ["1", "2", "3"]


def test_async_upload_without_retry_after_waits_one_second(console, ctx):
    change = _change()
    client = FakeClient(uploads=[_accepted(change)], statuses=[("applied", None)])
    slept = []
    _uploader(client, change, ctx, slept).upload(console)
    assert slept == [1.0]


def test_missing_location_is_retried(console, ctx):
    change = _change()
    client = FakeClient(
        uploads=[APIResponse(status=202), _accepted(change)],
        statuses=[("applied", None)],
    )
    _uploader(client, change, ctx, []).upload(console)
    assert len(client.upload_calls) == 2


@pytest.mark.parametrize("state", ["rejected", "failed"])
def test_rejected_upload_is_terminal(console, ctx, state):
    change = _change()
    client = FakeClient(uploads=[_accepted(change)], statuses=[(state, None)])
    with pytest.raises(PipelineUploadError, match=f"failed to upload and process pipeline: pipeline upload {state}"):
        _uploader(client, change, ctx, []).upload(console)
    assert len(client.status_calls) == 1


def test_unknown_state_is_terminal(console, ctx):
    change = _change()
    client = FakeClient(uploads=[_accepted(change)], statuses=[("teleported", None)])
    with pytest.raises(PipelineUploadError, match="unexpected pipeline upload state"):
        _uploader(client, change, ctx, []).upload(console)


def test_terminal_status_while_polling(console, ctx):
    change = _change()
    client = FakeClient(uploads=[_accepted(change)], statuses=[APIError("gone", status=404)])
    with pytest.raises(PipelineUploadError, match="failed to upload and process pipeline: gone"):
        _uploader(client, change, ctx, []).upload(console)
    assert len(client.status_calls) == 1


def test_location_for_another_job(console, ctx):
    change = _change()
    client = FakeClient(uploads=[_accepted(change, job="someone-else")])
    with pytest.raises(PipelineUploadError, match="does not match request"):
        _uploader(client, change, ctx, []).upload(console)
    assert client.status_calls == []


def test_location_for_another_upload(console, ctx):
    change = _change()
    other = _change()
    client = FakeClient(uploads=[_accepted(other)])
    with pytest.raises(PipelineUploadError, match="pipeline upload UUID from API"):
        _uploader(client, change, ctx, []).upload(console)


def test_cancellation_stops_retrying(console, ctx):
    client = FakeClient(uploads=[APIError("down", status=503)] * 5)

    def sleep(seconds):
        ctx.cancelled.set()

    uploader = PipelineUploader(client=client, job_id=JOB, change=_change(), ctx=ctx, attempts=5, sleep=sleep)
    with pytest.raises(Cancelled):
        uploader.upload(console)
    assert len(client.upload_calls) == 1


def test_each_change_gets_a_fresh_uuid():
    assert _change().uuid != _change().uuid


def test_change_body():
    body = _change().model_dump()
    assert set(body) == {"uuid", "pipeline", "filename", "replace"}
    assert body["pipeline"] == {"steps": [{"command": "make"}]}
    assert body["filename"] == "pipeline.yml"
    assert body["replace"] is False


def test_extract_job_id_uuid():
    assert extract_job_id_uuid("https://x/v3/jobs/j1/pipelines/u1?foo=bar") == ("j1", "u1")
    with pytest.raises(PipelineUploadError):
        extract_job_id_uuid("https://x/v3/elsewhere")


def test_retry_after():
    assert retry_after(APIResponse(status=202, headers={"retry-after": "4"})) == 4.0
    assert retry_after(APIResponse(status=202, headers={"Retry-After": "soon"})) is None
    assert retry_after(APIResponse(status=202)) is None
    assert retry_after(None) is None
