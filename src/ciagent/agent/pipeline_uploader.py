# agent/pipeline_uploader.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from ciagent.errors import APIError, Cancelled, PipelineUploadError
from ciagent.ui.console import Console
from ciagent.upload.config import UploadContext

from .api_client import APIClient
from .models import APIResponse, PipelineChange
from .retry import Retrier

DEFAULT_ATTEMPTS = 60
DEFAULT_SLEEP_DURATION = 5.0
DEFAULT_SLEEP_AFTER_UPLOAD = 1.0

# Client errors that will fail the same way however often they are retried.
TERMINAL_STATUSES = frozenset({400, 401, 404, 422})

BACKOFF_HEADER = "X-Buildkite-Backoff-Sequence"

_LOCATION = re.compile(r"jobs/(?P<job_id>[^/]+)/pipelines/(?P<upload_uuid>[^/?#]+)")


def extract_job_id_uuid(location: str) -> Tuple[str, str]:
    """Pull the job id and upload UUID out of an upload status Location."""
    m = _LOCATION.search(location)
    if m is None:
        raise PipelineUploadError(f"could not extract job and upload UUIDs from Location {location}")
    return m.group("job_id"), m.group("upload_uuid")


def retry_after(resp: Optional[APIResponse]) -> Optional[float]:
    if resp is None:
        return None
    try:
        return float(resp.header("Retry-After"))
    except ValueError:
        return None


@dataclass
class _AsyncResult:
    api_is_async: bool = False
    location: str = ""
    sleep_duration: float = DEFAULT_SLEEP_AFTER_UPLOAD


@dataclass
class PipelineUploader:
    """
    Uploads one pipeline change for a job.

    The change is first POSTed to the async route. A 202 means the server
    queued it, so the status route is polled until the upload is applied.
    Any other 2xx means it was applied synchronously.
    """
    client: APIClient
    job_id: str
    change: PipelineChange
    ctx: UploadContext
    attempts: int = DEFAULT_ATTEMPTS
    interval: float = DEFAULT_SLEEP_DURATION
    sleep: Optional[Callable[[float], None]] = None

    def _retrier(self) -> Retrier:
        return Retrier(self.attempts, self.interval, sleep=self.sleep, cancelled=self.ctx.cancelled)

    def upload(self, console: Console) -> None:
        """
        Raises:
            PipelineUploadError: the upload failed or was rejected.
            Cancelled: the context was cancelled while waiting.
        """
        try:
            result = self._upload_async_with_retry(console)
        except Cancelled:
            raise
        except Exception as e:
            raise PipelineUploadError(f"failed to upload and accept pipeline: {e}") from e

        if not result.api_is_async:
            return

        self._retrier().wait(result.sleep_duration)

        job_id, upload_uuid = extract_job_id_uuid(result.location)
        if job_id != self.job_id:
            raise PipelineUploadError(f"jobID from API: {job_id!r} does not match request: {self.job_id}")
        if upload_uuid != self.change.uuid:
            raise PipelineUploadError(
                f"pipeline upload UUID from API: {upload_uuid!r} does not match request: {self.change.uuid}"
            )

        try:
            self._poll_for_upload_status(console)
        except Cancelled:
            raise
        except Exception as e:
            raise PipelineUploadError(f"failed to upload and process pipeline: {e}") from e

    def _upload_async_with_retry(self, console: Console) -> _AsyncResult:
        def attempt(r: Retrier) -> _AsyncResult:
            try:
                resp = self.client.upload_pipeline(
                    self.job_id,
                    self.change,
                    headers={BACKOFF_HEADER: str(r.attempt_count)},
                )
            except (TypeError, ValueError) as e:
                # The body couldn't be encoded; retrying won't change that.
                r.break_()
                console.print_warning(f"{e} ({r})")
                console.print_error("Unrecoverable error, skipping retries")
                raise
            except APIError as e:
                if e.status in TERMINAL_STATUSES:
                    r.break_()
                    console.print_warning(f"{e} ({r})")
                    console.print_error("Unrecoverable error, skipping retries")
                    raise
                console.print_warning(f"{e} ({r})")
                raise

            if resp.status != 202:
                return _AsyncResult()

            location = resp.header("Location")
            if not location:
                err = APIError("missing Location header in 202 response", status=resp.status)
                console.print_warning(f"{err} ({r})")
                raise err
            delay = retry_after(resp)
            return _AsyncResult(
                api_is_async=True,
                location=location,
                sleep_duration=delay if delay is not None else DEFAULT_SLEEP_AFTER_UPLOAD,
            )

        return self._retrier().run(attempt)

    def _poll_for_upload_status(self, console: Console) -> None:
        def attempt(r: Retrier) -> None:
            try:
                status, resp = self.client.pipeline_upload_status(
                    self.job_id,
                    self.change.uuid,
                    headers={BACKOFF_HEADER: str(r.attempt_count)},
                )
            except APIError as e:
                if e.status in TERMINAL_STATUSES:
                    r.break_()
                    console.print_warning(f"{e} ({r})")
                    console.print_error("Unrecoverable error, skipping retries")
                    raise
                console.print_warning(f"{e} ({r})")
                raise

            if status.state == "applied":
                return
            if status.state in ("pending", "processing"):
                delay = retry_after(resp)
                if delay is not None:
                    r.set_next_interval(delay)
                err = PipelineUploadError(f"pipeline upload not yet applied: {status.state}")
                console.print_info(f"{err} ({r})")
                raise err

            r.break_()
            console.print_error("Unrecoverable error, skipping retries")
            if status.state in ("rejected", "failed"):
                raise PipelineUploadError(f"pipeline upload {status.state}: {status.message}")
            raise PipelineUploadError(f"unexpected pipeline upload state from API: {status.state}")

        self._retrier().run(attempt)
