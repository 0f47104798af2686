# agent/api_client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Dict, Optional, Tuple
from urllib.parse import quote, urljoin

from ciagent.errors import APIError

from .models import APIResponse, PipelineChange, PipelineUploadStatus


class APIClient:
    """HTTP client for the agent API."""

    def __init__(self, base_url: str, access_token: str, timeout: float = 60.0):
        """
        Initialize API client.

        Args:
            base_url: Base URL of the API (e.g., "https://agent.buildkite.com/v3")
            access_token: Agent access token sent with every request
            timeout: Socket timeout in seconds
        """
        # Ensure base_url doesn't end with /
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> APIResponse:
        """
        Make an HTTP request to the API.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: API path (e.g., "/jobs/123/pipelines")
            data: Optional JSON data to send in request body
            headers: Optional additional headers

        Returns:
            The response status, headers and parsed JSON body

        Raises:
            APIError: If the request fails; `status` is set for HTTP errors
            TypeError, ValueError: If `data` can't be encoded as JSON
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))

        req_headers = {
            "Content-Type": "application/json",
            "Authorization": f"Token {self.access_token}",
        }
        if headers:
            req_headers.update(headers)

        req_data = None
        if data is not None:
            req_data = json.dumps(data).encode("utf-8")

        req = urllib.request.Request(url, data=req_data, headers=req_headers, method=method)

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                response_data = response.read().decode("utf-8")
                body = json.loads(response_data) if response_data else {}
                return APIResponse(
                    status=response.status,
                    headers=dict(response.headers.items()),
                    body=body if isinstance(body, dict) else {},
                )
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"{method} {url}: {e.code} {e.reason}. {error_body}".rstrip(), status=e.code) from e
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}") from e
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}") from e

    def upload_pipeline(
        self,
        job_id: str,
        change: PipelineChange,
        headers: Optional[Dict[str, str]] = None,
    ) -> APIResponse:
        """
        Upload a pipeline change to the asynchronous route.

        A 202 response means the upload was accepted for processing and its
        status should be polled; any other 2xx means it was applied.
        """
        return self._request(
            "POST",
            f"/jobs/{quote(job_id)}/pipelines?async=true",
            data=change.model_dump(),
            headers=headers,
        )

    def pipeline_upload_status(
        self,
        job_id: str,
        upload_uuid: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[PipelineUploadStatus, APIResponse]:
        """Fetch the processing state of a previously accepted upload."""
        resp = self._request(
            "GET",
            f"/jobs/{quote(job_id)}/pipelines/{quote(upload_uuid)}",
            headers=headers,
        )
        try:
            status = PipelineUploadStatus.model_validate(resp.body)
        except ValueError as e:
            raise APIError(f"Invalid pipeline upload status response: {e}", status=resp.status) from e
        return status, resp
