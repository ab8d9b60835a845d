# api/client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Iterable, Optional
from urllib.parse import urljoin

from pydantic import ValidationError

from ..dispatch import DispatchRequest
from .schemas import CreateRunRequest, CreateRunResponse, RunStep


class APIError(Exception):
    """Raised when API requests fail."""


class APIClient:
    """HTTP client for handing dispatch requests to the orchestrator API."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        """
        Initialize API client.

        Args:
            base_url: Base URL of the API (e.g., "https://ci.example.com/api")
            timeout: Socket timeout in seconds for each request
        """
        # Ensure base_url doesn't end with /
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        """
        Make an HTTP request to the API.

        Returns:
            Parsed JSON response as dictionary

        Raises:
            APIError: If the request fails
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))

        req_headers = {
            "Content-Type": "application/json",
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
                if response_data:
                    return json.loads(response_data)
                return {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"API request failed: {e.code} {e.reason}. {error_body}".strip()) from e
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}") from e
        except TimeoutError as e:
            raise APIError(f"Request timed out after {self.timeout}s") from e
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}") from e

    def create_run(
        self,
        repo: str,
        ref: str,
        requests: Iterable[DispatchRequest],
    ) -> CreateRunResponse:
        """
        Submit one run containing a dispatch request per step.

        Returns:
            CreateRunResponse with the run id and per-step ids
        """
        body = CreateRunRequest(
            repo=repo,
            ref=ref,
            steps=[RunStep(label=r.label, payload_json=r.to_dict()) for r in requests],
        )
        response = self._request("POST", "/runs", data=body.model_dump())
        try:
            return CreateRunResponse.model_validate(response)
        except ValidationError as e:
            raise APIError(f"Unexpected response from {self.base_url}/runs: {e}") from e
