"""
Jenkins Client - Typed HTTP accessor for the CI server.

Every method performs plain `requests` calls with basic auth; no session or
other state is kept between calls, so one client can be shared by all
concurrent build lifecycles. Callers on the event loop run these methods
through asyncio.to_thread.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

import requests
from loguru import logger

from buildwatch.ci.models import Crumb, LogChunkResponse, SubmitResult
from buildwatch.config.models import JenkinsConfig
from buildwatch.core.exceptions import SubmissionFailure, TransientFetchError

QUEUE_LOCATION_PATTERN = re.compile(r"/queue/item/(\d+)/?")

# Submission endpoints, tried in this order
SUBMIT_ENDPOINTS = ("buildWithParameters", "build")


def job_path(job_name: str) -> str:
    """Map "team/app" to "job/team/job/app"."""
    parts = [p for p in job_name.strip("/").split("/") if p]
    if not parts:
        raise ValueError("Invalid job name: must be non-empty")
    return "/".join(f"job/{quote(p, safe='')}" for p in parts)


def _is_success(response: requests.Response) -> bool:
    return 200 <= response.status_code < 300


def parse_queue_id(location: str | None) -> int | None:
    """Extract the queue item id from a submission Location header."""
    if not location:
        return None
    match = QUEUE_LOCATION_PATTERN.search(location)
    return int(match.group(1)) if match else None


class JenkinsClient:
    """HTTP client for a Jenkins-compatible CI server."""

    def __init__(self, config: JenkinsConfig):
        """
        Initialize the client.

        Args:
            config: Server URL, credentials and timeouts
        """
        self.config = config
        self.base_url = config.url

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def job_url(self, job_name: str) -> str:
        return f"{self.base_url}/{job_path(job_name)}"

    def build_url(self, job_name: str, build_number: int) -> str:
        return f"{self.job_url(job_name)}/{build_number}"

    def queue_item_url(self, queue_id: int) -> str:
        return f"{self.base_url}/queue/item/{queue_id}/"

    def console_url(self, job_name: str, build_number: int) -> str:
        """Human-facing console page for a build."""
        return f"{self.build_url(job_name, build_number)}/console"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> requests.Response:
        logger.debug(f"🌐 {method} {url}")
        return requests.request(
            method,
            url,
            params=params,
            data=data,
            headers=dict(headers or {}),
            auth=self.config.auth,
            timeout=self.config.request_timeout,
            verify=self.config.verify_ssl,
            allow_redirects=False,
        )

    def _get_json(self, url: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """GET a JSON document, raising TransientFetchError on any failure."""
        try:
            response = self._request("GET", url, params=params)
        except requests.exceptions.RequestException as e:
            raise TransientFetchError(url, str(e)) from e

        if not _is_success(response):
            raise TransientFetchError(url, f"HTTP {response.status_code}", response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise TransientFetchError(url, "invalid JSON body", response.status_code) from e

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def check_auth(self) -> bool:
        """Probe the identity endpoint. Fails closed."""
        url = f"{self.base_url}/me/api/json"
        try:
            response = self._request("GET", url)
        except requests.exceptions.RequestException as e:
            logger.warning(f"⚠️ CI auth check failed: {e}")
            return False

        if not _is_success(response):
            logger.warning(f"⚠️ CI auth check rejected: HTTP {response.status_code}")
            return False
        return True

    def check_job_buildable(self, job_name: str) -> bool:
        """Check that the job exists and accepts builds. Fails closed."""
        url = f"{self.job_url(job_name)}/api/json"
        try:
            response = self._request("GET", url, params={"tree": "name,buildable"})
        except requests.exceptions.RequestException as e:
            logger.warning(f"⚠️ Job check for '{job_name}' failed: {e}")
            return False

        if response.status_code == 404:
            logger.warning(f"⚠️ Job '{job_name}' not found")
            return False
        if not _is_success(response):
            logger.warning(f"⚠️ Job check for '{job_name}' failed: HTTP {response.status_code}")
            return False

        try:
            buildable = response.json().get("buildable", True)
        except ValueError:
            buildable = True
        if buildable is False:
            logger.warning(f"⚠️ Job '{job_name}' is disabled")
        return buildable is not False

    def fetch_crumb(self) -> Crumb | None:
        """
        Fetch a CSRF crumb. Best effort.

        Servers without a crumb issuer are normal; every failure yields None.
        """
        url = f"{self.base_url}/crumbIssuer/api/json"
        try:
            data = self._get_json(url)
        except TransientFetchError as e:
            logger.debug(f"No CSRF crumb available: {e}")
            return None

        header = str(data.get("crumbRequestField") or "").strip()
        value = str(data.get("crumb") or "").strip()
        if not header or not value:
            logger.debug("Crumb issuer response is missing crumbRequestField/crumb")
            return None
        return Crumb(header_name=header, value=value)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        job_name: str,
        params: Mapping[str, str] | None = None,
        crumb: Crumb | None = None,
    ) -> SubmitResult:
        """
        Submit a build request.

        Tries buildWithParameters, then build, stopping at the first 2xx.

        Raises:
            SubmissionFailure: If both endpoints fail (reports the last error)
        """
        headers = crumb.as_headers() if crumb else {}
        last_error = "no endpoint attempted"
        last_status: int | None = None

        for endpoint in SUBMIT_ENDPOINTS:
            url = f"{self.job_url(job_name)}/{endpoint}"
            data = dict(params or {}) if endpoint == "buildWithParameters" else None
            try:
                response = self._request("POST", url, data=data, headers=headers)
            except requests.exceptions.RequestException as e:
                last_error, last_status = f"{endpoint}: {e}", None
                logger.warning(f"⚠️ Submission via {endpoint} failed: {e}")
                continue

            if _is_success(response):
                queue_id = parse_queue_id(response.headers.get("Location"))
                logger.info(
                    f"🚀 Build submitted for '{job_name}' via {endpoint} "
                    f"(HTTP {response.status_code}, queue={queue_id})"
                )
                return SubmitResult(
                    accepted=True,
                    queue_id=queue_id,
                    endpoint=endpoint,
                    status_code=response.status_code,
                )

            last_error = f"{endpoint}: HTTP {response.status_code} - {response.text[:500]}"
            last_status = response.status_code
            logger.warning(f"⚠️ Submission via {endpoint} rejected: HTTP {response.status_code}")

        raise SubmissionFailure(job_name, last_error, last_status)

    # ------------------------------------------------------------------
    # Polling endpoints
    # ------------------------------------------------------------------

    def get_queue_item(self, queue_id: int) -> dict[str, Any] | None:
        """
        Fetch a queue item.

        Returns:
            Queue item document, or None when the item no longer exists (404)

        Raises:
            TransientFetchError: On network errors or other HTTP failures
        """
        url = f"{self.queue_item_url(queue_id)}api/json"
        try:
            return self._get_json(url)
        except TransientFetchError as e:
            if e.status_code == 404:
                return None
            raise

    def get_build(self, job_name: str, build_number: int) -> dict[str, Any]:
        """Fetch a build's status document (building, result, duration, ...)."""
        return self._get_json(f"{self.build_url(job_name, build_number)}/api/json")

    def get_last_build(self, job_name: str) -> dict[str, Any] | None:
        """Fetch the job's most recent build, or None if it has never run."""
        try:
            return self._get_json(f"{self.job_url(job_name)}/lastBuild/api/json")
        except TransientFetchError as e:
            if e.status_code == 404:
                return None
            raise

    def fetch_log_chunk(self, job_name: str, build_number: int, start: int) -> LogChunkResponse:
        """
        Fetch console bytes beyond `start` (progressive text).

        Raises:
            TransientFetchError: On network errors or non-2xx responses
        """
        url = f"{self.build_url(job_name, build_number)}/logText/progressiveText"
        try:
            response = self._request("GET", url, params={"start": start})
        except requests.exceptions.RequestException as e:
            raise TransientFetchError(url, str(e)) from e

        if not _is_success(response):
            raise TransientFetchError(url, f"HTTP {response.status_code}", response.status_code)

        text_size = response.headers.get("X-Text-Size")
        return LogChunkResponse(
            data=response.content,
            start=start,
            text_size=int(text_size) if text_size and text_size.isdigit() else None,
            more_data=response.headers.get("X-More-Data", "").lower() == "true",
        )
