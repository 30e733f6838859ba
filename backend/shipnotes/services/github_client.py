"""GitHub REST API client.

Deep module: callers pass an owner/repo and an optional plaintext token,
get plain dicts back. Rate limiting and credential rejection are raised as
distinct errors so routes can tell provider trouble from internal bugs.
Tokens are sent only in the Authorization header and never logged.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from ..exceptions import ProviderAuthError, ProviderRateLimitedError, UpstreamServiceError

logger = logging.getLogger(__name__)


class GitHubAPIError(UpstreamServiceError):
    """Non-success response from GitHub that is not auth or rate limiting."""

    def __init__(self, message: str, upstream_status: int = 0):
        super().__init__(message)
        self.upstream_status = upstream_status


class GitHubClient:
    """Thin wrapper over ``requests`` for the handful of endpoints we use."""

    def __init__(self, api_url: str = "https://api.github.com", timeout: int = 15):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()

    def _headers(self, token: Optional[str]) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "shipnotes",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _get(self, path: str, token: Optional[str] = None, params: Optional[dict] = None) -> Any:
        url = f"{self.api_url}{path}"
        try:
            response = self._session.get(
                url, headers=self._headers(token), params=params, timeout=self.timeout
            )
        except requests.exceptions.RequestException as exc:
            logger.warning("GitHub request failed: %s: %s", type(exc).__name__, path)
            raise GitHubAPIError("GitHub API request failed") from exc

        if response.status_code == 429 or (
            response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0"
        ):
            retry_after = _retry_after_seconds(response)
            logger.warning("GitHub rate limit hit", extra={"path": path, "retry_after": retry_after})
            raise ProviderRateLimitedError("GitHub", retry_after=retry_after)

        if response.status_code == 401:
            raise ProviderAuthError("GitHub rejected the access token")

        if not response.ok:
            message = _github_message(response)
            logger.info("GitHub returned %d for %s: %s", response.status_code, path, message)
            raise GitHubAPIError(message, upstream_status=response.status_code)

        return response.json()

    # ----- account ---------------------------------------------------------

    def get_authenticated_user(self, token: str) -> Dict[str, Any]:
        return self._get("/user", token=token)

    def list_user_repositories(self, token: str) -> List[Dict[str, Any]]:
        return self._get("/user/repos", token=token, params={"per_page": 100, "sort": "updated"})

    # ----- repositories ----------------------------------------------------

    def get_repository(self, owner: str, repo: str, token: Optional[str] = None) -> Dict[str, Any]:
        return self._get(f"/repos/{owner}/{repo}", token=token)

    def list_commits(
        self,
        owner: str,
        repo: str,
        token: Optional[str] = None,
        since: Optional[str] = None,
        limit: int = 30,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"per_page": limit}
        if since:
            params["since"] = since
        return self._get(f"/repos/{owner}/{repo}/commits", token=token, params=params)

    def list_releases(
        self, owner: str, repo: str, token: Optional[str] = None, limit: int = 5
    ) -> List[Dict[str, Any]]:
        return self._get(f"/repos/{owner}/{repo}/releases", token=token, params={"per_page": limit})


def _github_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"GitHub API returned {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return f"GitHub API error: {body['message']}"
    return f"GitHub API returned {response.status_code}"


def _retry_after_seconds(response: requests.Response) -> Optional[int]:
    retry_after = response.headers.get("Retry-After")
    if retry_after and retry_after.isdigit():
        return int(retry_after)
    reset = response.headers.get("X-RateLimit-Reset")
    if reset and reset.isdigit():
        return max(0, int(reset) - int(time.time()))
    return None
