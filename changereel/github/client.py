"""GitHub API client using App authentication."""

from datetime import UTC, datetime, timedelta
from typing import Any, Optional

import httpx
import jwt

from changereel.core.errors import (
    AuthError,
    NonRetryableError,
    NotFoundError,
    TransientExternalError,
)
from changereel.core.logging import get_logger

logger = get_logger(__name__)

GITHUB_API_BASE = "https://api.github.com"
MAX_DIFF_SIZE = 5_000_000  # 5MB max raw diff size
DIFF_MEDIA_TYPE = "application/vnd.github.v3.diff"


class GitHubClient:
    """Client for the GitHub REST endpoints the pipeline reads from."""

    def __init__(
        self,
        app_id: Optional[str] = None,
        private_key: Optional[str] = None,
        installation_id: Optional[str] = None,
        token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize GitHub client.

        Args:
            app_id: GitHub App ID
            private_key: GitHub App private key (PEM)
            installation_id: GitHub App installation ID
            token: Personal access token, used when App credentials are incomplete
            http_client: Preconfigured client (tests pass one with a mock transport)
        """
        if app_id and private_key and installation_id:
            self.app_id = app_id
            self.installation_id = installation_id
            self.private_key = private_key
            self._installation_token: Optional[str] = None
            self._token_expires_at: Optional[datetime] = None
            self.use_app_auth = True
            logger.info(
                "Using GitHub App authentication",
                app_id=self.app_id,
                installation_id=self.installation_id,
            )
        else:
            self.token = token
            self.use_app_auth = False
            if not token:
                logger.warning("No GitHub credentials configured, using anonymous access")

        self.client = http_client or httpx.AsyncClient(
            base_url=GITHUB_API_BASE,
            timeout=30.0,
        )

    @classmethod
    def from_settings(cls, settings) -> "GitHubClient":
        if settings.github_app_configured:
            return cls(
                app_id=settings.github_app_id,
                private_key=settings.get_github_app_private_key(),
                installation_id=settings.github_app_installation_id,
            )
        return cls(token=settings.github_token or None)

    def _generate_jwt(self) -> str:
        """Generate JWT for GitHub App authentication."""
        now = int(datetime.now(UTC).timestamp())
        payload = {
            "iat": now - 60,  # Allow for clock skew
            "exp": now + 600,
            "iss": self.app_id,
        }

        return jwt.encode(payload, self.private_key, algorithm="RS256")

    async def _get_installation_token(self) -> str:
        """Get or refresh installation access token."""
        if self._installation_token and self._token_expires_at:
            now = datetime.now(UTC)
            if now < self._token_expires_at - timedelta(minutes=5):
                return self._installation_token

        jwt_token = self._generate_jwt()
        headers = {
            "Authorization": f"Bearer {jwt_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        response = await self.client.post(
            f"/app/installations/{self.installation_id}/access_tokens",
            headers=headers,
        )
        if response.status_code in (401, 403):
            raise AuthError(
                "GitHub App installation token request was rejected",
                status_code=response.status_code,
            )
        response.raise_for_status()

        data = response.json()
        self._installation_token = data["token"]
        expires_at = datetime.fromisoformat(data["expires_at"].replace("Z", "+00:00"))
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        self._token_expires_at = expires_at

        logger.info(
            "GitHub installation token refreshed",
            expires_at=self._token_expires_at.isoformat(),
        )

        return self._installation_token

    async def _get_headers(self, accept: str = "application/vnd.github+json") -> dict:
        """Get headers with authentication token."""
        headers = {
            "Accept": accept,
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "Change-Reel/1.0",
        }
        token = await self._get_installation_token() if self.use_app_auth else self.token
        if token:
            headers["Authorization"] = f"token {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        accept: str = "application/vnd.github+json",
        params: Optional[dict] = None,
    ) -> httpx.Response:
        """
        Send a request and map failures onto the pipeline error taxonomy.

        Raises:
            NotFoundError: On 404
            AuthError: On 401, or 403 that is not a rate limit
            TransientExternalError: On 429, rate-limited 403, 5xx or network errors
        """
        try:
            headers = await self._get_headers(accept)
            response = await self.client.request(method, path, headers=headers, params=params)
        except httpx.RequestError as e:
            logger.error("GitHub API request error", path=path, error=str(e))
            raise TransientExternalError(f"GitHub request failed: {e}") from e

        status = response.status_code
        if status < 400:
            return response

        detail = response.text[:200]
        if status == 404:
            raise NotFoundError(f"Not Found: {path}", details={"path": path})
        if status == 403 and response.headers.get("x-ratelimit-remaining") == "0":
            reset = response.headers.get("x-ratelimit-reset")
            retry_after = None
            if reset and reset.isdigit():
                retry_after = max(int(reset) - int(datetime.now(UTC).timestamp()), 1)
            raise TransientExternalError(
                "GitHub rate limit exceeded", status_code=403, retry_after=retry_after
            )
        if status in (401, 403):
            logger.error("GitHub authentication failed", status_code=status, path=path)
            raise AuthError(f"GitHub API denied access to {path}: {detail}", status_code=status)
        if status == 429 or status >= 500:
            retry_after_header = response.headers.get("retry-after")
            raise TransientExternalError(
                f"GitHub API error {status}: {detail}",
                status_code=status,
                retry_after=float(retry_after_header) if retry_after_header else None,
            )

        logger.error("GitHub API error", status_code=status, path=path, response=detail)
        raise TransientExternalError(f"GitHub API error {status}: {detail}", status_code=status)

    async def get_commit(self, owner: str, repo: str, sha: str) -> dict[str, Any]:
        """Fetch a single commit, including per-file patches."""
        response = await self._request("GET", f"/repos/{owner}/{repo}/commits/{sha}")
        return response.json()

    async def compare_commits(self, owner: str, repo: str, base: str, head: str) -> dict[str, Any]:
        """Fetch the JSON comparison between two refs."""
        response = await self._request("GET", f"/repos/{owner}/{repo}/compare/{base}...{head}")
        return response.json()

    async def get_commit_diff(self, owner: str, repo: str, base: str, head: str) -> str:
        """
        Fetch the raw unified diff between two refs.

        Raises:
            NonRetryableError: If the diff exceeds MAX_DIFF_SIZE
        """
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/compare/{base}...{head}",
            accept=DIFF_MEDIA_TYPE,
        )
        diff_text = response.text
        if len(diff_text) > MAX_DIFF_SIZE:
            raise NonRetryableError(f"Diff too large: {len(diff_text)} bytes (max: {MAX_DIFF_SIZE})")
        return diff_text

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        response = await self._request("GET", f"/repos/{owner}/{repo}")
        return response.json()

    async def get_rate_limit(self) -> dict[str, Any]:
        response = await self._request("GET", "/rate_limit")
        return response.json()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
