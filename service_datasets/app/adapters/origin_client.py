"""
Async HTTP client for the raw-content origin hosting the dataset files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from shared.errors import ConfigurationError
from shared.logging import get_logger


class OriginTransportError(RuntimeError):
    """Raised when the origin could not be reached or the transfer failed.

    A non-2xx status is not a transport failure; it is returned verbatim.
    """

    def __init__(self, url: str, reason: str):
        super().__init__(f"Origin request to {url} failed: {reason}")
        self.url = url
        self.reason = reason


@dataclass(frozen=True)
class OriginResponse:
    """Status, headers and body of one origin exchange."""

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


class OriginClient:
    """Performs single conditional GETs against ``{base}/{owner}/{repo}/{branch}/{path}``."""

    def __init__(
        self,
        base_url: str,
        owner: Optional[str],
        repo: Optional[str],
        branch: str = "main",
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        missing = [name for name, value in (("GITHUB_OWNER", owner), ("GITHUB_REPO", repo)) if not value]
        if missing:
            raise ConfigurationError(
                f"Missing required environment variable: {missing[0]}",
                details={"missing": missing},
            )

        self.base_url = base_url.rstrip("/")
        self.owner = owner
        self.repo = repo
        self.branch = branch or "main"
        self.logger = get_logger("datasets.origin")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=False)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def build_url(self, path: str) -> str:
        return f"{self.base_url}/{self.owner}/{self.repo}/{self.branch}/{path.lstrip('/')}"

    async def fetch(self, path: str, etag: Optional[str] = None) -> OriginResponse:
        """
        Issue one GET for a logical path.

        When ``etag`` is given it is sent as ``If-None-Match`` so the origin may
        answer 304. No retries, no caching, no status interpretation.
        """
        url = self.build_url(path)
        headers: Dict[str, str] = {}
        if etag:
            headers["If-None-Match"] = etag

        try:
            response = await self._client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            self.logger.warning("Origin transport failure", url=url, error=str(exc))
            raise OriginTransportError(url, str(exc) or exc.__class__.__name__) from exc

        self.logger.debug("Origin responded", url=url, status_code=response.status_code, conditional=bool(etag))
        return OriginResponse(
            status_code=response.status_code,
            headers={name.lower(): value for name, value in response.headers.items()},
            body=response.content,
        )
