"""
Content fetchers for remote sync.

GitHubFetcher reads a repository of pre-crawled documentation: directory
listings come from the GitHub contents API, file bodies from
raw.githubusercontent.com. Every request has its own timeout; listings
retry transient failures (timeouts, 5xx, rate limits) with exponential
backoff.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

import aiohttp

from ..errors import FetchError

logger = logging.getLogger(__name__)

GITHUB_API_BASE_URL = "https://api.github.com"
GITHUB_RAW_BASE_URL = "https://raw.githubusercontent.com"


class FetchStatus(str, Enum):
	"""Outcome of a single remote read."""
	OK = "ok"
	NOT_FOUND = "not-found"
	RATE_LIMITED = "rate-limited"
	SERVER_ERROR = "server-error"
	TIMEOUT = "timeout"
	ERROR = "error"

	@property
	def retryable(self) -> bool:
		return self in (FetchStatus.RATE_LIMITED, FetchStatus.SERVER_ERROR, FetchStatus.TIMEOUT)


@dataclass
class FetchResult:
	"""Raw content for a path, or the reason there is none."""
	status: FetchStatus
	content: Optional[str] = None
	http_status: Optional[int] = None
	attempts: int = 1

	@property
	def ok(self) -> bool:
		return self.status is FetchStatus.OK


@dataclass
class RemoteFile:
	"""A file entry from a directory listing."""
	name: str
	path: str
	size: int = 0


class ContentFetcher(Protocol):
	"""Read-only view of a remote content tree."""

	async def list_directories(self, path: str) -> list[str]:
		"""Names of subdirectories of `path`, sorted."""
		...

	async def list_files(self, path: str) -> list[RemoteFile]:
		"""Files directly inside `path`, sorted by name."""
		...

	async def fetch(self, path: str) -> FetchResult:
		...


@dataclass
class RetryPolicy:
	"""Bounded exponential backoff for retryable fetch outcomes."""
	attempts: int = 3
	base_delay: float = 0.5
	max_delay: float = 8.0

	def delay(self, attempt: int) -> float:
		"""Seconds to wait after failed attempt number `attempt` (0-based)."""
		return min(self.max_delay, self.base_delay * (2 ** attempt))

	async def run(self, call: Callable[[], Awaitable[FetchResult]]) -> FetchResult:
		"""Invoke `call` until it succeeds, fails terminally, or attempts run out."""
		attempts = max(1, self.attempts)
		result = FetchResult(FetchStatus.ERROR)
		for attempt in range(attempts):
			result = await call()
			result.attempts = attempt + 1
			if not result.status.retryable:
				return result
			if attempt + 1 < attempts:
				await asyncio.sleep(self.delay(attempt))
		return result


def classify_status(http_status: int) -> FetchStatus:
	"""Map an HTTP status code onto a fetch outcome."""
	if 200 <= http_status < 300:
		return FetchStatus.OK
	if http_status == 404:
		return FetchStatus.NOT_FOUND
	# GitHub answers 403 when the unauthenticated API quota is spent
	if http_status in (403, 429):
		return FetchStatus.RATE_LIMITED
	if http_status >= 500:
		return FetchStatus.SERVER_ERROR
	return FetchStatus.ERROR


@dataclass
class GitHubFetcher:
	"""
	ContentFetcher over a GitHub repository.

	Usage:
		async with GitHubFetcher("mihaelamj/cupertino-docs") as fetcher:
			frameworks = await fetcher.list_directories("docs")
			result = await fetcher.fetch("docs/swiftui/view.json")
	"""
	repository: str
	branch: str = "main"
	timeout: float = 1.0
	retry: RetryPolicy = field(default_factory=RetryPolicy)
	token: Optional[str] = None
	api_base_url: str = GITHUB_API_BASE_URL
	raw_base_url: str = GITHUB_RAW_BASE_URL
	user_agent: str = "cupertino-sync"
	_session: Optional[aiohttp.ClientSession] = field(default=None, init=False, repr=False)

	async def __aenter__(self) -> "GitHubFetcher":
		await self.open()
		return self

	async def __aexit__(self, *exc) -> None:
		await self.close()

	async def open(self) -> None:
		if self._session is None:
			self._session = aiohttp.ClientSession(headers={"User-Agent": self.user_agent})

	async def close(self) -> None:
		if self._session is not None:
			await self._session.close()
			self._session = None

	# -- URLs ------------------------------------------------------------

	def api_url(self, path: str) -> str:
		return f"{self.api_base_url}/repos/{self.repository}/contents/{path.lstrip('/')}?ref={self.branch}"

	def raw_url(self, path: str) -> str:
		return f"{self.raw_base_url}/{self.repository}/{self.branch}/{path.lstrip('/')}"

	# -- requests --------------------------------------------------------

	async def _get_once(self, url: str, headers: Optional[dict] = None) -> FetchResult:
		if self._session is None:
			await self.open()
		try:
			async with self._session.get(
				url,
				headers=headers,
				timeout=aiohttp.ClientTimeout(total=self.timeout),
			) as response:
				status = classify_status(response.status)
				if status is not FetchStatus.OK:
					logger.debug(f"GET {url} -> {response.status}")
					return FetchResult(status, http_status=response.status)
				text = await response.text(encoding="utf-8", errors="replace")
				return FetchResult(FetchStatus.OK, text, http_status=response.status)
		except asyncio.TimeoutError:
			logger.debug(f"GET {url} timed out after {self.timeout}s")
			return FetchResult(FetchStatus.TIMEOUT)
		except aiohttp.ClientError as e:
			logger.debug(f"GET {url} failed: {e}")
			return FetchResult(FetchStatus.SERVER_ERROR)

	async def _get(self, url: str, headers: Optional[dict] = None) -> FetchResult:
		return await self.retry.run(lambda: self._get_once(url, headers))

	async def _list(self, path: str) -> list[dict]:
		headers = {"Accept": "application/vnd.github+json"}
		if self.token:
			headers["Authorization"] = f"Bearer {self.token}"

		result = await self._get(self.api_url(path), headers)
		if not result.ok:
			raise FetchError(path, result.status.value, f"after {result.attempts} attempt(s)")

		try:
			items = json.loads(result.content or "[]")
		except ValueError as e:
			raise FetchError(path, FetchStatus.ERROR.value, f"invalid listing: {e}") from e
		if not isinstance(items, list):
			raise FetchError(path, FetchStatus.ERROR.value, "listing is not an array")
		return items

	async def list_directories(self, path: str) -> list[str]:
		items = await self._list(path)
		return sorted(item["name"] for item in items if item.get("type") == "dir")

	async def list_files(self, path: str) -> list[RemoteFile]:
		items = await self._list(path)
		files = [
			RemoteFile(name=item["name"], path=item["path"], size=item.get("size") or 0)
			for item in items
			if item.get("type") == "file"
		]
		return sorted(files, key=lambda f: f.name)

	async def fetch(self, path: str) -> FetchResult:
		"""Single attempt at a file body; the sync engine applies its own retries."""
		return await self._get_once(self.raw_url(path))
