"""GitHub contents API client for a single JSON file used as the ledger database.

- Base64 content model of the contents API
- Blob SHA as the optimistic-concurrency precondition on writes
- Exponential backoff with jitter on transient failures
- Public methods never raise; failures come back as result records
"""

import asyncio
import base64
import json
import logging
import random
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx
from httpx import codes

from stockbook.config import get_settings
from stockbook.core import clock
from stockbook.core.exceptions import GitHubAPIError, GitHubErrorType
from stockbook.domain.schemas.document import COLLECTIONS, DOCUMENT_VERSION, empty_document_payload
from stockbook.domain.schemas.github import (
    CommitInfo,
    ConnectionResult,
    FetchResult,
    FileListResult,
    RateLimitResult,
    RepositoryInfo,
    UpdateResult,
)

settings = get_settings()
logger = logging.getLogger(__name__)

T = TypeVar("T")

NON_RETRYABLE_STATUSES = {
    codes.BAD_REQUEST,
    codes.UNAUTHORIZED,
    codes.FORBIDDEN,
    codes.NOT_FOUND,
    codes.CONFLICT,
    codes.UNPROCESSABLE_ENTITY,
}
NON_RETRYABLE_TYPES = {
    GitHubErrorType.AUTHENTICATION_ERROR,
    GitHubErrorType.PERMISSION_ERROR,
    GitHubErrorType.CONFLICT_ERROR,
    GitHubErrorType.PARSE_ERROR,
}


def classify_status(status: int, message: str) -> GitHubErrorType:
    """Map an HTTP error status to the error taxonomy."""
    if status == codes.UNAUTHORIZED:
        return GitHubErrorType.AUTHENTICATION_ERROR
    if status == codes.FORBIDDEN:
        if "rate limit" in (message or "").lower():
            return GitHubErrorType.RATE_LIMIT_ERROR
        return GitHubErrorType.PERMISSION_ERROR
    if status == codes.NOT_FOUND:
        return GitHubErrorType.NOT_FOUND_ERROR
    if status == codes.CONFLICT:
        return GitHubErrorType.CONFLICT_ERROR
    if status == codes.UNPROCESSABLE_ENTITY:
        return GitHubErrorType.VALIDATION_ERROR
    if status >= 500:
        return GitHubErrorType.SERVER_ERROR
    return GitHubErrorType.API_ERROR


def encode_document(data: Dict[str, Any]) -> str:
    """Pretty-printed UTF-8 JSON, Base64 encoded for the contents API."""
    text = json.dumps(data, indent=2, ensure_ascii=False)
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def normalize_document(data: Dict[str, Any]) -> Dict[str, Any]:
    """Stamp metadata and make sure every collection exists before a write."""
    metadata = dict(data.get("metadata") or {})
    metadata["version"] = metadata.get("version") or DOCUMENT_VERSION
    metadata["lastUpdated"] = clock.now().isoformat()

    normalized = {**data, "metadata": metadata}
    for field in COLLECTIONS:
        if not isinstance(normalized.get(field), list):
            normalized[field] = []
    return normalized


class GitHubAPIClient:
    """Client for a single repository's contents API.

    A new httpx client is opened per request; pass `transport` to route
    requests through a custom (e.g. mock) transport.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.owner = owner
        self.repo = repo
        self.token = token
        self.base_url = settings.GITHUB_API_URL.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": settings.GITHUB_API_VERSION,
        }
        self.timeout = settings.REQUEST_TIMEOUT
        self.max_retries = settings.MAX_RETRIES
        self.retry_delay = settings.RETRY_BASE_DELAY
        self.max_jitter = settings.RETRY_MAX_JITTER
        self._transport = transport

    @property
    def repo_url(self) -> str:
        return f"{self.base_url}/repos/{self.owner}/{self.repo}"

    def contents_url(self, path: str = "") -> str:
        return f"{self.repo_url}/contents/{path.lstrip('/')}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one request, translating transport failures into typed errors."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.request(method, url, headers=self.headers, **kwargs)
        except httpx.TimeoutException as e:
            raise GitHubAPIError(
                f"Request timeout after {self.timeout:g} seconds",
                GitHubErrorType.TIMEOUT,
            ) from e
        except httpx.TransportError as e:
            raise GitHubAPIError(
                "Network request failed. Please check your internet connection.",
                GitHubErrorType.NETWORK_ERROR,
            ) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> httpx.Response:
        if response.is_success:
            return response

        error_data = None
        try:
            error_data = response.json()
            message = error_data.get("message") if isinstance(error_data, dict) else None
            message = message or response.reason_phrase
        except ValueError:
            message = response.reason_phrase or "Unknown error"

        status = response.status_code
        raise GitHubAPIError(
            message,
            classify_status(status, message),
            status=status,
            data=error_data if isinstance(error_data, dict) else None,
        )

    @staticmethod
    def _is_retryable(error: GitHubAPIError) -> bool:
        if error.status in NON_RETRYABLE_STATUSES:
            return False
        return error.error_type not in NON_RETRYABLE_TYPES

    def _backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** (attempt - 1)) + random.uniform(0, self.max_jitter)

    async def _with_retry(self, operation: Callable[[], Awaitable[T]], context: str) -> T:
        """Run `operation` up to max_retries times, backing off between attempts."""
        last_error: Optional[GitHubAPIError] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await operation()
            except GitHubAPIError as e:
                last_error = e
                if not self._is_retryable(e):
                    raise
                if attempt == self.max_retries:
                    logger.error(f"{context}: failed after {self.max_retries} attempts: {e.message}")
                    raise

                delay = self._backoff(attempt)
                logger.warning(
                    f"{context}: attempt {attempt}/{self.max_retries} failed "
                    f"({e.error_type.value}), retrying in {delay:.2f}s: {e.message}"
                )
                await asyncio.sleep(delay)

        raise last_error

    async def _latest_sha(self, file_name: str, tolerate_errors: bool = False) -> Optional[str]:
        """SHA of the file as it is on the remote now, None if it does not exist."""
        try:
            response = await self._request("GET", self.contents_url(file_name))
            if response.status_code == codes.NOT_FOUND:
                logger.info(f"{file_name} doesn't exist yet, a new file will be created")
                return None
            return self._raise_for_status(response).json().get("sha")
        except GitHubAPIError as e:
            if not tolerate_errors:
                raise
            logger.info(f"Force overwrite - could not fetch SHA of {file_name} ({e.message}), will create new file")
            return None

    async def test_connection(self) -> ConnectionResult:
        """Check the token can see the repository and whether it can push."""

        async def operation() -> RepositoryInfo:
            response = await self._request("GET", self.repo_url)
            repo_data = self._raise_for_status(response).json()
            permissions = repo_data.get("permissions") or {}
            return RepositoryInfo(
                name=repo_data.get("name", self.repo),
                full_name=repo_data.get("full_name"),
                private=repo_data.get("private"),
                permissions=permissions,
                has_write_access=bool(permissions.get("push", False)),
            )

        try:
            repository = await self._with_retry(operation, "GitHub Connection Test")
            return ConnectionResult(repository=repository)
        except Exception as e:
            logger.error(f"Connection test for {self.owner}/{self.repo} failed: {e}")
            return ConnectionResult.from_error(e)

    async def fetch_data(self, file_name: Optional[str] = None) -> FetchResult:
        """
        Read and decode the data file.

        A missing file yields a fresh empty document (`is_new_file`), an empty
        file yields one too (`was_empty`). Content that is not a JSON object
        fails with PARSE_ERROR and still reports the file's SHA so the caller
        can overwrite it.
        """
        file_name = file_name or settings.DATA_FILE

        async def operation() -> FetchResult:
            response = await self._request("GET", self.contents_url(file_name))
            if response.status_code == codes.NOT_FOUND:
                return FetchResult(data=empty_document_payload(), sha=None, is_new_file=True)

            file_data = self._raise_for_status(response).json()
            sha = file_data.get("sha")

            try:
                content = base64.b64decode(file_data.get("content") or "").decode("utf-8")
            except (ValueError, UnicodeDecodeError) as e:
                raise GitHubAPIError(
                    f"Failed to decode data file: {e}. SHA: {sha}",
                    GitHubErrorType.PARSE_ERROR,
                    sha=sha,
                ) from e

            if not content.strip():
                logger.warning(f"{file_name} is empty, returning empty data structure")
                return FetchResult(data=empty_document_payload(), sha=sha, was_empty=True)

            try:
                data = json.loads(content)
            except json.JSONDecodeError as e:
                raise GitHubAPIError(
                    f"Failed to parse data file: {e.msg}. SHA: {sha}",
                    GitHubErrorType.PARSE_ERROR,
                    sha=sha,
                ) from e
            if not isinstance(data, dict):
                raise GitHubAPIError(
                    f"Failed to parse data file: expected a JSON object. SHA: {sha}",
                    GitHubErrorType.PARSE_ERROR,
                    sha=sha,
                )

            return FetchResult(data=data, sha=sha)

        try:
            return await self._with_retry(operation, "Fetch Data")
        except Exception as e:
            logger.error(f"Fetching {file_name} failed: {e}")
            return FetchResult.from_error(e, sha=getattr(e, "sha", None))

    async def update_data(
        self,
        file_name: Optional[str],
        data: Dict[str, Any],
        commit_message: str = "Update data",
        sha: Optional[str] = None,
        force_overwrite: bool = False,
    ) -> UpdateResult:
        """
        Write the whole document.

        Args:
            sha: expected blob SHA. When given it is sent as-is, so a remote
                change since that version fails with CONFLICT_ERROR. When
                None the current SHA is looked up (first write of a session).
            force_overwrite: ignore conflicts and replace whatever is there.
        """
        file_name = file_name or settings.DATA_FILE
        if not isinstance(data, dict):
            return UpdateResult(
                success=False,
                error="Invalid data: must be a valid object",
                error_type=GitHubErrorType.VALIDATION_ERROR,
            )

        logger.info(
            f"Attempting to {'force overwrite' if force_overwrite else 'update'} "
            f"{file_name} in {self.owner}/{self.repo}"
        )

        async def operation() -> CommitInfo:
            if force_overwrite:
                current_sha = await self._latest_sha(file_name, tolerate_errors=True)
            elif sha is None:
                current_sha = await self._latest_sha(file_name)
            else:
                current_sha = sha

            payload = {
                "message": commit_message or f"Update {file_name}",
                "content": encode_document(normalize_document(data)),
            }
            if current_sha:
                payload["sha"] = current_sha

            response = await self._request("PUT", self.contents_url(file_name), json=payload)
            result = self._raise_for_status(response).json()
            commit = result.get("commit") or {}
            return CommitInfo(
                sha=(result.get("content") or {}).get("sha"),
                commit_sha=commit.get("sha"),
                message=commit.get("message"),
                url=commit.get("html_url"),
            )

        try:
            commit = await self._with_retry(operation, "Update Data")
            logger.info(f"Updated {file_name}, new SHA {commit.sha}")
            return UpdateResult(commit=commit)
        except Exception as e:
            logger.error(f"Updating {file_name} failed: {e}")
            return UpdateResult.from_error(e)

    async def create_file(
        self,
        file_name: str,
        data: Optional[Dict[str, Any]] = None,
        commit_message: str = "Create data file",
    ) -> UpdateResult:
        """Create a new data file holding an empty document (merged with `data`)."""
        initial_data = {**empty_document_payload(), **(data or {})}

        async def operation() -> CommitInfo:
            response = await self._request(
                "PUT",
                self.contents_url(file_name),
                json={"message": commit_message, "content": encode_document(initial_data)},
            )
            result = self._raise_for_status(response).json()
            commit = result.get("commit") or {}
            return CommitInfo(
                sha=(result.get("content") or {}).get("sha"),
                commit_sha=commit.get("sha"),
                message=commit.get("message"),
                url=commit.get("html_url"),
            )

        try:
            return UpdateResult(commit=await self._with_retry(operation, "Create File"))
        except Exception as e:
            logger.error(f"Creating {file_name} failed: {e}")
            return UpdateResult.from_error(e)

    async def list_data_files(self, path: str = "") -> FileListResult:
        """Names of the JSON files in a repository directory."""

        async def operation() -> FileListResult:
            response = await self._request("GET", self.contents_url(path))
            entries = self._raise_for_status(response).json()
            if not isinstance(entries, list):
                entries = [entries]
            files = [
                entry["name"]
                for entry in entries
                if entry.get("type") == "file" and entry.get("name", "").endswith(".json")
            ]
            return FileListResult(files=sorted(files))

        try:
            return await self._with_retry(operation, "List Data Files")
        except Exception as e:
            logger.error(f"Listing data files failed: {e}")
            return FileListResult.from_error(e)

    async def get_rate_limit(self) -> RateLimitResult:
        try:
            response = await self._request("GET", f"{self.base_url}/rate_limit")
            return RateLimitResult(data=self._raise_for_status(response).json())
        except Exception as e:
            logger.error(f"Failed to get rate limit: {e}")
            return RateLimitResult.from_error(e)
