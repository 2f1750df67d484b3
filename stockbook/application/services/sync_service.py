"""Sync service: connection state and document persistence on GitHub.

Wraps `GitHubAPIClient` with:
- A connection state machine (disconnected -> connecting -> connected | error)
- A per-operation sync status (syncing -> success | error)
- A per-file SHA cache used as the compare-and-swap precondition on save
- Disconnect callbacks so dependents can drop their own state
- Encrypted token storage through `TokenCipher` and `CredentialStore`

Unlike the client, this service raises: failures surface as
`GitHubSyncError` subclasses.
"""

import re
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import httpx
import structlog
from pydantic import ValidationError

from stockbook.application.services.integrity_service import log_data_state
from stockbook.application.services.migration import migrate_document
from stockbook.application.services.validation import validate_github_settings
from stockbook.config import get_settings
from stockbook.core import clock
from stockbook.core.exceptions import (
    CorruptedDataError,
    GitHubErrorType,
    GitHubSyncError,
    NotConnectedError,
    SyncConflictError,
    ValidationFailedException,
)
from stockbook.domain.schemas.document import LedgerDocument
from stockbook.domain.schemas.github import CommitInfo, GitHubResult, RepositoryInfo
from stockbook.infrastructure.credential_store import CredentialStore
from stockbook.infrastructure.encryption import TokenCipher
from stockbook.infrastructure.github_api import GitHubAPIClient

settings = get_settings()
logger = structlog.get_logger(__name__)

DATA_FILE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+\.json$")
DEFAULT_COMMIT_MESSAGE = "Update business data"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class SyncStatus(str, Enum):
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


def to_sync_error(result: GitHubResult, expected_sha: Optional[str] = None) -> GitHubSyncError:
    if result.error_type == GitHubErrorType.CONFLICT_ERROR:
        return SyncConflictError(
            f"The data file was changed remotely since it was last loaded: {result.error}",
            expected_sha=expected_sha,
        )
    return GitHubSyncError(result.error or "GitHub request failed", result.error_type, result.status)


class GitHubSyncService:
    """One repository connection and the active data file within it."""

    def __init__(
        self,
        credential_store: Optional[CredentialStore] = None,
        cipher: Optional[TokenCipher] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credential_store = credential_store or CredentialStore()
        self.cipher = cipher or TokenCipher()
        self._transport = transport
        self._disconnect_callbacks: List[Callable[[], Any]] = []
        self._reset()

    def _reset(self) -> None:
        self.owner: Optional[str] = None
        self.repo: Optional[str] = None
        self.data_file: str = settings.DATA_FILE
        self.connection_status = ConnectionStatus.DISCONNECTED
        self.sync_status: Optional[SyncStatus] = None
        self.last_sync = None
        self.error: Optional[str] = None
        self.repository: Optional[RepositoryInfo] = None
        self._client: Optional[GitHubAPIClient] = None
        self._shas: Dict[str, Optional[str]] = {}

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self.connection_status == ConnectionStatus.CONNECTED

    def cached_sha(self, file_name: Optional[str] = None) -> Optional[str]:
        return self._shas.get(file_name or self.data_file)

    def _require_client(self) -> GitHubAPIClient:
        if not self.is_connected:
            raise NotConnectedError()
        return self._client

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self, owner: str, repo: str, token: str) -> RepositoryInfo:
        """Test the credentials and keep the client in memory on success.

        Owner, repo and data file are persisted in plain text; the token is
        not (see `remember_token`).
        """
        validation = validate_github_settings(owner, repo, token)
        if not validation.is_valid:
            raise ValidationFailedException("GitHub settings", validation.errors)

        self.connection_status = ConnectionStatus.CONNECTING
        self.error = None

        client = GitHubAPIClient(owner, repo, token, transport=self._transport)
        result = await client.test_connection()
        if not result.success:
            self.connection_status = ConnectionStatus.ERROR
            self.error = result.error
            logger.warning("github_connect_failed", owner=owner, repo=repo, error_type=result.error_type)
            raise GitHubSyncError(result.error or "Connection failed", result.error_type, result.status)

        self._client = client
        self.owner, self.repo = owner, repo
        self.repository = result.repository
        self.connection_status = ConnectionStatus.CONNECTED
        self.credential_store.update(owner=owner, repo=repo, data_file=self.data_file)

        if result.repository and not result.repository.has_write_access:
            logger.warning("github_read_only", owner=owner, repo=repo)
        logger.info("github_connected", owner=owner, repo=repo, data_file=self.data_file)
        return result.repository

    def remember_token(self, token: str, password: Optional[str] = None) -> None:
        """Encrypt the token and keep it in the credential store."""
        self.credential_store.update(encrypted_token=self.cipher.encrypt(token, password))

    async def restore(self, password: Optional[str] = None) -> RepositoryInfo:
        """Reconnect with the stored repository and token."""
        stored = self.credential_store.load()
        if not (stored.owner and stored.repo and stored.encrypted_token):
            raise NotConnectedError("No stored GitHub credentials")

        token = self.cipher.decrypt(stored.encrypted_token, password)
        if stored.data_file:
            self.data_file = stored.data_file
        return await self.connect(stored.owner, stored.repo, token)

    def register_disconnect_callback(self, callback: Callable[[], Any]) -> Callable[[], None]:
        self._disconnect_callbacks.append(callback)

        def unregister() -> None:
            if callback in self._disconnect_callbacks:
                self._disconnect_callbacks.remove(callback)

        return unregister

    def disconnect(self) -> None:
        """Notify dependents, forget stored credentials and cached SHAs."""
        for callback in list(self._disconnect_callbacks):
            try:
                callback()
            except Exception:
                logger.exception("disconnect_callback_failed", callback=getattr(callback, "__name__", repr(callback)))

        self.credential_store.clear()
        self._reset()
        logger.info("github_disconnected")

    # ------------------------------------------------------------------
    # Data files
    # ------------------------------------------------------------------

    def set_data_file(self, file_name: str) -> None:
        if not DATA_FILE_PATTERN.match(file_name or ""):
            raise ValidationFailedException(
                "data file",
                ["File name may only contain letters, numbers, '-' and '_' and must end with .json"],
            )
        if file_name == self.data_file:
            return

        self._shas.clear()
        self.data_file = file_name
        if self.is_connected:
            self.credential_store.update(data_file=file_name)
        logger.info("data_file_selected", data_file=file_name)

    async def list_data_files(self, path: str = "") -> List[str]:
        result = await self._require_client().list_data_files(path)
        if not result.success:
            raise to_sync_error(result)
        return result.files

    async def create_data_file(self, file_name: str) -> CommitInfo:
        if not DATA_FILE_PATTERN.match(file_name or ""):
            raise ValidationFailedException("data file", [f"Invalid data file name: {file_name}"])

        result = await self._require_client().create_file(file_name, commit_message=f"Create {file_name}")
        if not result.success:
            raise to_sync_error(result)
        self._shas[file_name] = result.commit.sha
        return result.commit

    # ------------------------------------------------------------------
    # Fetch / save
    # ------------------------------------------------------------------

    @contextmanager
    def _syncing(self, operation: str) -> Iterator[None]:
        self.sync_status = SyncStatus.SYNCING
        self.error = None
        with structlog.contextvars.bound_contextvars(operation=operation, data_file=self.data_file):
            try:
                yield
            except GitHubSyncError as e:
                self.sync_status = SyncStatus.ERROR
                self.error = e.message
                logger.error("sync_failed", error=e.message, error_type=e.error_type)
                raise
            except Exception as e:
                self.sync_status = SyncStatus.ERROR
                self.error = str(e)
                logger.exception("sync_failed", error=str(e))
                raise
            self.sync_status = SyncStatus.SUCCESS
            self.last_sync = clock.now()

    async def fetch_data(self) -> LedgerDocument:
        """Load, migrate and validate the active data file."""
        client = self._require_client()
        file_name = self.data_file

        with self._syncing("fetch"):
            result = await client.fetch_data(file_name)
            if not result.success:
                if result.error_type == GitHubErrorType.PARSE_ERROR:
                    raise CorruptedDataError(result.error, sha=result.sha)
                raise to_sync_error(result)

            self._shas[file_name] = result.sha
            try:
                document = LedgerDocument.model_validate(migrate_document(result.data))
            except (ValidationError, TypeError, ValueError, AttributeError) as e:
                raise CorruptedDataError(f"Data file does not match the ledger format: {e}", sha=result.sha) from e

            if result.is_new_file:
                logger.info("data_file_missing", hint="will be created on first save")
            log_data_state(document, "fetch")
            return document

    async def save_data(
        self,
        document: Union[LedgerDocument, Dict[str, Any]],
        commit_message: str = DEFAULT_COMMIT_MESSAGE,
    ) -> CommitInfo:
        """
        Write the document if the remote file is still at the cached SHA.

        Raises `SyncConflictError` when somebody else changed the file since
        it was fetched; re-fetch and merge, or use `force_save_data`.

        A PUT that lands on GitHub but whose response is lost (timeout) is
        retried with the old SHA and then reports a conflict even though the
        write went through. Re-fetching shows whether the remote already
        holds this document.
        """
        client = self._require_client()
        file_name = self.data_file
        payload = document.to_payload() if isinstance(document, LedgerDocument) else document

        with self._syncing("save"):
            sha = self._shas.get(file_name)
            if sha is None:
                current = await client.fetch_data(file_name)
                if not current.success:
                    if current.error_type == GitHubErrorType.PARSE_ERROR:
                        raise CorruptedDataError(current.error, sha=current.sha)
                    raise to_sync_error(current)
                sha = current.sha

            result = await client.update_data(file_name, payload, commit_message, sha=sha)
            if not result.success:
                raise to_sync_error(result, expected_sha=sha)

            self._shas[file_name] = result.commit.sha
            logger.info("data_saved", sha=result.commit.sha, commit=result.commit.commit_sha)
            return result.commit

    async def force_save_data(
        self,
        document: Union[LedgerDocument, Dict[str, Any]],
        commit_message: str = "Force overwrite data",
    ) -> CommitInfo:
        """Overwrite the remote file whatever it holds. Recovery path for corrupted data."""
        client = self._require_client()
        file_name = self.data_file
        payload = document.to_payload() if isinstance(document, LedgerDocument) else document

        with self._syncing("force_save"):
            result = await client.update_data(file_name, payload, commit_message, force_overwrite=True)
            if not result.success:
                raise to_sync_error(result)

            self._shas[file_name] = result.commit.sha
            logger.warning("data_force_saved", sha=result.commit.sha)
            return result.commit
