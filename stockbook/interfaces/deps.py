"""
Service Dependencies.
"""

from typing import Optional

import httpx

from stockbook.application.services.ledger_service import LedgerService
from stockbook.application.services.sync_service import GitHubSyncService
from stockbook.config import get_settings
from stockbook.domain.repositories.document_repository import DocumentRepository
from stockbook.domain.schemas.github import RepositoryInfo
from stockbook.infrastructure.credential_store import CredentialStore
from stockbook.infrastructure.encryption import TokenCipher

settings = get_settings()


def get_credential_store() -> CredentialStore:
    """Get credential store instance."""
    return CredentialStore(settings.CREDENTIALS_PATH)


def get_token_cipher() -> TokenCipher:
    """Get token cipher instance."""
    return TokenCipher(iterations=settings.PBKDF2_ITERATIONS)


def get_sync_service(transport: Optional[httpx.AsyncBaseTransport] = None) -> GitHubSyncService:
    """Get sync service instance."""
    return GitHubSyncService(
        credential_store=get_credential_store(),
        cipher=get_token_cipher(),
        transport=transport,
    )


async def connect_sync_service(
    service: GitHubSyncService,
    password: Optional[str] = None,
) -> RepositoryInfo:
    """Connect with GITHUB_* settings when present, else with stored credentials."""
    if settings.DATA_FILE:
        service.set_data_file(settings.DATA_FILE)

    if settings.GITHUB_OWNER and settings.GITHUB_REPO and settings.GITHUB_TOKEN:
        return await service.connect(settings.GITHUB_OWNER, settings.GITHUB_REPO, settings.GITHUB_TOKEN)
    return await service.restore(password)


async def load_ledger(repository: DocumentRepository) -> LedgerService:
    """Get a ledger over the repository's current document."""
    return LedgerService(await repository.fetch_data())
