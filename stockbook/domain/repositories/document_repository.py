"""
Document Repository Interface.
Defines the contract for loading and storing the ledger document.
"""

from typing import Any, Dict, Protocol, Union

from stockbook.domain.schemas.document import LedgerDocument
from stockbook.domain.schemas.github import CommitInfo


class DocumentRepository(Protocol):
    """Interface for whole-document persistence with optimistic concurrency."""

    data_file: str

    async def fetch_data(self) -> LedgerDocument:
        """Load the active data file."""
        ...

    async def save_data(
        self,
        document: Union[LedgerDocument, Dict[str, Any]],
        commit_message: str = ...,
    ) -> CommitInfo:
        """Store the document if nobody changed it since it was loaded."""
        ...

    async def force_save_data(
        self,
        document: Union[LedgerDocument, Dict[str, Any]],
        commit_message: str = ...,
    ) -> CommitInfo:
        """Store the document unconditionally."""
        ...
