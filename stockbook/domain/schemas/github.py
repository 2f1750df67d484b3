"""Result records returned by the GitHub contents client.

The client never raises across its public methods; every call resolves to
one of these with `success` set accordingly.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from stockbook.core.exceptions import GitHubAPIError, GitHubErrorType


class GitHubResult(BaseModel):
    success: bool = True
    error: Optional[str] = None
    error_type: Optional[GitHubErrorType] = None
    status: Optional[int] = None

    @classmethod
    def from_error(cls, exc: Exception, **extra: Any):
        if isinstance(exc, GitHubAPIError):
            return cls(
                success=False,
                error=exc.message,
                error_type=exc.error_type,
                status=exc.status,
                **extra,
            )
        return cls(
            success=False,
            error=str(exc),
            error_type=GitHubErrorType.UNKNOWN_ERROR,
            **extra,
        )


class RepositoryInfo(BaseModel):
    name: str
    full_name: Optional[str] = None
    private: Optional[bool] = None
    permissions: Dict[str, bool] = {}
    has_write_access: bool = False


class ConnectionResult(GitHubResult):
    repository: Optional[RepositoryInfo] = None


class FetchResult(GitHubResult):
    data: Optional[Dict[str, Any]] = None
    sha: Optional[str] = None
    is_new_file: bool = False
    was_empty: bool = False


class CommitInfo(BaseModel):
    sha: Optional[str] = None  # new blob SHA of the file
    commit_sha: Optional[str] = None
    message: Optional[str] = None
    url: Optional[str] = None


class UpdateResult(GitHubResult):
    commit: Optional[CommitInfo] = None


class FileListResult(GitHubResult):
    files: List[str] = []


class RateLimitResult(GitHubResult):
    data: Optional[Dict[str, Any]] = None
