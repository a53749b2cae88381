"""
Remote sync - resumable population of the indexes from a remote tree.

Provides:
- RemoteIndexer: Phase/framework/file driven sync with checkpointing
- SyncState: Persisted checkpoint
- GitHubFetcher: ContentFetcher over a GitHub repository
"""

from .fetcher import ContentFetcher, FetchResult, FetchStatus, GitHubFetcher, RemoteFile, RetryPolicy
from .indexer import RemoteIndexer, SyncProgress, SyncStats
from .state import STATE_SCHEMA_VERSION, SyncPhase, SyncState

__all__ = [
	"ContentFetcher",
	"FetchResult",
	"FetchStatus",
	"GitHubFetcher",
	"RemoteFile",
	"RetryPolicy",
	"RemoteIndexer",
	"SyncProgress",
	"SyncStats",
	"STATE_SCHEMA_VERSION",
	"SyncPhase",
	"SyncState",
]
