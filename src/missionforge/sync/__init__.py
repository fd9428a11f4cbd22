"""Remote hosting synchronization: branch push and pull request workflow."""

from missionforge.sync.github_client import GitHubClient, RemoteCredentials
from missionforge.sync.remote import RemoteSyncClient

__all__ = [
    "GitHubClient",
    "RemoteCredentials",
    "RemoteSyncClient",
]
