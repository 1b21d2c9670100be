"""Source hosting boundary (GitHub REST v3)."""

from testgen.boundary.source_host.github_client import GitHubClient, PullRequest, TreeEntry

__all__ = ["GitHubClient", "PullRequest", "TreeEntry"]
