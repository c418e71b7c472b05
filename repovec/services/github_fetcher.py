"""GitHub repository lister for commits, trees and file contents"""

import fnmatch
import logging
import os
from base64 import b64decode
from datetime import datetime

import httpx

from repovec.exceptions import ProviderError
from repovec.models.records import CommitRecord, RepoTree, TreeEntry
from repovec.models.sources_config import GitHubConfig, RepositorySource

logger = logging.getLogger(__name__)

COMMITS_PER_PAGE = 100


class GitHubFetchError(ProviderError):
    """Raised when GitHub API fetch fails"""

    pass


class GitHubFetcher:
    """List commits, trees and files of GitHub repositories"""

    def __init__(
        self,
        github_config: GitHubConfig | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize GitHub fetcher

        Args:
            github_config: GitHub API configuration
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.github_config = github_config or GitHubConfig()
        self.token = self.github_config.token or os.getenv("GITHUB_TOKEN")
        self.api_url = self.github_config.api_url.rstrip("/")

        # Setup HTTP client with auth if token is available
        headers = {"Accept": "application/vnd.github.v3+json"}
        if self.token:
            # Use 'token' prefix for classic GitHub tokens (ghp_*)
            # Use 'Bearer' prefix for fine-grained tokens (github_pat_*)
            prefix = "Bearer" if self.token.startswith("github_pat_") else "token"
            headers["Authorization"] = f"{prefix} {self.token}"

        self.client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            transport=transport,
        )

    async def _get_json(self, url: str, params: dict | None = None):
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise GitHubFetchError(
                f"GitHub API returned {e.response.status_code} for {url}", e
            ) from e
        except httpx.HTTPError as e:
            raise GitHubFetchError(f"GitHub request failed for {url}: {e}", e) from e

    async def get_default_branch(self, owner: str, repo: str) -> str:
        """Get the default branch of a repository"""
        url = f"{self.api_url}/repos/{owner}/{repo}"

        try:
            data = await self._get_json(url)
            return data["default_branch"]
        except (GitHubFetchError, KeyError) as e:
            logger.error(f"Failed to get default branch for {owner}/{repo}: {e}")
            return "main"  # Fallback to main

    async def list_commits(
        self,
        owner: str,
        repo: str,
        since: datetime | None = None,
        limit: int = 100,
        branch: str | None = None,
    ) -> list[CommitRecord]:
        """
        List commits newest first

        Args:
            owner: Repository owner
            repo: Repository name
            since: Only commits after this time (all when None)
            limit: Maximum number of commits returned
            branch: Branch to list (default branch when None)

        Returns:
            List of CommitRecord objects
        """
        url = f"{self.api_url}/repos/{owner}/{repo}/commits"
        commits: list[CommitRecord] = []
        page = 1

        while len(commits) < limit:
            params: dict[str, str | int] = {"per_page": COMMITS_PER_PAGE, "page": page}
            if since is not None:
                params["since"] = since.isoformat()
            if branch:
                params["sha"] = branch

            data = await self._get_json(url, params)
            if not data:
                break

            for entry in data:
                commits.append(self._parse_commit(entry))
                if len(commits) >= limit:
                    break

            if len(data) < COMMITS_PER_PAGE:
                break
            page += 1

        logger.debug(f"Listed {len(commits)} commits for {owner}/{repo}")
        return commits

    def _parse_commit(self, entry: dict) -> CommitRecord:
        commit = entry.get("commit") or {}
        author = commit.get("author") or {}
        committer = commit.get("committer") or {}
        return CommitRecord(
            sha=entry["sha"],
            author=author.get("name"),
            date=author.get("date") or committer.get("date"),
            message=commit.get("message", ""),
            url=entry.get("html_url"),
        )

    async def get_tree(self, owner: str, repo: str, branch: str) -> RepoTree:
        """
        Get the complete file tree of a repository

        Args:
            owner: Repository owner
            repo: Repository name
            branch: Branch name

        Returns:
            RepoTree with the tree hash and all entries

        Raises:
            GitHubFetchError: If the request fails or GitHub truncated the listing
        """
        url = f"{self.api_url}/repos/{owner}/{repo}/git/trees/{branch}"
        data = await self._get_json(url, {"recursive": "1"})

        tree = RepoTree(
            sha=data.get("sha"),
            entries=[TreeEntry(**entry) for entry in data.get("tree", [])],
            truncated=data.get("truncated", False),
        )
        if tree.truncated:
            # A partial listing cannot tell deleted paths from missing ones
            raise GitHubFetchError(
                f"GitHub truncated the tree listing of {owner}/{repo}@{branch} "
                f"({len(tree.entries)} entries returned)"
            )
        return tree

    async def list_tree(self, owner: str, repo: str, branch: str | None = None) -> list[str]:
        """List blob paths of a branch (default branch when None)"""
        branch = branch or await self.get_default_branch(owner, repo)
        tree = await self.get_tree(owner, repo, branch)
        return tree.blob_paths()

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str) -> str | None:
        """
        Fetch content for a single file

        Returns:
            Decoded text, or None when the file is missing or not UTF-8 text
        """
        url = f"{self.api_url}/repos/{owner}/{repo}/contents/{path}"

        try:
            data = await self._get_json(url, {"ref": ref})
        except GitHubFetchError as e:
            if isinstance(e.cause, httpx.HTTPStatusError) and e.cause.response.status_code == 404:
                logger.warning(f"File not found: {owner}/{repo}/{path}")
                return None
            raise

        if not isinstance(data, dict) or data.get("encoding") not in (None, "base64"):
            return None

        try:
            return b64decode(data.get("content", "")).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            logger.debug(f"Skipping non-text file {path}")
            return None

    async def get_last_commit_date(self, owner: str, repo: str, path: str) -> datetime | None:
        """Date of the newest commit touching path"""
        url = f"{self.api_url}/repos/{owner}/{repo}/commits"
        data = await self._get_json(url, {"path": path, "per_page": 1})
        if not data:
            return None
        return self._parse_commit(data[0]).date

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()


def select_files(tree: RepoTree, source: RepositorySource) -> list[TreeEntry]:
    """
    Filter tree entries by the source's include and exclude glob patterns

    Args:
        tree: Repository tree
        source: Repository source configuration

    Returns:
        At most source.max_files blob entries under source.max_file_bytes
    """
    matching_files = []

    for entry in tree.entries:
        # Only consider blob (file) entries
        if entry.type != "blob":
            continue

        path = entry.path
        if not any(fnmatch.fnmatch(path, pattern) for pattern in source.paths):
            continue
        if any(fnmatch.fnmatch(path, pattern) for pattern in source.exclude):
            continue
        if entry.size is not None and entry.size > source.max_file_bytes:
            logger.debug(f"Skipping {path}: {entry.size} bytes")
            continue

        matching_files.append(entry)
        if len(matching_files) >= source.max_files:
            break

    return matching_files
