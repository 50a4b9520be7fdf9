"""
GitHub API access for the review pipeline.

Wraps PyGithub's synchronous API in an async interface (every call runs in a
worker thread) and maps permission / not-found failures to GitHubAccessError
so the pipeline can degrade instead of aborting.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

from github import Auth, Github, GithubException, GithubIntegration

from app.models.review import ChangedFile, PullRequestInfo
from app.utils.logging import get_logger

logger = get_logger(__name__)

ACCESS_ERROR_STATUSES = (403, 404)


class GitHubClientError(Exception):
    """Base exception for GitHub API failures."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class GitHubAccessError(GitHubClientError):
    """The credentials lack permission (403) or the resource is not visible (404)."""


class GitHubAuthError(GitHubClientError):
    """Credentials are missing or malformed for the configured auth mode."""


def build_unified_diff(files: List[ChangedFile]) -> str:
    """Rebuild a unified diff for the whole PR from the per-file patches."""
    sections = []
    for f in files:
        header = f"diff --git a/{f.filename} b/{f.filename}"
        sections.append(f"{header}\n{f.patch}" if f.patch else header)
    return "\n".join(sections)


class GitHubClient:
    """
    Async facade over an authenticated PyGithub instance.

    Args:
        github: Authenticated ``github.Github`` instance
    """

    def __init__(self, github: Github):
        self._github = github

    async def _call(self, description: str, fn: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(fn)
        except GithubException as e:
            if e.status in ACCESS_ERROR_STATUSES:
                raise GitHubAccessError(f"{description} failed: {e.status}", status=e.status) from e
            raise GitHubClientError(f"{description} failed: {e.status} {e.data}", status=e.status) from e

    def _repo(self, owner: str, repo: str):
        return self._github.get_repo(f"{owner}/{repo}")

    async def get_pull_request(self, owner: str, repo: str, pr_number: int) -> PullRequestInfo:
        def _fetch():
            pr = self._repo(owner, repo).get_pull(pr_number)
            return PullRequestInfo(
                title=pr.title,
                body=pr.body,
                author=pr.user.login if pr.user else "unknown"
            )

        return await self._call(f"Fetching PR {owner}/{repo}#{pr_number}", _fetch)

    async def list_files(self, owner: str, repo: str, pr_number: int) -> List[ChangedFile]:
        def _fetch():
            pr = self._repo(owner, repo).get_pull(pr_number)
            return [
                ChangedFile(
                    filename=f.filename,
                    status=f.status,
                    additions=f.additions,
                    deletions=f.deletions,
                    patch=f.patch or ""
                )
                for f in pr.get_files()
            ]

        return await self._call(f"Listing files of {owner}/{repo}#{pr_number}", _fetch)

    async def create_issue_comment(self, owner: str, repo: str, pr_number: int, body: str) -> int:
        """Post a top-level PR comment and return its id."""
        def _post():
            issue = self._repo(owner, repo).get_issue(pr_number)
            return issue.create_comment(body).id

        return await self._call(f"Posting comment on {owner}/{repo}#{pr_number}", _post)

    async def add_comment_reaction(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        comment_id: int,
        content: str = "eyes"
    ) -> None:
        def _react():
            comment = self._repo(owner, repo).get_issue(pr_number).get_comment(comment_id)
            comment.create_reaction(content)

        await self._call(f"Reacting to comment {comment_id}", _react)


class OfflineGitHubClient(GitHubClient):
    """
    Stand-in used when no GitHub credentials are configured.

    Reads behave as if the PR is not visible, so the pipeline runs on
    placeholder data; writes are refused.
    """

    MOCK_FILE = ChangedFile(
        filename="test/file.js",
        status="modified",
        additions=1,
        deletions=0,
        patch='+ console.log("Mock file content");'
    )

    def __init__(self):
        pass

    async def get_pull_request(self, owner: str, repo: str, pr_number: int) -> PullRequestInfo:
        raise GitHubAccessError("No GitHub credentials configured", status=404)

    async def list_files(self, owner: str, repo: str, pr_number: int) -> List[ChangedFile]:
        return [self.MOCK_FILE.model_copy()]

    async def create_issue_comment(self, owner: str, repo: str, pr_number: int, body: str) -> int:
        raise GitHubAccessError("No GitHub credentials configured", status=403)

    async def add_comment_reaction(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        comment_id: int,
        content: str = "eyes"
    ) -> None:
        raise GitHubAccessError("No GitHub credentials configured", status=404)


class GitHubClientFactory:
    """
    Builds GitHub clients for the configured auth mode.

    ``app`` uses GitHub App installation tokens, ``pat`` a personal access
    token, and ``test`` the offline client.
    """

    def __init__(self, settings):
        self.app_id = settings.github_app_id
        self.private_key = _normalize_private_key(settings.github_private_key)
        self.token = settings.github_token
        self._installation_clients: Dict[int, GitHubClient] = {}
        self._token_client: Optional[GitHubClient] = None

    @property
    def auth_mode(self) -> str:
        if self.app_id and self.private_key:
            return "app"
        if self.token:
            return "pat"
        return "test"

    def for_installation(self, installation_id: Optional[Any]) -> GitHubClient:
        """
        Return a client scoped to a webhook's installation.

        Raises:
            GitHubAuthError: App mode with a missing or malformed installation
                id, or a private key that is not PEM
        """
        mode = self.auth_mode

        if mode == "app":
            installation_id = _parse_installation_id(installation_id)
            if installation_id not in self._installation_clients:
                if not _is_pem(self.private_key):
                    raise GitHubAuthError("GitHub private key is not in PEM format")
                app_auth = Auth.AppAuth(int(self.app_id), self.private_key)
                github = Github(auth=app_auth.get_installation_auth(installation_id))
                self._installation_clients[installation_id] = GitHubClient(github)
                logger.info(f"Created GitHub client for installation {installation_id}")
            return self._installation_clients[installation_id]

        if mode == "pat":
            if self._token_client is None:
                self._token_client = GitHubClient(Github(auth=Auth.Token(self.token)))
            return self._token_client

        logger.warning("No GitHub credentials configured, using offline client")
        return OfflineGitHubClient()

    async def count_installations(self) -> int:
        """Number of installations of the configured GitHub App, 0 outside app mode."""
        if self.auth_mode != "app" or not _is_pem(self.private_key):
            return 0

        def _count():
            integration = GithubIntegration(auth=Auth.AppAuth(int(self.app_id), self.private_key))
            return integration.get_installations().totalCount

        try:
            return await asyncio.to_thread(_count)
        except Exception as e:
            logger.warning(f"Failed to count app installations: {e}")
            return 0


def _normalize_private_key(key: Optional[str]) -> Optional[str]:
    if not key:
        return key
    return key.replace("\\n", "\n").strip()


def _is_pem(key: Optional[str]) -> bool:
    return bool(key) and key.startswith("-----BEGIN") and "PRIVATE KEY-----" in key


def _parse_installation_id(value: Any) -> int:
    if isinstance(value, bool):
        raise GitHubAuthError(f"Invalid installation id: {value!r}")
    try:
        installation_id = int(value)
    except (TypeError, ValueError):
        raise GitHubAuthError(f"Invalid installation id: {value!r}")
    if installation_id <= 0:
        raise GitHubAuthError(f"Invalid installation id: {value!r}")
    return installation_id


_github_factory: Optional[GitHubClientFactory] = None


def get_github_client_factory() -> GitHubClientFactory:
    """Get or create the global GitHub client factory."""
    global _github_factory
    if _github_factory is None:
        from app.config import settings
        _github_factory = GitHubClientFactory(settings)
    return _github_factory
