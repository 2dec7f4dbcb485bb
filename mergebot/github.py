"""Client for the parts of the GitHub REST API the bot relies on."""

from __future__ import annotations

import contextlib
import json
from dataclasses import dataclass
from typing import Any

import aiohttp

API_URL = "https://api.github.com"
USER_AGENT = "github-merge-bot/1.0"
ACCEPT = "application/vnd.github.v3+json"


class GitHubError(Exception):
    """Raised when a GitHub API call fails or returns an unexpected payload."""


@dataclass(frozen=True)
class Repository:
    """A repository as the bot sees it."""

    id: int
    name: str
    full_name: str
    owner: str
    default_branch: str


@dataclass(frozen=True)
class PullRequest:
    """The details of a pull request the bot acts on."""

    id: int
    number: int
    title: str
    head_branch: str
    base_branch: str
    repository: Repository
    state: str
    mergeable: bool | None


@dataclass(frozen=True)
class _Response:
    status: int
    reason: str
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def status_line(self) -> str:
        return f"{self.status} {self.reason}".strip()

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except ValueError as exc:
            raise GitHubError(f"invalid JSON in response: {exc}") from exc


def _field(data: Any, key: str, kind: type) -> Any:
    if not isinstance(data, dict) or key not in data:
        raise GitHubError(f"missing field {key!r} in response")
    value = data[key]
    if kind is int and isinstance(value, bool):
        raise GitHubError(f"field {key!r} has the wrong type")
    if not isinstance(value, kind):
        raise GitHubError(f"field {key!r} has the wrong type")
    return value


def _repository_from(data: Any) -> Repository:
    owner = _field(data, "owner", dict)
    return Repository(
        id=_field(data, "id", int),
        name=_field(data, "name", str),
        full_name=_field(data, "full_name", str),
        owner=_field(owner, "login", str),
        default_branch=_field(data, "default_branch", str),
    )


def _pull_request_from(data: Any) -> PullRequest:
    head = _field(data, "head", dict)
    base = _field(data, "base", dict)
    _repository_from(_field(head, "repo", dict))
    mergeable = data.get("mergeable") if isinstance(data, dict) else None
    if mergeable is not None and not isinstance(mergeable, bool):
        raise GitHubError("field 'mergeable' has the wrong type")
    return PullRequest(
        id=_field(data, "id", int),
        number=_field(data, "number", int),
        title=_field(data, "title", str),
        head_branch=_field(head, "ref", str),
        base_branch=_field(base, "ref", str),
        repository=_repository_from(_field(base, "repo", dict)),
        state=_field(data, "state", str),
        mergeable=mergeable,
    )


class GitHubClient:
    """Authenticated access to the GitHub REST API."""

    def __init__(
        self,
        token: str,
        *,
        api_url: str = API_URL,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._headers = {
            "Authorization": f"Bearer {token}",
            "User-Agent": USER_AGENT,
            "Accept": ACCEPT,
        }

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP session if this client opened it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> _Response:
        url = f"{self._api_url}/{path}"
        try:
            async with self._get_session().request(
                method, url, json=payload, headers=self._headers
            ) as resp:
                body = await resp.read()
                return _Response(resp.status, resp.reason or "", body)
        except aiohttp.ClientError as exc:
            raise GitHubError(f"request to {url} failed: {exc}") from exc

    async def get_pull_request(self, repo: str, pr_number: int) -> PullRequest:
        """Fetch a pull request of ``repo`` (``owner/name``)."""
        response = await self._request("GET", f"repos/{repo}/pulls/{pr_number}")
        if not response.ok:
            raise GitHubError(f"Failed to get PR: {response.status_line}")
        return _pull_request_from(response.json())

    async def create_try_branch(
        self, repo: str, head_branch: str, base_branch: str, try_branch: str
    ) -> None:
        """Recreate ``try_branch`` from ``base_branch`` and merge ``head_branch`` into it."""
        base_sha = await self._branch_sha(repo, base_branch)
        head_sha = await self._branch_sha(repo, head_branch)
        with contextlib.suppress(GitHubError):
            await self._delete_branch(repo, try_branch)
        await self._create_branch(repo, try_branch, base_sha)
        await self._merge_branch(repo, try_branch, head_sha)

    async def _branch_sha(self, repo: str, branch: str) -> str:
        response = await self._request("GET", f"repos/{repo}/branches/{branch}")
        if not response.ok:
            raise GitHubError(f"Failed to get branch {branch}: {response.status_line}")
        data = response.json()
        commit = data.get("commit") if isinstance(data, dict) else None
        sha = commit.get("sha") if isinstance(commit, dict) else None
        if not isinstance(sha, str):
            raise GitHubError(f"No SHA found for branch {branch}")
        return sha

    async def _create_branch(self, repo: str, branch: str, sha: str) -> None:
        response = await self._request(
            "POST",
            f"repos/{repo}/git/refs",
            {"ref": f"refs/heads/{branch}", "sha": sha},
        )
        if not response.ok:
            raise GitHubError(f"Failed to create branch {branch}: {response.status_line}")

    async def _merge_branch(self, repo: str, target_branch: str, source_sha: str) -> None:
        response = await self._request(
            "POST",
            f"repos/{repo}/merges",
            {
                "base": target_branch,
                "head": source_sha,
                "commit_message": f"Try merge into {target_branch}",
            },
        )
        if not response.ok:
            raise GitHubError(
                f"Failed to merge into {target_branch}: {response.status_line}"
            )

    async def _delete_branch(self, repo: str, branch: str) -> None:
        # A missing branch is not an error; only transport failures raise.
        await self._request("DELETE", f"repos/{repo}/git/refs/heads/{branch}")

    async def get_branch_status(self, repo: str, branch: str) -> str:
        """Return the combined commit status of the branch head."""
        sha = await self._branch_sha(repo, branch)
        response = await self._request("GET", f"repos/{repo}/commits/{sha}/status")
        if not response.ok:
            return "unknown"
        data = response.json()
        state = data.get("state") if isinstance(data, dict) else None
        return state if isinstance(state, str) else "pending"

    async def comment_on_pr(self, repo: str, pr_number: int, comment: str) -> None:
        """Post ``comment`` on the pull request."""
        response = await self._request(
            "POST", f"repos/{repo}/issues/{pr_number}/comments", {"body": comment}
        )
        if not response.ok:
            raise GitHubError(f"Failed to comment on PR: {response.status_line}")