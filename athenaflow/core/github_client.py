# athenaflow/core/github_client.py
"""
Synchronous GitHub REST v3 client plus the async repository applier.

The client maps all API errors to structured dictionary responses
rather than raising exceptions (except for critical connection
failures). The applier runs it off the event loop and turns a failed
result into ApplyError.
"""

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import requests

from athenaflow.core.cancellation import CancellationToken, ensure_token
from athenaflow.core.errors import ApplyError

logger = logging.getLogger(__name__)

CancelCheck = Callable[[], bool]


def _cancelled_result() -> Dict[str, Any]:
    return {"ok": False, "error": "Cancelled before the request was sent.", "details": {"cancelled": True}}


# ============================================================
# Exceptions
# ============================================================

class GitHubClientError(Exception):
    """Raised when GitHub cannot be reached or the client is misconfigured."""
    pass

# ============================================================
# Configuration
# ============================================================

@dataclass
class GitHubClientConfig:
    token: str
    default_owner: Optional[str] = None

    def __post_init__(self):
        if not self.token:
            raise GitHubClientError("A GitHub token is required.")


@dataclass(frozen=True)
class CommitRef:
    """Result of a successful apply."""
    sha: str
    branch: str
    url: Optional[str] = None

# ============================================================
# GitHub Client
# ============================================================

class GitHubClient:
    """
    Blocking client for the parts of the GitHub REST API the deploy
    pipeline needs: repository metadata, tree listing, file reads and
    single-commit writes.

    Every public method returns a result dict, either
    {"ok": True, "data": ...} or {"ok": False, "error": str, "details": {...}}.
    Only transport failures raise (GitHubClientError).
    """

    BASE_URL = "https://api.github.com"
    API_VERSION = "2022-11-28"
    REQUEST_TIMEOUT = 15

    MAX_RETRIES = 3
    RETRY_STATUS_CODES = {502, 503, 504}
    BACKOFF_FACTOR = 0.5

    def __init__(self, config: Union[Dict[str, Any], GitHubClientConfig], session: Optional[requests.Session] = None):
        if isinstance(config, GitHubClientConfig):
            self.config = config
        elif isinstance(config, dict):
            self.config = GitHubClientConfig(token=config.get("token"), default_owner=config.get("owner"))
        else:
            raise TypeError(f"Unsupported GitHub config type: {type(config).__name__}")

        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {self.config.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self.API_VERSION,
        })

    # ============================================================
    # Transport
    # ============================================================

    def _retry_delay(self, response: requests.Response, attempt: int) -> Optional[float]:
        """Seconds to wait before retrying `response`, or None to give up."""
        if attempt >= self.MAX_RETRIES:
            return None
        if response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0":
            reset_at = int(response.headers.get("X-RateLimit-Reset", 0))
            return max(0, reset_at - int(time.time())) + 1
        if response.status_code in self.RETRY_STATUS_CODES:
            return self.BACKOFF_FACTOR * (2 ** attempt)
        return None

    def _req(self, method: str, endpoint: str, should_cancel: Optional[CancelCheck] = None, **kwargs) -> Dict[str, Any]:
        """
        Send one request, retrying rate limits and 5xx responses.

        `should_cancel` is polled before every attempt and every backoff
        sleep; once it returns True no further request is sent.
        """
        url = f"{self.BASE_URL}{endpoint}"
        response = None

        for attempt in range(self.MAX_RETRIES + 1):
            if should_cancel and should_cancel():
                logger.info("Skipping GitHub %s %s: cancelled", method, endpoint)
                return _cancelled_result()
            try:
                response = self.session.request(method, url, timeout=self.REQUEST_TIMEOUT, **kwargs)
            except requests.exceptions.RequestException as e:
                logger.error("Request to GitHub %s failed: %s", endpoint, e)
                raise GitHubClientError(f"Network error communicating with GitHub: {e}") from e

            delay = self._retry_delay(response, attempt)
            if delay is None:
                break
            logger.warning("GitHub returned %d for %s; retrying in %.1fs", response.status_code, endpoint, delay)
            if should_cancel and should_cancel():
                return _cancelled_result()
            time.sleep(delay)

        if not response.ok:
            return self._error_result(response, endpoint)
        if response.status_code == 204:
            return {"ok": True, "data": None}
        return {"ok": True, "data": response.json()}

    @staticmethod
    def _error_result(response: requests.Response, endpoint: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            payload = {"message": response.text or f"HTTP {response.status_code}"}

        message = payload.get("message") or "Unknown API error"
        logger.error("GitHub %s failed with %d: %s", endpoint, response.status_code, message)
        return {
            "ok": False,
            "error": message,
            "details": {
                "status": response.status_code,
                "endpoint": endpoint,
                "errors": payload.get("errors", []),
            },
        }

    # ============================================================
    # Helpers
    # ============================================================

    def _get_owner_repo(self, repository: str) -> Tuple[str, str]:
        owner, _, name = repository.partition("/")
        if name:
            return owner, name
        if not self.config.default_owner:
            raise GitHubClientError(f"Repository '{repository}' needs an owner (owner/name).")
        return self.config.default_owner, repository

    @staticmethod
    def _sanitize_content(content: str) -> str:
        return content.replace("\r\n", "\n")

    # ============================================================
    # Public API: Repository Metadata
    # ============================================================

    def get_repository(self, repo_full_name: str) -> Dict[str, Any]:
        owner, repo = self._get_owner_repo(repo_full_name)
        return self._req("GET", f"/repos/{owner}/{repo}")

    def get_default_branch(self, repo_full_name: str) -> Dict[str, Any]:
        response = self.get_repository(repo_full_name)
        if not response["ok"]:
            return response
        return {"ok": True, "data": response["data"].get("default_branch") or "main"}

    def list_paths(self, repo_full_name: str, branch: Optional[str] = None) -> Dict[str, Any]:
        """
        Lists every file path in the branch's tree.
        Returns {"ok": True, "data": ["path", ...]}.
        """
        owner, repo = self._get_owner_repo(repo_full_name)
        if not branch:
            branch_res = self.get_default_branch(repo_full_name)
            if not branch_res["ok"]:
                return branch_res
            branch = branch_res["data"]

        response = self._req("GET", f"/repos/{owner}/{repo}/git/trees/{branch}", params={"recursive": "1"})
        if not response["ok"]:
            return response

        data = response["data"] or {}
        if data.get("truncated"):
            logger.warning("Tree listing for %s@%s was truncated by GitHub", repo_full_name, branch)
        paths = [entry["path"] for entry in data.get("tree", []) if entry.get("type") == "blob"]
        return {"ok": True, "data": paths}

    def get_file_content(self, repo_full_name: str, path_in_repo: str, branch: Optional[str] = None) -> Dict[str, Any]:
        """
        Reads one file as text.
        Returns {"ok": True, "data": None} if the file does not exist.
        """
        owner, repo = self._get_owner_repo(repo_full_name)
        params = {"ref": branch} if branch else {}
        response = self._req("GET", f"/repos/{owner}/{repo}/contents/{path_in_repo}", params=params)

        if response["ok"]:
            data = response["data"]
            if not isinstance(data, dict) or data.get("type") != "file":
                return {"ok": False, "error": "Path is not a file."}
            raw = base64.b64decode(data.get("content") or "")
            return {"ok": True, "data": raw.decode("utf-8", errors="replace")}

        if response.get("details", {}).get("status") == 404:
            return {"ok": True, "data": None}
        return response

    # ============================================================
    # Public API: Commits
    # ============================================================

    def commit_files(
        self,
        repo_full_name: str,
        files: Mapping[str, str],
        message: str,
        branch: Optional[str] = None,
        should_cancel: Optional[CancelCheck] = None,
    ) -> Dict[str, Any]:
        """
        Commits every file in one commit through the git data API.

        Returns {"ok": True, "data": {"sha", "branch", "url"}}. When
        `should_cancel` fires between steps the remaining calls are skipped
        and a result with details["cancelled"] is returned; the branch ref is
        only moved by the final PATCH.
        """
        if not files:
            return {"ok": False, "error": "At least one file is required"}
        if not message.strip():
            return {"ok": False, "error": "Commit message is required"}

        owner, repo = self._get_owner_repo(repo_full_name)
        base = f"/repos/{owner}/{repo}/git"

        if should_cancel and should_cancel():
            return _cancelled_result()

        if not branch:
            branch_res = self.get_default_branch(repo_full_name)
            if not branch_res["ok"]:
                return branch_res
            branch = branch_res["data"]

        # 1. Resolve the branch head
        ref_res = self._req("GET", f"{base}/ref/heads/{branch}", should_cancel)
        if not ref_res["ok"]:
            return ref_res
        head_sha = ref_res["data"]["object"]["sha"]

        commit_res = self._req("GET", f"{base}/commits/{head_sha}", should_cancel)
        if not commit_res["ok"]:
            return commit_res
        base_tree = commit_res["data"]["tree"]["sha"]

        # 2. New tree on top of the head tree
        tree_entries: List[Dict[str, Any]] = [
            {"path": path, "mode": "100644", "type": "blob", "content": self._sanitize_content(content)}
            for path, content in files.items()
        ]
        tree_res = self._req("POST", f"{base}/trees", should_cancel, json={"base_tree": base_tree, "tree": tree_entries})
        if not tree_res["ok"]:
            return tree_res

        # 3. Commit and move the ref
        new_commit = self._req(
            "POST",
            f"{base}/commits",
            should_cancel,
            json={"message": message, "tree": tree_res["data"]["sha"], "parents": [head_sha]},
        )
        if not new_commit["ok"]:
            return new_commit
        sha = new_commit["data"]["sha"]

        update_res = self._req("PATCH", f"{base}/refs/heads/{branch}", should_cancel, json={"sha": sha})
        if not update_res["ok"]:
            return update_res

        logger.info("Committed %d file(s) to %s@%s: %s", len(files), repo_full_name, branch, sha[:7])
        return {
            "ok": True,
            "data": {"sha": sha, "branch": branch, "url": new_commit["data"].get("html_url")},
        }


class GitHubRepositoryApplier:
    """
    Async RepositoryApplier over GitHubClient.

    The blocking client runs in a worker thread. The token is checked
    before and after the call, and the worker polls it between requests so
    a cancelled apply sends nothing further to GitHub.
    """

    def __init__(self, client: GitHubClient):
        self.client = client

    async def apply(
        self,
        repository: str,
        branch: Optional[str],
        message: str,
        files: Mapping[str, str],
        cancel: Optional[CancellationToken] = None,
    ) -> CommitRef:
        token = ensure_token(cancel)
        token.raise_if_cancelled()
        try:
            result = await token.wait_for(
                asyncio.to_thread(
                    self.client.commit_files,
                    repository,
                    dict(files),
                    message,
                    branch,
                    should_cancel=lambda: token.cancelled,
                )
            )
        except GitHubClientError as e:
            raise ApplyError(str(e)) from e
        token.raise_if_cancelled()

        if not result["ok"]:
            raise ApplyError(f"Failed to apply changes to {repository}: {result['error']}")
        data = result["data"]
        return CommitRef(sha=data["sha"], branch=data["branch"], url=data.get("url"))

    async def list_paths(
        self,
        repository: str,
        branch: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[str]:
        """Best effort: an API failure yields an empty listing."""
        token = ensure_token(cancel)
        try:
            result = await token.wait_for(asyncio.to_thread(self.client.list_paths, repository, branch))
        except GitHubClientError as e:
            logger.warning("Could not list %s: %s", repository, e)
            return []
        if not result["ok"]:
            logger.warning("Could not list %s: %s", repository, result["error"])
            return []
        return list(result["data"])

    async def read_file(
        self,
        repository: str,
        path: str,
        branch: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Optional[str]:
        token = ensure_token(cancel)
        try:
            result = await token.wait_for(asyncio.to_thread(self.client.get_file_content, repository, path, branch))
        except GitHubClientError as e:
            logger.warning("Could not read %s from %s: %s", path, repository, e)
            return None
        return result["data"] if result["ok"] else None
