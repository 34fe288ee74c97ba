from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import git

from .naming import pr_number_from_event, sanitize_branch_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitHubContext:
    """
    The parts of the workflow run the actions need, read once at start-up.

    Everything downstream takes this object instead of looking at the process
    environment.
    """

    event_name: str = ""
    ref: str = ""
    head_ref: str = ""
    sha: str = ""
    repository: str = ""
    server_url: str = "https://github.com"
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        repo_path: Optional[Path] = None,
    ) -> "GitHubContext":
        env = os.environ if environ is None else environ

        payload: Dict[str, Any] = {}
        event_path = env.get("GITHUB_EVENT_PATH")
        if event_path and Path(event_path).is_file():
            try:
                data = json.loads(Path(event_path).read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning("Cannot read event payload %s: %s", event_path, e)
            else:
                if isinstance(data, dict):
                    payload = data

        ref = env.get("GITHUB_REF", "")
        sha = env.get("GITHUB_SHA", "")
        if not ref or not sha:
            local_ref, local_sha = _local_checkout(repo_path or Path(env.get("GITHUB_WORKSPACE", ".")))
            ref = ref or local_ref
            sha = sha or local_sha

        return cls(
            event_name=env.get("GITHUB_EVENT_NAME", ""),
            ref=ref,
            head_ref=env.get("GITHUB_HEAD_REF", ""),
            sha=sha,
            repository=env.get("GITHUB_REPOSITORY", ""),
            server_url=env.get("GITHUB_SERVER_URL", "https://github.com"),
            payload=payload,
        )

    @property
    def is_pull_request(self) -> bool:
        return self.event_name in ("pull_request", "pull_request_target")

    @property
    def pr_number(self) -> Optional[int]:
        return pr_number_from_event(self.event_name, self.payload, self.ref)

    @property
    def branch_name(self) -> str:
        """PR head ref, then ``GITHUB_HEAD_REF``, then the ref without ``refs/heads/``."""
        pull_request = self.payload.get("pull_request")
        if isinstance(pull_request, dict):
            head = pull_request.get("head")
            if isinstance(head, dict) and head.get("ref"):
                return str(head["ref"])
        if self.head_ref:
            return self.head_ref
        if self.ref.startswith("refs/heads/"):
            return self.ref[len("refs/heads/"):]
        return self.ref

    @property
    def sanitized_branch_name(self) -> str:
        return sanitize_branch_name(self.branch_name)

    @property
    def short_sha(self) -> str:
        return self.sha[:7]

    @property
    def actions_url(self) -> str:
        return f"{self.server_url}/{self.repository}/actions"


def _local_checkout(path: Path) -> tuple[str, str]:
    """Branch ref and HEAD sha of a local git checkout, empty when unavailable."""
    try:
        repo = git.Repo(path, search_parent_directories=True)
    except (git.InvalidGitRepositoryError, git.NoSuchPathError):
        return "", ""

    sha = ""
    ref = ""
    try:
        sha = repo.head.commit.hexsha
        if not repo.head.is_detached:
            ref = f"refs/heads/{repo.active_branch.name}"
    except (ValueError, TypeError) as e:
        # empty repository or detached HEAD edge cases
        logger.debug("Cannot inspect git checkout %s: %s", path, e)
    return ref, sha
