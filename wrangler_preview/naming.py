"""
Worker name templating.

Two substitution policies live side by side and are selected by the caller:

``process_template`` (fallback substitution)
    ``{pr-number}`` becomes the PR number, or the branch name when there is no PR.
    ``{branch-name}`` becomes the branch name. Afterwards every character outside
    ``[A-Za-z0-9-]`` is dropped from the whole result, template text included.

``generate_worker_name`` (optional removal)
    ``{pr_number}`` becomes the PR number; without a PR the placeholder and one
    optional leading hyphen are removed. ``{branch}`` and a bare ``*`` become the
    branch name with ``/`` turned into ``-``, or are removed without a branch.
    The result is normalized by ``sanitize_worker_name``.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional, Union

from .errors import ConfigError, InvalidTemplate, MissingContext

MAX_WORKER_NAME_LENGTH = 63

_PR_NUMBER_HYPHEN = re.compile(r"\{pr-number\}")
_BRANCH_NAME_HYPHEN = re.compile(r"\{branch-name\}")
_PR_NUMBER_UNDERSCORE = re.compile(r"\{pr_number\}")
_PR_NUMBER_OPTIONAL = re.compile(r"-?\{pr_number\}")
_BRANCH = re.compile(r"\{branch\}")

_NOT_NAME_CHAR = re.compile(r"[^a-zA-Z0-9-]")
_NOT_LOWER_NAME_CHAR = re.compile(r"[^a-z0-9-]")
_HYPHEN_RUN = re.compile(r"-+")
_PULL_REF = re.compile(r"refs/pull/(\d+)/")


def process_template(template: str, pr_number: Optional[str], branch_name: str) -> str:
    """
    Render a worker name with the fallback substitution policy.

    Raises:
        InvalidTemplate: if the template is empty or nothing is left after
            substitution and sanitizing.
    """
    if not template:
        raise InvalidTemplate("Worker name template is required")

    pr_identifier = pr_number or branch_name
    # callables keep backslashes in branch names from being read as group refs
    result = _PR_NUMBER_HYPHEN.sub(lambda _m: pr_identifier, template)
    result = _BRANCH_NAME_HYPHEN.sub(lambda _m: branch_name, result)
    result = _NOT_NAME_CHAR.sub("", result)

    if not result:
        raise InvalidTemplate(f"Worker name is empty after template processing: {template!r}")
    return result


def sanitize_worker_name(name: str) -> str:
    """Lower-case, hyphenate, collapse and trim ``name`` into a DNS label."""
    name = name.lower()
    name = _NOT_LOWER_NAME_CHAR.sub("-", name)
    name = _HYPHEN_RUN.sub("-", name).strip("-")
    # truncation may expose a hyphen at the new end
    return name[:MAX_WORKER_NAME_LENGTH].rstrip("-")


def generate_worker_name(
    pattern: str,
    pr_number: Optional[int] = None,
    branch: Optional[str] = None,
    *,
    require_pr_number: bool = False,
) -> str:
    """
    Render a worker name with the optional-removal policy.

    Args:
        pattern: name pattern, e.g. ``"my-app-pr-{pr_number}"`` or ``"my-app-*"``.
        pr_number: pull request number, ``None`` outside of pull requests.
        branch: raw branch name (slashes allowed).
        require_pr_number: fail instead of dropping ``{pr_number}`` when there is
            no PR number.

    Raises:
        InvalidTemplate: for an empty pattern or an empty result.
        MissingContext: if ``require_pr_number`` is set and ``pr_number`` is
            missing or zero.
    """
    if not pattern:
        raise InvalidTemplate("Pattern is required")
    if require_pr_number and not pr_number:
        raise MissingContext("Pattern and PR number are required")

    name = pattern
    if pr_number:
        name = _PR_NUMBER_UNDERSCORE.sub(str(pr_number), name)
    else:
        name = _PR_NUMBER_OPTIONAL.sub("", name)

    if branch:
        safe_branch = branch.replace("/", "-")
        name = _BRANCH.sub(lambda _m: safe_branch, name)
        name = name.replace("*", safe_branch)
    else:
        name = _BRANCH.sub("", name)
        name = name.replace("*", "")

    name = sanitize_worker_name(name)
    if not name:
        raise InvalidTemplate(f"Worker name is empty after applying pattern {pattern!r}")
    return name


def sanitize_branch_name(branch: str) -> str:
    return _NOT_NAME_CHAR.sub("", branch.replace("/", "-"))


def generate_worker_url(worker_name: str, subdomain: Optional[str] = None) -> str:
    if not worker_name:
        raise InvalidTemplate("Worker name is required")
    if subdomain:
        return f"https://{worker_name}.{subdomain}.workers.dev"
    return f"https://{worker_name}.workers.dev"


def pr_number_from_event(
    event_name: str,
    payload: Mapping[str, Any],
    ref: str = "",
) -> Optional[int]:
    """
    Find the pull request number for a workflow event.

    Looks at the ``pull_request`` payload, then at ``issue_comment`` events on a
    pull request, then at ``refs/pull/<n>/...`` refs. Returns ``None`` when the
    event is not tied to a pull request.
    """
    pull_request = payload.get("pull_request")
    if event_name in ("pull_request", "pull_request_target") and isinstance(pull_request, dict):
        number = pull_request.get("number")
        if isinstance(number, int):
            return number

    issue = payload.get("issue")
    if event_name == "issue_comment" and isinstance(issue, dict) and issue.get("pull_request"):
        number = issue.get("number")
        if isinstance(number, int):
            return number

    m = _PULL_REF.search(ref or "")
    if m:
        return int(m.group(1))
    return None


def coerce_pr_number(value: Union[str, int, None]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"PR number must be an integer, got {value!r}") from exc
    return number or None
