"""
Action-layer reporting: step outputs, step summaries and the PR comment body.

Outputs go to the file named by ``GITHUB_OUTPUT`` and summaries to the file named
by ``GITHUB_STEP_SUMMARY``; outside of Actions both are logged instead.
"""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .executor import CleanupResult

logger = logging.getLogger(__name__)

PREVIEW_COMMENT_MARKER = "🚀 Preview Deployment"
BOT_LOGIN = "github-actions[bot]"


def write_outputs(outputs: Mapping[str, str], output_file: Optional[str]) -> None:
    if not output_file:
        for key, value in outputs.items():
            logger.info("output %s=%s", key, value)
        return

    with open(output_file, "a", encoding="utf-8") as fh:
        for key, value in outputs.items():
            if "\n" in value:
                delimiter = f"ghadelimiter_{uuid.uuid4()}"
                fh.write(f"{key}<<{delimiter}\n{value}\n{delimiter}\n")
            else:
                fh.write(f"{key}={value}\n")


def write_summary(markdown: str, summary_file: Optional[str]) -> None:
    if not summary_file:
        logger.debug("step summary:\n%s", markdown)
        return
    with open(summary_file, "a", encoding="utf-8") as fh:
        fh.write(markdown)
        if not markdown.endswith("\n"):
            fh.write("\n")


def _table(rows: Sequence[Sequence[str]]) -> List[str]:
    header, *body = rows
    lines = [f"| {' | '.join(header)} |", f"| {' | '.join('---' for _ in header)} |"]
    lines.extend(f"| {' | '.join(row)} |" for row in body)
    return lines


def _bullets(items: Iterable[str]) -> List[str]:
    return [f"- {item}" for item in items]


def failure_summary(title: str, message: str) -> str:
    return "\n".join([f"## ❌ {title}", "", "```text", message, "```", ""])


def deploy_summary(environment: str, worker_name: Optional[str], url: Optional[str]) -> str:
    lines = ["## 🚀 Cloudflare Workers Deployment", ""]
    lines += _table(
        [
            ("Property", "Value"),
            ("Environment", environment),
            ("Worker Name", worker_name or "N/A"),
            ("URL", f"[{url}]({url})" if url else "N/A"),
            ("Status", "✅ Success"),
        ]
    )
    return "\n".join(lines) + "\n"


def dry_run_summary(workers: Sequence[str]) -> str:
    lines = ["## 🔍 Cloudflare Workers Cleanup (Dry Run)", ""]
    lines += _table(
        [
            ("Property", "Value"),
            ("Workers Found", str(len(workers))),
            ("Mode", "Dry Run (no deletion)"),
        ]
    )
    lines += ["", "### Workers that would be deleted:", ""]
    lines += _bullets(workers)
    return "\n".join(lines) + "\n"


def cleanup_summary(result: CleanupResult) -> str:
    if result.dry_run:
        return dry_run_summary(result.deleted_names)

    total = result.total_processed
    rate = round(result.deleted_count / total * 100) if total else 0
    lines = ["## 🗑️ Cloudflare Workers Cleanup", ""]
    lines += _table(
        [
            ("Property", "Value"),
            ("Workers Deleted", str(result.deleted_count)),
            ("Workers Skipped", str(result.skipped_count)),
            ("Failures", str(len(result.errors))),
            ("Total Processed", str(total)),
            ("Success Rate", f"{rate}%"),
        ]
    )
    if result.deleted_names:
        lines += ["", "### ✅ Successfully Deleted Workers:", ""] + _bullets(result.deleted_names)
    if result.skipped_names:
        lines += ["", "### ⚠️ Skipped Workers:", ""] + _bullets(result.skipped_names)
    if result.errors:
        lines += ["", "### ❌ Failed Deletions:", ""] + _bullets(result.errors)
    return "\n".join(lines) + "\n"


def empty_cleanup_outputs() -> Dict[str, str]:
    return {
        "deleted-workers": "[]",
        "deleted-count": "0",
        "skipped-workers": "[]",
        "dry-run-results": "[]",
    }


def cleanup_outputs(result: CleanupResult) -> Dict[str, str]:
    """In a dry run only ``dry-run-results`` carries names; the rest stay empty."""
    if result.dry_run:
        outputs = empty_cleanup_outputs()
        outputs["dry-run-results"] = json.dumps(result.deleted_names)
        return outputs
    return {
        "deleted-workers": json.dumps(result.deleted_names),
        "deleted-count": str(result.deleted_count),
        "skipped-workers": json.dumps(result.skipped_names),
        "dry-run-results": "[]",
    }


def render_preview_comment(
    *,
    deployment_url: str,
    worker_name: str,
    success: bool,
    commit_sha: str,
    branch_name: str,
    actions_url: str,
) -> str:
    status = "✅ Success" if success else "❌ Failed"
    if success:
        url_line = f"[{deployment_url}]({deployment_url})"
        footer = "This preview will be automatically updated when you push new commits to this PR."
    else:
        url_line = f"[Deploy failed - check logs]({actions_url})"
        footer = "Please check the workflow logs for details."

    return (
        f"## {PREVIEW_COMMENT_MARKER}\n"
        "\n"
        f"**Preview URL:** {url_line}\n"
        "\n"
        f"**Build Status:** {status}\n"
        f"**Worker Name:** `{worker_name}`\n"
        f"**Commit:** {commit_sha[:7]}\n"
        f"**Branch:** `{branch_name}`\n"
        "\n"
        f"{footer}"
    )


def find_preview_comment(comments: Iterable[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """The bot's earlier preview comment, so it can be edited instead of re-posted."""
    for comment in comments:
        user = comment.get("user") or {}
        body = comment.get("body") or ""
        if user.get("login") == BOT_LOGIN and PREVIEW_COMMENT_MARKER in body:
            return comment
    return None


def write_comment_file(body: str, path: Path) -> None:
    path.write_text(body + "\n", encoding="utf-8")
    logger.info("Wrote PR comment body to %s", path)
