"""
Command line entry point.

Each sub-command is one GitHub Action step:

    wrangler-preview prepare  --worker-name 'my-app-pr-{pr-number}' --environment preview
    wrangler-preview setup    --environment-name preview --worker-name my-app-pr-7 --vars '{API_URL: https://...}'
    wrangler-preview deploy   --environment preview --worker-name-pattern 'my-app-pr-{pr_number}'
    wrangler-preview cleanup  --mode pr-linked --pr-number 7 --dry-run
    wrangler-preview comment  --worker-url https://my-app-pr-7.workers.dev --worker-name my-app-pr-7

Credentials and the Actions output files default from the environment
(CLOUDFLARE_API_TOKEN, CLOUDFLARE_ACCOUNT_ID, GITHUB_OUTPUT, GITHUB_STEP_SUMMARY).

Exit codes:
    0: success (including a skipped deploy and an empty cleanup)
    1: missing parameters, any error, or at least one failed deletion
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import shlex
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import requests
import yaml

from . import __version__
from .cleanup import CleanupOptions, cleanup_workers
from .cloudflare import CloudflareApi
from .context import GitHubContext
from .deploy import DeployOptions, WorkflowMode, parse_exclude_branches, prepare_deployment, run_deploy
from .errors import ConfigError, PreviewError, WranglerCommandError
from .executor import DEFAULT_DELETE_DELAY_S
from .naming import coerce_pr_number
from .report import (
    cleanup_outputs,
    cleanup_summary,
    deploy_summary,
    empty_cleanup_outputs,
    failure_summary,
    find_preview_comment,
    render_preview_comment,
    write_comment_file,
    write_outputs,
    write_summary,
)
from .selector import CleanupMode, parse_comma_separated_list, parse_exclusions, parse_worker_names_input
from .wrangler import WranglerClient
from .wrangler_toml import SetupOptions, setup_preview_environment

logger = logging.getLogger(__name__)


def parse_mapping(text: Optional[str], what: str) -> Dict[str, str]:
    """
    Parse a JSON or YAML mapping of strings (``--secrets``, ``--vars``).

    Raises:
        ConfigError: for invalid YAML or anything that is not a string mapping.
    """
    if not text or not text.strip():
        return {}
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {what}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{what} must be a mapping, got {type(data).__name__}")

    result: Dict[str, str] = {}
    for key, value in data.items():
        if not isinstance(key, str) or isinstance(value, (dict, list)) or value is None:
            raise ConfigError(f"{what} must map names to plain values, offending key: {key!r}")
        result[key] = value if isinstance(value, str) else json.dumps(value)
    return result


def _configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.INFO
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _require(args: argparse.Namespace, names: Sequence[str]) -> None:
    missing = [n.upper() for n in names if not getattr(args, n)]
    if missing:
        raise ConfigError(f"Missing required parameter(s): {', '.join(missing)}")


def cmd_prepare(args: argparse.Namespace, context: GitHubContext) -> int:
    prepared = prepare_deployment(
        args.worker_name,
        args.environment,
        context,
        wrangler_toml_path=Path(args.wrangler_toml_path),
        domain=args.domain,
    )
    write_outputs(
        {"deployment-name": prepared.worker_name, "deployment-url": prepared.deployment_url},
        args.github_output,
    )
    logger.info("Prepare preview deployment completed")
    return 0


def cmd_setup(args: argparse.Namespace, context: GitHubContext) -> int:
    options = SetupOptions(
        wrangler_toml_path=Path(args.wrangler_toml_path),
        environment_name=args.environment_name,
        worker_name=args.worker_name,
        create_backup=not args.no_backup,
        update_vars=parse_mapping(args.vars, "vars"),
        update_routes=parse_comma_separated_list(args.routes),
    )
    result = setup_preview_environment(options)
    outputs = {"updated": "true" if result.updated else "false"}
    if result.backup_path:
        outputs["backup-path"] = str(result.backup_path)
    write_outputs(outputs, args.github_output)
    return 0


def cmd_deploy(args: argparse.Namespace, context: GitHubContext) -> int:
    _require(args, ("api_token", "account_id"))
    options = DeployOptions(
        environment=args.environment,
        worker_name=args.worker_name,
        worker_name_pattern=args.worker_name_pattern,
        worker_name_pattern_branch=args.worker_name_pattern_branch,
        subdomain=args.subdomain,
        force_preview=args.force_preview,
        secrets=parse_mapping(args.secrets, "secrets"),
        deploy_command=args.deploy_command,
        wrangler_file=Path(args.wrangler_file),
        workflow_mode=WorkflowMode(args.workflow_mode),
        exclude_branches=parse_exclude_branches(args.exclude_branches),
        release_branch_pattern=args.release_branch_pattern,
    )
    client = WranglerClient(
        args.api_token,
        args.account_id,
        command=shlex.split(args.wrangler_command),
    )
    if not client.check_available():
        raise WranglerCommandError(f"wrangler is not available: {args.wrangler_command}")

    outcome = run_deploy(options, context, client)
    if outcome.skipped:
        return 0

    write_outputs(
        {
            "worker-url": outcome.url or "",
            "worker-name": outcome.worker_name or "unknown",
            "success": "true",
        },
        args.github_output,
    )
    write_summary(deploy_summary(options.environment, outcome.worker_name, outcome.url), args.step_summary)
    logger.info("Successfully deployed worker")
    return 0


def cmd_cleanup(args: argparse.Namespace, context: GitHubContext) -> int:
    _require(args, ("api_token", "account_id"))

    pr_number = coerce_pr_number(args.pr_number)
    if pr_number is None:
        pr_number = context.pr_number

    options = CleanupOptions(
        mode=CleanupMode(args.mode),
        pr_number=pr_number,
        worker_name_prefix=args.worker_name_prefix,
        worker_names=parse_worker_names_input(args.worker_names, args.worker_numbers, args.worker_prefix) or [],
        batch_pattern=args.batch_pattern,
        exclude_workers=parse_comma_separated_list(args.exclude_workers),
        max_age_days=args.max_age_days,
        exclusions=parse_exclusions(args.exclude),
        dry_run=args.dry_run,
        delay_s=args.delay,
    )
    api = CloudflareApi(args.api_token, args.account_id)

    result = cleanup_workers(options, api)
    if not result.deleted_names and not result.skipped_names and not result.errors:
        write_outputs(empty_cleanup_outputs(), args.github_output)
        return 0

    write_outputs(cleanup_outputs(result), args.github_output)
    write_summary(cleanup_summary(result), args.step_summary)

    if result.has_errors:
        logger.error("%d worker(s) could not be deleted", len(result.errors))
        return 1
    return 0


def cmd_comment(args: argparse.Namespace, context: GitHubContext) -> int:
    body = render_preview_comment(
        deployment_url=args.worker_url,
        worker_name=args.worker_name or "unknown",
        success=args.deployment_status == "success",
        commit_sha=context.sha,
        branch_name=context.branch_name,
        actions_url=context.actions_url,
    )

    outputs = {"comment-body": body}
    if args.existing_comments:
        try:
            comments = json.loads(Path(args.existing_comments).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Cannot read --existing-comments: {exc}") from exc
        if not isinstance(comments, list):
            raise ConfigError("--existing-comments must contain a JSON array of comments")
        existing = find_preview_comment(c for c in comments if isinstance(c, dict))
        outputs["comment-id"] = str(existing["id"]) if existing and "id" in existing else ""

    if args.output:
        write_comment_file(body, Path(args.output))
    else:
        sys.stdout.write(body + "\n")
    write_outputs(outputs, args.github_output)
    return 0


Handler = Callable[[argparse.Namespace, GitHubContext], int]

FAILURE_OUTPUTS: Dict[str, Dict[str, str]] = {
    "prepare": {"deployment-name": "", "deployment-url": ""},
    "setup": {"updated": "false"},
    "deploy": {"success": "false", "worker-url": ""},
    "cleanup": empty_cleanup_outputs(),
    "comment": {"comment-body": "", "comment-id": ""},
}

FAILURE_TITLES: Dict[str, str] = {
    "prepare": "Prepare Preview Deploy Failed",
    "setup": "Preview Setup Failed",
    "deploy": "Cloudflare Workers Deployment Failed",
    "cleanup": "Cloudflare Workers Cleanup Failed",
    "comment": "PR Comment Failed",
}


def _add_credentials(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--api-token",
        default=os.getenv("CLOUDFLARE_API_TOKEN"),
        help="Cloudflare API token (or CLOUDFLARE_API_TOKEN)",
    )
    p.add_argument(
        "--account-id",
        default=os.getenv("CLOUDFLARE_ACCOUNT_ID"),
        help="Cloudflare account id (or CLOUDFLARE_ACCOUNT_ID)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wrangler-preview",
        description="Preview deployments and cleanup for Cloudflare Workers",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="only warnings and errors")
    parser.add_argument(
        "--github-output",
        default=os.getenv("GITHUB_OUTPUT"),
        help="file receiving step outputs (or GITHUB_OUTPUT)",
    )
    parser.add_argument(
        "--step-summary",
        default=os.getenv("GITHUB_STEP_SUMMARY"),
        help="file receiving the markdown step summary (or GITHUB_STEP_SUMMARY)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("prepare", help="render a preview worker name into an existing [env.X] section")
    p.add_argument("--worker-name", required=True, help="name template, e.g. 'my-app-pr-{pr-number}'")
    p.add_argument("--environment", required=True)
    p.add_argument("--domain", default="workers.dev")
    p.add_argument("--wrangler-toml-path", default="./wrangler.toml")
    p.set_defaults(handler=cmd_prepare)

    p = sub.add_parser("setup", help="set worker name, vars and routes of a preview environment")
    p.add_argument("--wrangler-toml-path", default="./wrangler.toml")
    p.add_argument("--environment-name", required=True)
    p.add_argument("--worker-name", required=True)
    p.add_argument("--no-backup", action="store_true", help="do not write <path>.backup.<ms>")
    p.add_argument("--vars", help="JSON or YAML mapping appended as [env.X.vars]")
    p.add_argument("--routes", help="comma separated route patterns")
    p.set_defaults(handler=cmd_setup)

    p = sub.add_parser("deploy", help="patch wrangler.toml, deploy with wrangler, restore")
    p.add_argument("--environment", required=True)
    p.add_argument("--worker-name")
    p.add_argument("--worker-name-pattern", help="e.g. 'my-app-pr-{pr_number}'")
    p.add_argument("--worker-name-pattern-branch", help="pattern for non-PR builds, e.g. 'my-app-{branch}'")
    p.add_argument("--subdomain", help="workers.dev subdomain of the account")
    p.add_argument("--force-preview", action="store_true")
    p.add_argument("--secrets", default=os.getenv("WORKER_SECRETS"), help="JSON or YAML mapping (or WORKER_SECRETS)")
    p.add_argument("--deploy-command", default="deploy")
    p.add_argument("--wrangler-file", default="wrangler.toml")
    p.add_argument("--wrangler-command", default="npx wrangler", help="how to invoke wrangler")
    p.add_argument("--workflow-mode", choices=[m.value for m in WorkflowMode], default=WorkflowMode.AUTO.value)
    p.add_argument("--exclude-branches", help="JSON array or comma separated branch names")
    p.add_argument("--release-branch-pattern", default="release/")
    _add_credentials(p)
    p.set_defaults(handler=cmd_deploy)

    p = sub.add_parser("cleanup", help="delete preview workers")
    p.add_argument("--mode", choices=[m.value for m in CleanupMode], default=CleanupMode.PR_LINKED.value)
    p.add_argument("--pr-number", help="defaults to the PR of the triggering event")
    p.add_argument("--worker-name-prefix", default="preview", help="prefix for pr-linked names")
    p.add_argument("--worker-names", help="comma separated worker names (manual mode)")
    p.add_argument("--worker-numbers", help="comma separated numbers, combined with --worker-prefix")
    p.add_argument("--worker-prefix", help="prefix for --worker-numbers, e.g. 'my-app-pr-'")
    p.add_argument("--batch-pattern", help="glob for batch modes, e.g. 'preview-*'")
    p.add_argument("--exclude-workers", help="comma separated names never selected in batch modes")
    p.add_argument("--exclude", help="comma separated names or globs removed from any selection")
    p.add_argument("--max-age-days", type=float)
    p.add_argument(
        "--dry-run",
        action="store_true",
        default=os.getenv("DRY_RUN", "false").lower() == "true",
        help="only report what would be deleted (or DRY_RUN=true)",
    )
    p.add_argument("--delay", type=float, default=DEFAULT_DELETE_DELAY_S, help="seconds between deletions")
    _add_credentials(p)
    p.set_defaults(handler=cmd_cleanup)

    p = sub.add_parser("comment", help="render the PR preview comment")
    p.add_argument("--worker-url", required=True)
    p.add_argument("--worker-name")
    p.add_argument("--deployment-status", choices=("success", "failure"), default="success")
    p.add_argument("--existing-comments", help="JSON file with the PR's comments, to find the one to update")
    p.add_argument("--output", help="write the body to this file instead of stdout")
    p.set_defaults(handler=cmd_comment)

    return parser


def main(argv: Optional[List[str]] = None, *, environ: Optional[Dict[str, str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.quiet)

    handler: Handler = args.handler
    try:
        context = GitHubContext.from_env(environ)
        return handler(args, context)
    except (PreviewError, requests.RequestException) as exc:
        message = str(exc)
        logger.error("%s failed: %s", args.command, message)
        outputs: Dict[str, str] = dict(FAILURE_OUTPUTS[args.command])
        if args.command == "deploy":
            outputs["worker-name"] = args.worker_name or "unknown"
            outputs["error-message"] = message
        write_outputs(outputs, args.github_output)
        write_summary(failure_summary(FAILURE_TITLES[args.command], message), args.step_summary)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
