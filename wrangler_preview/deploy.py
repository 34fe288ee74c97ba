"""
Deploy orchestration.

Two flows live here:

- ``prepare_deployment``: render a worker name with the fallback template policy
  and write it into an existing ``[env.X]`` section (strict patcher). The edit
  stays in place for a later ``wrangler deploy`` step.
- ``run_deploy``: decide whether the branch deploys at all, resolve the worker
  name with the optional-removal policy, patch ``wrangler.toml`` temporarily,
  set secrets, run ``wrangler`` and put the original file back.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .context import GitHubContext
from .errors import ConfigError, MissingContext, WranglerCommandError
from .naming import generate_worker_name, generate_worker_url, process_template
from .selector import parse_comma_separated_list
from .wrangler import DeployResult, WranglerClient
from .wrangler_toml import BackupInfo, backup_and_patch, restore_backup, update_worker_name

logger = logging.getLogger(__name__)

MAIN_BRANCHES = ("main", "master")
RELEASE_PREFIXES = ("release/", "hotfix/")


class WorkflowMode(str, enum.Enum):
    AUTO = "auto"
    GITFLOW = "gitflow"
    GITHUBFLOW = "githubflow"


def parse_exclude_branches(text: Optional[str]) -> List[str]:
    """Branch list given as a JSON array or as comma separated names."""
    if not text:
        return []
    text = text.strip()
    if text.startswith("["):
        try:
            data = json.loads(text)
        except ValueError:
            logger.debug("exclude-branches is not valid JSON, reading it as CSV")
        else:
            if isinstance(data, list):
                return [str(item) for item in data]
    return parse_comma_separated_list(text)


def should_skip_deploy(
    branch: Optional[str],
    workflow_mode: WorkflowMode,
    exclude_branches: List[str],
    release_branch_pattern: str = "release/",
    *,
    pull_request: bool = False,
) -> bool:
    """
    Tell whether a build of ``branch`` should not deploy.

    Excluded branches never deploy. Pull requests are previews and deploy from
    any other branch; push builds must fit ``workflow_mode``.
    """
    if not branch:
        logger.warning("Unable to determine branch name, proceeding with deployment")
        return False

    logger.info("Current branch: %s", branch)

    if branch in exclude_branches:
        logger.info("Skipping deployment: branch %r is in exclude list", branch)
        return True

    if pull_request:
        logger.info("Pull request build from %r is eligible for a preview deployment", branch)
        return False

    is_release = branch.startswith(RELEASE_PREFIXES)
    is_main = branch in MAIN_BRANCHES
    mode = WorkflowMode(workflow_mode)

    if mode is WorkflowMode.AUTO:
        if is_release:
            release_prefix = release_branch_pattern.split("*", 1)[0]
            if not (branch.startswith(release_prefix) or branch.startswith("hotfix/")):
                logger.info("Skipping deployment: branch %r doesn't match release pattern in auto mode", branch)
                return True
        elif not is_main:
            logger.info("Skipping deployment: branch %r is not main/master or release/hotfix in auto mode", branch)
            return True
    elif mode is WorkflowMode.GITFLOW and not is_release:
        logger.info("Skipping deployment: branch %r is not a release/hotfix branch in gitflow mode", branch)
        return True
    elif mode is WorkflowMode.GITHUBFLOW and not is_main:
        logger.info("Skipping deployment: branch %r is not main/master in githubflow mode", branch)
        return True

    logger.info("Branch %r is eligible for deployment in %s mode", branch, mode.value)
    return False


@dataclass(frozen=True)
class DeployOptions:
    environment: str
    worker_name: Optional[str] = None
    worker_name_pattern: Optional[str] = None
    worker_name_pattern_branch: Optional[str] = None
    subdomain: Optional[str] = None
    force_preview: bool = False
    secrets: Dict[str, str] = field(default_factory=dict)
    deploy_command: str = "deploy"
    wrangler_file: Path = Path("wrangler.toml")
    workflow_mode: WorkflowMode = WorkflowMode.AUTO
    exclude_branches: List[str] = field(default_factory=list)
    release_branch_pattern: str = "release/"


@dataclass(frozen=True)
class ResolvedName:
    worker_name: Optional[str]
    should_patch: bool


@dataclass(frozen=True)
class DeployOutcome:
    skipped: bool
    worker_name: Optional[str] = None
    worker_url: Optional[str] = None
    result: Optional[DeployResult] = None

    @property
    def url(self) -> Optional[str]:
        if self.worker_url:
            return self.worker_url
        return self.result.url if self.result else None


def deploy_branch(context: GitHubContext) -> Optional[str]:
    """PR head branch, or the pushed branch; ``None`` for tags and unknown refs."""
    if context.is_pull_request or context.ref.startswith("refs/heads/"):
        return context.branch_name or None
    return None


def resolve_worker_name(options: DeployOptions, context: GitHubContext) -> ResolvedName:
    """
    Pick the worker name and whether ``wrangler.toml`` has to be patched for it.

    An explicit name wins; it is patched in for every non-production
    environment. Otherwise a pull request uses ``worker_name_pattern`` and a
    branch build prefers ``worker_name_pattern_branch``. A branch build that
    falls back to ``worker_name_pattern`` only patches when the pattern looks
    like a preview pattern (contains ``{pr_number}``) or ``force_preview`` is set.

    Raises:
        MissingContext: for a pull request without ``worker_name_pattern``.
    """
    if options.worker_name:
        logger.info("Using provided worker name: %s", options.worker_name)
        return ResolvedName(
            worker_name=options.worker_name,
            should_patch=options.environment != "production" or options.force_preview,
        )

    if not options.worker_name_pattern and not options.worker_name_pattern_branch:
        return ResolvedName(worker_name=None, should_patch=False)

    if context.is_pull_request:
        if not options.worker_name_pattern:
            raise MissingContext("worker-name-pattern is required for PR deployments")
        pattern = options.worker_name_pattern
        should_patch = True
        logger.info("PR deployment detected, using worker-name-pattern")
    elif options.worker_name_pattern_branch:
        pattern = options.worker_name_pattern_branch
        should_patch = True
        logger.info("Branch deployment detected, using worker-name-pattern-branch")
    else:
        pattern = options.worker_name_pattern
        should_patch = "{pr_number}" in pattern or options.force_preview
        logger.info("Branch deployment detected, using worker-name-pattern (fallback)")

    worker_name = generate_worker_name(
        pattern,
        context.pr_number,
        deploy_branch(context),
        require_pr_number=context.is_pull_request,
    )
    logger.info("Generated worker name: %s", worker_name)
    return ResolvedName(worker_name=worker_name, should_patch=should_patch)


def run_deploy(options: DeployOptions, context: GitHubContext, client: WranglerClient) -> DeployOutcome:
    """
    Deploy one worker.

    The ``wrangler.toml`` patch is always rolled back once ``wrangler`` has
    run, whether the deploy succeeded or not.

    Raises:
        WranglerCommandError: if the deploy command fails.
    """
    if should_skip_deploy(
        deploy_branch(context),
        options.workflow_mode,
        options.exclude_branches,
        options.release_branch_pattern,
        pull_request=context.is_pull_request,
    ):
        return DeployOutcome(skipped=True)

    logger.info("Starting deployment for environment: %s", options.environment)

    resolved = resolve_worker_name(options, context)
    worker_url = None
    if resolved.worker_name:
        worker_url = generate_worker_url(resolved.worker_name, options.subdomain)
        logger.info("Worker URL: %s", worker_url)

    backup: Optional[BackupInfo] = None
    if resolved.worker_name and resolved.should_patch:
        backup = backup_and_patch(options.wrangler_file, options.environment, resolved.worker_name)

    try:
        result = client.deploy_worker(
            resolved.worker_name or "",
            options.environment,
            secrets=options.secrets,
            deploy_command=options.deploy_command,
        )
    finally:
        if backup is not None:
            restore_backup(backup)

    if not result.success:
        raise WranglerCommandError(f"Deployment failed: {result.error or 'wrangler exited with an error'}")

    return DeployOutcome(
        skipped=False,
        worker_name=resolved.worker_name,
        worker_url=worker_url,
        result=result,
    )


@dataclass(frozen=True)
class PreparedDeployment:
    worker_name: str
    deployment_url: str
    backup_path: Path


def prepare_deployment(
    template: str,
    environment: str,
    context: GitHubContext,
    wrangler_toml_path: Path = Path("wrangler.toml"),
    domain: str = "workers.dev",
) -> PreparedDeployment:
    """
    Render ``template`` and write the name into ``[env.<environment>]``.

    Raises:
        InvalidTemplate: for an empty template or an empty rendered name.
        WranglerFileNotFound, SectionNotFound: from the strict patcher.
    """
    if not environment:
        raise ConfigError("environment is required")

    branch_name = context.sanitized_branch_name
    pr_number = context.pr_number
    logger.info("Worker name template: %s", template)
    logger.info("Branch name (sanitized): %s", branch_name)
    if pr_number:
        logger.info("PR number: %d", pr_number)

    worker_name = process_template(template, str(pr_number) if pr_number else None, branch_name)
    deployment_url = f"https://{worker_name}.{domain}"
    logger.info("Generated worker name: %s", worker_name)
    logger.info("Generated URL: %s", deployment_url)

    backup_path = update_worker_name(wrangler_toml_path, environment, worker_name)
    return PreparedDeployment(worker_name=worker_name, deployment_url=deployment_url, backup_path=backup_path)
