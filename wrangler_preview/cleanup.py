from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from .cloudflare import CloudflareApi
from .executor import DEFAULT_DELETE_DELAY_S, CleanupResult, Sleep, execute, with_rate_limit_retry
from .selector import (
    CleanupMode,
    ExclusionFilter,
    filter_by_exclusion,
    select_targets,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupOptions:
    mode: CleanupMode
    pr_number: Optional[int] = None
    worker_name_prefix: str = "preview"
    worker_names: List[str] = field(default_factory=list)
    batch_pattern: Optional[str] = None
    exclude_workers: List[str] = field(default_factory=list)
    max_age_days: Optional[float] = None
    exclusions: ExclusionFilter = field(default_factory=ExclusionFilter)
    dry_run: bool = False
    delay_s: float = DEFAULT_DELETE_DELAY_S
    retry_rate_limits: bool = True


def collect_targets(
    options: CleanupOptions,
    api: CloudflareApi,
    *,
    now: Optional[datetime] = None,
) -> List[str]:
    """
    Resolve the worker names a cleanup run should delete.

    The inventory is only fetched for the batch modes. The exclusion filter
    (exact names and glob patterns) is applied after the mode's own selection.
    """
    # validate before touching the API
    select_targets(
        options.mode,
        pr_number=options.pr_number,
        prefix=options.worker_name_prefix,
        worker_names=options.worker_names,
        pattern=options.batch_pattern,
        all_workers=[],
        max_age_days=options.max_age_days,
    )
    mode = CleanupMode(options.mode)

    inventory: Sequence = []
    if mode in (CleanupMode.BATCH, CleanupMode.BATCH_BY_AGE):
        inventory = api.list_workers()
        logger.info("Fetched %d workers from account %s", len(inventory), api.account_id)

    if mode is CleanupMode.BATCH_BY_AGE:
        logger.info(
            "Filtering workers older than %s days%s",
            f"{options.max_age_days:g}",
            f" matching pattern: {options.batch_pattern}" if options.batch_pattern else "",
        )

    targets = select_targets(
        mode,
        pr_number=options.pr_number,
        prefix=options.worker_name_prefix,
        worker_names=options.worker_names,
        pattern=options.batch_pattern,
        all_workers=inventory,
        exclude_list=options.exclude_workers,
        max_age_days=options.max_age_days,
        now=now,
    )
    return filter_by_exclusion(targets, options.exclusions)


def cleanup_workers(
    options: CleanupOptions,
    api: CloudflareApi,
    *,
    now: Optional[datetime] = None,
    sleep: Sleep = time.sleep,
) -> CleanupResult:
    targets = collect_targets(options, api, now=now)

    if not targets:
        logger.info("No workers found to delete")
        return CleanupResult(dry_run=options.dry_run)

    logger.info("Found %d workers to process:", len(targets))
    for name in targets:
        logger.info("  - %s", name)

    delete_op = api.delete_worker
    if options.retry_rate_limits:
        delete_op = with_rate_limit_retry(delete_op, sleep=sleep)

    result = execute(
        targets,
        options.dry_run,
        delete_op,
        api.worker_exists,
        delay_s=options.delay_s,
        sleep=sleep,
    )

    logger.info(
        "Cleanup completed: %d deleted, %d skipped, %d failed",
        result.deleted_count,
        result.skipped_count,
        len(result.errors),
    )
    return result
