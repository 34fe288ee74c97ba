"""
Sequential worker deletion.

``execute()`` walks the target list one worker at a time: dry runs only record
what would be deleted, real runs check existence, delete, and pause between
deletions to stay below Cloudflare's API rate limit. Per-worker failures are
collected in ``CleanupResult.errors`` instead of aborting the run.

Rate-limit retries are a separate concern: wrap the delete operation with
``with_rate_limit_retry()`` before handing it to ``execute()``.
"""

from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Tuple

from .errors import RateLimited

logger = logging.getLogger(__name__)

DEFAULT_DELETE_DELAY_S: float = 0.5
MAX_RATE_LIMIT_RETRIES: int = 3
RATE_LIMIT_BACKOFF_S: float = 30.0

DeleteOp = Callable[[str], object]
ExistsOp = Callable[[str], bool]
Sleep = Callable[[float], None]


@dataclass(frozen=True)
class CleanupResult:
    deleted_count: int = 0
    skipped_count: int = 0
    deleted_names: List[str] = field(default_factory=list)
    skipped_names: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def total_processed(self) -> int:
        return self.deleted_count + self.skipped_count + len(self.errors)


def execute(
    targets: Sequence[str],
    dry_run: bool,
    delete_op: DeleteOp,
    exists_op: ExistsOp,
    *,
    delay_s: float = DEFAULT_DELETE_DELAY_S,
    sleep: Sleep = time.sleep,
) -> CleanupResult:
    """
    Delete ``targets`` in order and report what happened.

    Args:
        targets: worker names; empty entries are ignored.
        dry_run: record every target as deleted without calling either operation.
        delete_op: deletes one worker, raising on failure.
        exists_op: tells whether a worker exists; missing workers are skipped
            and errors are recorded like failed deletes.
        delay_s: pause after each delete attempt.
        sleep: injectable for tests.
    """
    deleted: List[str] = []
    skipped: List[str] = []
    errors: List[str] = []

    for worker in targets:
        if not worker:
            continue

        logger.info("Processing: %s", worker)

        if dry_run:
            logger.info("  [DRY RUN] Would delete: %s", worker)
            deleted.append(worker)
            continue

        try:
            if not exists_op(worker):
                logger.warning("  Worker not found, skipping: %s", worker)
                skipped.append(worker)
                continue
            delete_op(worker)
        except Exception as e:
            logger.error("  Deletion failed: %s: %s", worker, e)
            errors.append(f"{worker}: {e}")
        else:
            logger.info("  Deleted successfully: %s", worker)
            deleted.append(worker)

        if delay_s > 0:
            sleep(delay_s)

    return CleanupResult(
        deleted_count=len(deleted),
        skipped_count=len(skipped),
        deleted_names=deleted,
        skipped_names=skipped,
        errors=errors,
        dry_run=dry_run,
    )


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, RateLimited):
        return True
    message = str(exc).lower()
    return "rate limit" in message or "429" in message


def backoff_delays(
    max_retries: int = MAX_RATE_LIMIT_RETRIES,
    base_s: float = RATE_LIMIT_BACKOFF_S,
) -> Tuple[float, ...]:
    """``2**attempt * base_s`` for each retry: 30s, 60s, 120s by default."""
    return tuple((2 ** attempt) * base_s for attempt in range(max_retries))


def with_rate_limit_retry(
    delete_op: DeleteOp,
    *,
    max_retries: int = MAX_RATE_LIMIT_RETRIES,
    base_s: float = RATE_LIMIT_BACKOFF_S,
    sleep: Sleep = time.sleep,
) -> DeleteOp:
    """
    Wrap ``delete_op`` so rate-limit errors are retried with exponential backoff.

    Any other error, and the last rate-limit error once ``max_retries`` retries
    are used up, propagates unchanged.
    """
    delays = backoff_delays(max_retries, base_s)

    @functools.wraps(delete_op)
    def wrapper(worker: str) -> object:
        attempt = 0
        while True:
            try:
                return delete_op(worker)
            except Exception as e:
                if attempt >= max_retries or not is_rate_limit_error(e):
                    raise
                delay = delays[attempt]
                logger.warning(
                    "Rate limit hit for %s, waiting %ss (attempt %d/%d)...",
                    worker,
                    f"{delay:g}",
                    attempt + 1,
                    max_retries,
                )
                sleep(delay)
                attempt += 1

    return wrapper
