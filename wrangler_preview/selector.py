from __future__ import annotations

import enum
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Pattern, Sequence, Set, Tuple, Union

from .errors import ConfigError

logger = logging.getLogger(__name__)


class CleanupMode(str, enum.Enum):
    PR_LINKED = "pr-linked"
    MANUAL = "manual"
    BATCH = "batch"
    BATCH_BY_AGE = "batch-by-age"


@dataclass(frozen=True)
class WorkerScript:
    """One entry of the account's worker inventory."""

    id: str
    created_on: Optional[datetime] = None

    @classmethod
    def from_api(cls, item: dict) -> "WorkerScript":
        created = item.get("created_on")
        return cls(id=str(item.get("id", "")), created_on=parse_timestamp(created) if created else None)


def parse_timestamp(value: str) -> datetime:
    """Parse a Cloudflare ISO-8601 timestamp (``...Z``) into an aware datetime."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat only takes 3 or 6 fractional digits before 3.11
    m = re.match(r"^(.*T\d\d:\d\d:\d\d)\.(\d+)(.*)$", text)
    if m:
        text = f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}{m.group(3)}"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def glob_to_regex(pattern: str) -> Pattern[str]:
    """
    Compile a glob into an anchored regex: ``*`` matches any run of characters,
    ``?`` exactly one, everything else (brackets included) is literal.
    """
    parts = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile(f"^{''.join(parts)}$")


def parse_comma_separated_list(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [s.strip() for s in text.split(",") if s.strip()]


def build_pr_linked_list(pr_number: int, prefix: str = "preview") -> List[str]:
    return [f"{prefix}-{pr_number}"]


def build_manual_list(worker_names: Iterable[str]) -> List[str]:
    return [name.strip() for name in worker_names if name.strip()]


def build_batch_list(
    all_workers: Sequence[str],
    pattern: str,
    exclude_list: Sequence[str] = (),
) -> List[str]:
    regex = glob_to_regex(pattern)
    matched = [w for w in all_workers if regex.match(w)]

    if exclude_list:
        excluded = {name.strip() for name in exclude_list}
        matched = [w for w in matched if w not in excluded]
    return matched


def build_batch_by_age_list(
    all_workers: Sequence[WorkerScript],
    max_age_days: float,
    pattern: Optional[str] = None,
    exclude_list: Sequence[str] = (),
    *,
    now: Optional[datetime] = None,
) -> List[str]:
    """
    Select workers strictly older than ``max_age_days``.

    A worker whose age equals the threshold is kept alive. Workers without a
    creation timestamp are never selected.
    """
    now = now or datetime.now(timezone.utc)
    max_age = timedelta(days=max_age_days)

    matched = [w for w in all_workers if w.created_on is not None and now - w.created_on > max_age]

    if pattern:
        regex = glob_to_regex(pattern)
        matched = [w for w in matched if regex.match(w.id)]

    if exclude_list:
        excluded = {name.strip() for name in exclude_list}
        matched = [w for w in matched if w.id not in excluded]

    return [w.id for w in matched]


def select_targets(
    mode: Union[CleanupMode, str],
    *,
    pr_number: Optional[int] = None,
    prefix: str = "preview",
    worker_names: Optional[Sequence[str]] = None,
    pattern: Optional[str] = None,
    all_workers: Optional[Sequence[Union[str, WorkerScript]]] = None,
    exclude_list: Sequence[str] = (),
    max_age_days: Optional[float] = None,
    now: Optional[datetime] = None,
) -> List[str]:
    """
    Build the list of worker names to delete for one cleanup mode.

    ``all_workers`` is the inventory fetched by the caller; ``batch`` accepts
    names or ``WorkerScript`` entries, ``batch-by-age`` needs ``WorkerScript``
    entries with creation timestamps. An empty result means nothing to clean.

    Raises:
        ConfigError: for an unknown mode or a missing mode parameter.
    """
    try:
        mode = CleanupMode(mode)
    except ValueError as exc:
        raise ConfigError(f"Invalid cleanup mode: {mode}") from exc

    if mode is CleanupMode.PR_LINKED:
        if not pr_number:
            raise ConfigError("PR number is required for pr-linked mode")
        return build_pr_linked_list(pr_number, prefix or "preview")

    if mode is CleanupMode.MANUAL:
        if not worker_names:
            raise ConfigError("Worker names are required for manual mode")
        return build_manual_list(worker_names)

    if mode is CleanupMode.BATCH:
        if not pattern:
            raise ConfigError("Batch pattern is required for batch mode")
        names = [w.id if isinstance(w, WorkerScript) else w for w in all_workers or ()]
        return build_batch_list(names, pattern, exclude_list)

    if max_age_days is None or not math.isfinite(max_age_days) or not 0 < max_age_days <= timedelta.max.days:
        raise ConfigError("max-age-days must be a positive number for batch-by-age mode")
    scripts = [w for w in all_workers or () if isinstance(w, WorkerScript)]
    return build_batch_by_age_list(scripts, max_age_days, pattern, exclude_list, now=now)


@dataclass(frozen=True)
class ExactName:
    name: str

    def matches(self, worker: str) -> bool:
        return worker == self.name


@dataclass(frozen=True)
class GlobPattern:
    pattern: str
    regex: Pattern[str] = field(compare=False)

    @classmethod
    def compile(cls, pattern: str) -> "GlobPattern":
        return cls(pattern=pattern, regex=glob_to_regex(pattern))

    def matches(self, worker: str) -> bool:
        return self.regex.match(worker) is not None


ExclusionEntry = Union[ExactName, GlobPattern]


@dataclass(frozen=True)
class ExclusionFilter:
    entries: Tuple[ExclusionEntry, ...] = ()

    @property
    def exact_names(self) -> Set[str]:
        return {e.name for e in self.entries if isinstance(e, ExactName)}

    @property
    def patterns(self) -> List[GlobPattern]:
        return [e for e in self.entries if isinstance(e, GlobPattern)]

    def excludes(self, worker: str) -> Optional[ExclusionEntry]:
        """Return the entry that excludes ``worker``, exact names first."""
        if worker in self.exact_names:
            return ExactName(worker)
        for p in self.patterns:
            if p.matches(worker):
                return p
        return None


def parse_exclusions(text: Optional[str]) -> ExclusionFilter:
    """
    Parse a comma-separated exclusion input. Items containing ``*`` or ``?``
    become glob patterns, all others exact worker names.
    """
    entries: List[ExclusionEntry] = []
    for item in parse_comma_separated_list(text):
        if "*" in item or "?" in item:
            entries.append(GlobPattern.compile(item))
        else:
            entries.append(ExactName(item))

    result = ExclusionFilter(tuple(entries))
    if result.exact_names:
        logger.info("Excluded workers (exact): %s", ", ".join(sorted(result.exact_names)))
    if result.patterns:
        logger.info("Excluded patterns: %s", ", ".join(p.pattern for p in result.patterns))
    return result


def filter_by_exclusion(workers: Sequence[str], exclusions: ExclusionFilter) -> List[str]:
    kept: List[str] = []
    for name in workers:
        entry = exclusions.excludes(name)
        if entry is None:
            kept.append(name)
        elif isinstance(entry, ExactName):
            logger.debug("Excluded: %s (exact match)", name)
        else:
            logger.debug("Excluded: %s (matches pattern %s)", name, entry.pattern)

    excluded = len(workers) - len(kept)
    if excluded:
        logger.info("Total excluded workers: %d", excluded)
    return kept


def parse_worker_names_input(
    names: Optional[str],
    numbers: Optional[str],
    prefix: Optional[str],
) -> Optional[List[str]]:
    """
    Worker names from action inputs: explicit names win over
    ``prefix`` + numbers (``"preview-"`` + ``"1,2"`` -> ``preview-1, preview-2``).
    """
    if names:
        return parse_comma_separated_list(names)
    if numbers and prefix:
        return [f"{prefix}{n}" for n in parse_comma_separated_list(numbers)]
    return None
