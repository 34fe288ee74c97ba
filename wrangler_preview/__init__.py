"""Preview deployments and cleanup for Cloudflare Workers."""

from .errors import (
    ConfigError,
    InvalidTemplate,
    MissingContext,
    PreviewError,
    RateLimited,
    SectionNotFound,
    UpstreamApiError,
    WranglerCommandError,
    WranglerFileNotFound,
)
from .executor import CleanupResult, execute, with_rate_limit_retry
from .naming import generate_worker_name, process_template, sanitize_worker_name
from .selector import CleanupMode, glob_to_regex, select_targets
from .wrangler_toml import ensure_worker_name, update_worker_name

__version__ = "1.0.0"

__all__ = [
    "CleanupMode",
    "CleanupResult",
    "ConfigError",
    "InvalidTemplate",
    "MissingContext",
    "PreviewError",
    "RateLimited",
    "SectionNotFound",
    "UpstreamApiError",
    "WranglerCommandError",
    "WranglerFileNotFound",
    "ensure_worker_name",
    "execute",
    "generate_worker_name",
    "glob_to_regex",
    "process_template",
    "sanitize_worker_name",
    "select_targets",
    "update_worker_name",
    "with_rate_limit_retry",
]
