from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .errors import ConfigError, WranglerCommandError

logger = logging.getLogger(__name__)

DEFAULT_COMMAND: tuple[str, ...] = ("npx", "wrangler")
URL_RE = re.compile(r"https://[^\s]+")


@dataclass(frozen=True)
class WranglerResult:
    exit_code: int
    stdout: str
    stderr: str


@dataclass(frozen=True)
class DeployResult:
    success: bool
    worker_name: str
    output: str
    url: Optional[str] = None
    error: Optional[str] = None


Runner = Callable[..., subprocess.CompletedProcess]


def _fmt(args: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in args)


def env_args(environment: str) -> List[str]:
    """Production deploys use the top-level config, everything else ``--env``."""
    if environment and environment != "production":
        return ["--env", environment]
    return []


def extract_url(output: str) -> Optional[str]:
    m = URL_RE.search(output)
    return m.group(0) if m else None


class WranglerClient:
    """
    Runs the ``wrangler`` CLI with the Cloudflare credentials injected into its
    environment.
    """

    def __init__(
        self,
        api_token: str,
        account_id: str,
        *,
        command: Sequence[str] = DEFAULT_COMMAND,
        cwd: Optional[Path] = None,
        runner: Runner = subprocess.run,
    ) -> None:
        if not api_token or not account_id:
            raise ConfigError("API token and account ID are required")
        self.command = list(command)
        self.cwd = cwd
        self._runner = runner
        self._env: Dict[str, str] = {
            "CLOUDFLARE_API_TOKEN": api_token,
            "CLOUDFLARE_ACCOUNT_ID": account_id,
        }

    def _merged_env(self) -> Mapping[str, str]:
        merged = os.environ.copy()
        merged.update(self._env)
        return merged

    def exec(self, args: Sequence[str], *, input_text: Optional[str] = None) -> WranglerResult:
        cmd = [*self.command, *args]
        logger.debug("Executing: %s", _fmt(cmd))
        try:
            p = self._runner(
                cmd,
                cwd=str(self.cwd) if self.cwd else None,
                input=input_text,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=self._merged_env(),
                check=False,
            )
        except OSError as e:
            raise WranglerCommandError(f"cannot run {_fmt(cmd)}: {e}") from e
        return WranglerResult(exit_code=p.returncode, stdout=(p.stdout or "").strip(), stderr=(p.stderr or "").strip())

    def check_available(self) -> bool:
        if not self.command or shutil.which(self.command[0]) is None:
            return False
        try:
            return self.exec(["--version"]).exit_code == 0
        except WranglerCommandError:
            return False

    def set_secret(self, key: str, value: str, environment: str = "production") -> None:
        res = self.exec(["secret", "put", key, *env_args(environment)], input_text=value)
        if res.exit_code != 0:
            raise WranglerCommandError(f"Failed to set secret {key}: {res.stderr or res.stdout}")
        logger.info("Set secret: %s", key)

    def deploy_worker(
        self,
        worker_name: str,
        environment: str = "production",
        *,
        secrets: Optional[Mapping[str, str]] = None,
        deploy_command: str = "deploy",
    ) -> DeployResult:
        """
        Set ``secrets`` and run ``wrangler <deploy_command> [--env <environment>]``.

        A secret that cannot be set is only warned about. A deploy command that
        cannot be started or exits non-zero is returned as an unsuccessful
        ``DeployResult``, not raised.
        """
        if secrets:
            logger.info("Setting %d secrets for environment: %s", len(secrets), environment)
        for key, value in (secrets or {}).items():
            try:
                self.set_secret(key, value, environment)
            except WranglerCommandError as e:
                logger.warning("%s", e)

        try:
            args = [*shlex.split(deploy_command), *env_args(environment)]
            logger.info("Executing: %s", _fmt([*self.command, *args]))
            res = self.exec(args)
        except WranglerCommandError as e:
            logger.error("Deployment failed: %s", e)
            return DeployResult(success=False, worker_name=worker_name, output="", error=str(e))

        if res.exit_code != 0:
            return DeployResult(
                success=False,
                worker_name=worker_name,
                output=res.stdout,
                error=res.stderr or res.stdout,
            )

        url = extract_url(res.stdout)
        logger.info("Successfully deployed worker: %s", worker_name)
        if url:
            logger.info("Deployment URL: %s", url)
        return DeployResult(success=True, worker_name=worker_name, output=res.stdout, url=url)
