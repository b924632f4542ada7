"""
Unattended runner configuration and the shell steps around it.

Steps that must happen as the service user are wrapped in `sudo -E -u <user>`
when that user differs from the one running the provisioner.
"""

from __future__ import annotations

import asyncio
import getpass
from collections.abc import Sequence
from pathlib import Path

from structlog.typing import FilteringBoundLogger

from provisioner.config import RunnerSettings
from provisioner.errors import ProvisionError
from provisioner.supervisor.types import ProcessCommand


# flags whose value must never reach the logs
SENSITIVE_FLAGS = frozenset({"--token"})


def mask_args(args: Sequence[str]) -> str:
    """
    Masks values of sensitive arguments for logging purposes.
    Example: ['--token', 'SECRET'] -> '--token ***'
    """
    masked: list[str] = []
    hide_next = False
    for arg in args:
        masked.append("***" if hide_next else arg)
        hide_next = arg in SENSITIVE_FLAGS and not hide_next
    return " ".join(masked)


def needs_sudo(user: str | None) -> bool:
    return bool(user) and user != getpass.getuser()


def as_user(argv: Sequence[str], user: str | None) -> list[str]:
    if not needs_sudo(user):
        return list(argv)
    return ["sudo", "-E", "-u", str(user), *argv]


async def run_command(
    argv: Sequence[str],
    log_event: FilteringBoundLogger,
    *,
    cwd: Path | None = None,
) -> None:
    """Run to completion with inherited stdio; non-zero exit is fatal."""
    display = mask_args(argv)
    log_event.info("cmd.exec", cmd=display, cwd=str(cwd) if cwd else None)
    try:
        process = await asyncio.create_subprocess_exec(
            *argv, cwd=cwd, stdin=asyncio.subprocess.DEVNULL
        )
    except OSError as exc:
        raise ProvisionError(f"Failed to run {argv[0]}: {exc}") from exc

    returncode = await process.wait()
    if returncode != 0:
        raise ProvisionError(f"Command failed with code {returncode}: {display}")


async def make_runner_dir(runner_dir: Path, user: str, log_event: FilteringBoundLogger) -> None:
    """Create the runner directory owned by `user`; it must not exist yet."""
    if needs_sudo(user):
        await run_command(["sudo", "-u", user, "mkdir", str(runner_dir)], log_event)
    else:
        runner_dir.mkdir()
    log_event.info("runner.dir_created", path=str(runner_dir), user=user)


async def chown_runner_dir(runner_dir: Path, user: str, log_event: FilteringBoundLogger) -> None:
    if needs_sudo(user):
        await run_command(["sudo", "chown", "-R", user, str(runner_dir)], log_event)


def build_config_args(runner_url: str, token: str, settings: RunnerSettings) -> list[str]:
    args = ["./config.sh", "--unattended", "--url", runner_url, "--token", token]
    if settings.replace:
        args.append("--replace")
    args.extend(["--name", settings.name])
    if settings.labels:
        args.extend(["--labels", settings.labels])
    if settings.group:
        args.extend(["--runnergroup", settings.group])
    if settings.disable_update:
        args.append("--disableupdate")
    if settings.ephemeral:
        args.append("--ephemeral")
    return args


def build_run_command(runner_dir: Path, settings: RunnerSettings) -> ProcessCommand:
    argv = as_user(["./run.sh"], settings.svc_user)
    return ProcessCommand(exe=argv[0], args=argv[1:], cwd=str(runner_dir))


async def configure_runner(
    runner_dir: Path,
    runner_url: str,
    token: str,
    settings: RunnerSettings,
    log_event: FilteringBoundLogger,
) -> ProcessCommand:
    """Register the extracted runner and return the command that starts it."""
    log_event.info("runner.configure", name=settings.name, url=runner_url)
    argv = as_user(build_config_args(runner_url, token, settings), settings.svc_user)
    await run_command(argv, log_event, cwd=runner_dir)
    log_event.info("runner.configured", name=settings.name)
    return build_run_command(runner_dir, settings)
