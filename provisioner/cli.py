from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from provisioner.config import AppConfig, MissingConfigError
from provisioner.errors import ProvisionError
from provisioner.logger import configure_logging, get_logger
from provisioner.provision import Provisioner
from provisioner.supervisor import ProcessCommand, from_text, supervise


app = typer.Typer(help="Self-hosted CI runner provisioner and readiness-gated launcher")

FATAL_ERRORS = (ProvisionError, MissingConfigError, FileNotFoundError, ValueError)


def _load_config(config: Path | None) -> AppConfig:
    return AppConfig.from_yaml(config)


def _echo(line: str) -> None:
    typer.echo(line)


async def _supervise_and_follow(command: ProcessCommand, cfg: AppConfig) -> int:
    settings = cfg.supervise
    log_event = get_logger("proc.event")
    result = await supervise(
        command,
        from_text(settings.ready_text, regex=settings.ready_regex),
        settings.not_ready_timeout_sec,
        settings.ready_timeout_sec,
        echo=_echo,
        log_event=log_event,
        merge_stderr=settings.merge_stderr,
        terminate_on_timeout=settings.terminate_on_timeout,
        stop_timeout_sec=settings.stop_timeout_sec,
        kill_timeout_sec=settings.kill_timeout_sec,
        max_line_len=settings.max_line_len,
    )
    if not result.is_ok:
        log_event.error("supervise.failed", error=result.error, reason=result.end_reason)
        return 1
    return await result.handle.follow(_echo, log_event)


@app.command()
def provision(
    scope: str | None = typer.Argument(None, help="owner/repo or organization"),
    ghe_hostname: str | None = typer.Option(
        None, "--ghe-hostname", "-g", help="GitHub Enterprise Server hostname"
    ),
    name: str | None = typer.Option(
        None, "--name", "-n", help="Runner name (default: hostname)"
    ),
    runner_group: str | None = typer.Option(None, "--runner-group", "-r"),
    user: str | None = typer.Option(None, "--user", "-u", help="User the runner runs as"),
    labels: str | None = typer.Option(None, "--labels", "-l", help="Comma separated labels"),
    disable_update: bool = typer.Option(False, "--disable-update", "-d"),
    replace: bool = typer.Option(
        False, "--replace", "-f", help="Replace a runner of the same name"
    ),
    config: Path | None = typer.Option(None, "--config", help="YAML config file"),
    log_level: str = typer.Option("INFO", "--log-level"),
    json_logs: bool = typer.Option(False, "--json-logs"),
) -> None:
    """
    Register, install and start a runner, failing if it never listens for jobs.

    Only the scope is positional. Host, name, user, labels and group are passed
    as --ghe-hostname, --name, --user, --labels and --runner-group.
    """
    try:
        configure_logging(log_level, json_logs=json_logs)
        cfg = _load_config(config)
        runner = cfg.runner
        if scope:
            runner.scope = scope
        if ghe_hostname:
            cfg.github.ghe_hostname = ghe_hostname
        if name:
            runner.name = name
        if runner_group:
            runner.group = runner_group
        if user:
            runner.svc_user = user
        if labels:
            runner.labels = labels
        runner.disable_update = runner.disable_update or disable_update
        runner.replace = runner.replace or replace

        code = asyncio.run(Provisioner(cfg, echo=_echo).run())
    except FATAL_ERRORS as exc:
        get_logger("cli").error("provision.failed", error=str(exc))
        raise typer.Exit(1) from exc

    raise typer.Exit(code)


@app.command("supervise")
def supervise_command(
    command: list[str] = typer.Argument(..., help="Command and arguments, after --"),
    ready: str | None = typer.Option(None, "--ready", help="Readiness text"),
    regex: bool = typer.Option(False, "--regex", help="Treat --ready as a regular expression"),
    not_ready_timeout: float | None = typer.Option(None, "--not-ready-timeout"),
    ready_timeout: float | None = typer.Option(None, "--ready-timeout"),
    merge_stderr: bool = typer.Option(False, "--merge-stderr"),
    keep_on_timeout: bool = typer.Option(False, "--keep-on-timeout"),
    cwd: Path | None = typer.Option(None, "--cwd"),
    config: Path | None = typer.Option(None, "--config", help="YAML config file"),
    log_level: str = typer.Option("INFO", "--log-level"),
    json_logs: bool = typer.Option(False, "--json-logs"),
) -> None:
    """Start any command and gate on a readiness line."""
    try:
        configure_logging(log_level, json_logs=json_logs)
        cfg = _load_config(config)
        settings = cfg.supervise
        if ready:
            settings.ready_text = ready
        settings.ready_regex = settings.ready_regex or regex
        if not_ready_timeout is not None:
            settings.not_ready_timeout_sec = not_ready_timeout
        if ready_timeout is not None:
            settings.ready_timeout_sec = ready_timeout
        settings.merge_stderr = settings.merge_stderr or merge_stderr
        if keep_on_timeout:
            settings.terminate_on_timeout = False

        process_command = ProcessCommand(
            exe=command[0], args=command[1:], cwd=str(cwd) if cwd else None
        )
        code = asyncio.run(_supervise_and_follow(process_command, cfg))
    except FATAL_ERRORS as exc:
        get_logger("cli").error("supervise.error", error=str(exc))
        raise typer.Exit(1) from exc

    raise typer.Exit(code)


if __name__ == "__main__":
    app()
