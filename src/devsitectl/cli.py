"""Typer-powered command line for ``devsitectl``.

``devsitectl run --name=<project>`` provisions a complete local site:
framework scaffold, environment document, database, hosts entry, TLS
certificate and nginx site. Every run is logged as one structured record in
``operations.jsonl`` under the configured log directory.
"""
from __future__ import annotations

import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .dependencies import DependencyValidator
from .errors import ProvisioningError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .pipeline import (
    OutcomeObserver,
    PipelineState,
    ProvisioningPipeline,
    StepOutcome,
    build_executors,
)
from .providers import BrowserLauncher
from .reporter import ResultReporter, connection_details
from .request import resolve_paths, resolve_request
from .system import CommandRunner, SystemFiles
from .templates import TemplateEngine

console = Console()

# Exit status Typer uses after reporting a usage error.
USAGE_ERROR_CODE = 2

# Stand-in project name when ``check`` runs without ``--name``.
CHECK_PROJECT_NAME = "devsite"

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    help="Path to an alternate config.yml (defaults to ~/.config/devsitectl/config.yml).",
    dir_okay=False,
)
NAME_OPTION = typer.Option(
    None,
    "--name",
    help="Project name; also the directory under base_dir and the database name.",
)
DOMAIN_OPTION = typer.Option(
    None,
    "--domain",
    help="Local domain for the site (defaults to <name> plus the configured suffix).",
)
PHP_OPTION = typer.Option(
    None,
    "--php",
    help="PHP version whose FPM socket serves the site (defaults to the configured version).",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit a JSON document instead of tables.",
)
OPEN_OPTION = typer.Option(
    None,
    "--open/--no-open",
    help="Open the site in a browser once provisioning is done.",
)


app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Local web development site provisioner.

        Scaffolds a Laravel project and wires it into the local MySQL, nginx,
        PHP-FPM and hosts file, with HTTPS, in one idempotent run.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    runner: CommandRunner
    files: SystemFiles
    templates: TemplateEngine
    logger: StructuredLogger


def _build_runtime(config_file: Path | None) -> RuntimeContext:
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.FAILURE) from exc
    runner = CommandRunner.from_config(config.privilege)
    return RuntimeContext(
        config=config,
        runner=runner,
        files=SystemFiles(runner),
        templates=TemplateEngine.with_overrides(config.templates_dir),
        logger=StructuredLogger(config.logs_dir),
    )


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the devsitectl version and exit.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"devsitectl {__version__}")
        raise typer.Exit(code=ExitCode.OK)
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(op: OperationScope, error: ProvisioningError, *, rc: int = 1) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(error.message)}[/red]")
    if error.remediation:
        console.print(f"  remediation: {escape(error.remediation)}")
    op.error(error.message, rc=rc, context=error.to_dict())
    raise typer.Exit(code=rc)


def _step_recorder(op: OperationScope) -> OutcomeObserver:
    def _record(state: PipelineState, outcome: StepOutcome) -> None:
        op.add_step(
            outcome.step,
            outcome.status.value,
            state=state.value,
            detail=outcome.detail,
        )

    return _record


@app.command("run")
def run_command(
    name: str | None = NAME_OPTION,
    domain: str | None = DOMAIN_OPTION,
    php: str | None = PHP_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
    json_output: bool = JSON_OPTION,
    open_browser: bool | None = OPEN_OPTION,
) -> None:
    """Provision a local development site end to end."""
    runtime = _build_runtime(config_file)
    config = runtime.config
    options = {"name": name, "domain": domain, "phpVersion": php}

    with runtime.logger.operation(
        "run",
        args={key: value for key, value in options.items() if value is not None},
        target={"kind": "site", "name": name},
    ) as op:
        try:
            request = resolve_request(
                options,
                default_php_version=config.default_php_version,
                domain_suffix=config.domain_suffix,
            )
        except ProvisioningError as exc:
            _command_error(op, exc)
        paths = resolve_paths(request, config)

        pipeline = ProvisioningPipeline(
            DependencyValidator(config, runtime.runner),
            build_executors(config, runtime.runner, runtime.files, runtime.templates),
            observer=_step_recorder(op),
        )
        report = pipeline.run(request, paths, config)

        warnings: list[str] = []
        should_open = config.open_browser if open_browser is None else open_browser
        if report.succeeded and should_open:
            launcher = BrowserLauncher(runtime.runner, config.browser.launcher_bin)
            message = launcher.open(request.url)
            if message:
                warnings.append(message)

        ResultReporter(console, json_output=json_output).render(
            report, config, warnings=warnings
        )

        failure = report.failure
        if failure is not None:
            op.error(
                failure.detail or f"Step '{failure.step}' failed.",
                rc=ExitCode.FAILURE,
                context={"state": report.state.value, "step": failure.step},
            )
            raise typer.Exit(code=ExitCode.FAILURE)

        context = {"connection": connection_details(report, config)}
        if warnings:
            op.warning(
                "Site provisioned with warnings.",
                warnings=warnings,
                changed=report.changed,
                context=context,
            )
        else:
            op.success("Site provisioned.", changed=report.changed, context=context)


@app.command("check")
def check_command(
    name: str | None = NAME_OPTION,
    php: str | None = PHP_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Report every missing dependency without changing anything."""
    runtime = _build_runtime(config_file)
    config = runtime.config

    with runtime.logger.operation(
        "check",
        args={"name": name, "phpVersion": php},
        target={"kind": "host"},
    ) as op:
        try:
            request = resolve_request(
                {"name": name or CHECK_PROJECT_NAME, "phpVersion": php},
                default_php_version=config.default_php_version,
                domain_suffix=config.domain_suffix,
            )
        except ProvisioningError as exc:
            _command_error(op, exc)
        paths = resolve_paths(request, config)

        results = DependencyValidator(config, runtime.runner).report(request, paths)
        for result in results:
            op.add_step(result.id, "success" if result.ok else "error", detail=result.message)
        ResultReporter(console, json_output=json_output).render_checks(results)

        missing = [result.message for result in results if not result.ok]
        if missing:
            op.error("Dependencies missing.", errors=missing, rc=ExitCode.FAILURE)
            raise typer.Exit(code=ExitCode.FAILURE)
        op.success("All dependencies available.")


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return its exit code.

    Usage errors such as unknown options exit with ``1`` like every other
    failure, rather than the ``2`` Typer exits with after printing them.
    """
    try:
        app(args=list(argv) if argv is not None else None, prog_name="devsitectl")
    except SystemExit as exc:
        code = exc.code
        if code is None:
            return ExitCode.OK
        if not isinstance(code, int):
            console.print(f"[red]{escape(str(code))}[/red]")
            return ExitCode.FAILURE
        if code == USAGE_ERROR_CODE:
            return ExitCode.FAILURE
        return code
    return ExitCode.OK


__all__ = ["app", "main"]
