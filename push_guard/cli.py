"""CLI entrypoint for push-guard."""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Annotated

import typer

from push_guard import __version__
from push_guard.check import CheckOutcome, SecretsCheck
from push_guard.config import AppConfig, default_config_template, load_app_config
from push_guard.errors import PushGuardError
from push_guard.git import GitRepositoryDiffSource
from push_guard.models import BLANK_BLOB_ID, PushContext, RefChange
from push_guard.output import render_human, render_json
from push_guard.response_handler import Blocked

TOKEN_ENV_VAR = "PUSH_GUARD_DETECTION_TOKEN"
PUSH_OPTION_COUNT_ENV_VAR = "GIT_PUSH_OPTION_COUNT"

app = typer.Typer(
    name="push-guard",
    no_args_is_help=True,
    help="Scan pushed git changes for secrets and block pushes that leak them.",
)


def version_callback(value: bool) -> None:
    """Print version and exit when --version is provided."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option("--version", help="Show version and exit.", callback=version_callback),
    ] = False,
) -> None:
    """Root command callback."""
    _ = version


@app.command("scan")
def scan_command(
    repo: Annotated[Path, typer.Option(help="Repository path.")] = Path("."),
    base: Annotated[
        str | None, typer.Option(help="Old revision of the ref; omit for a new branch.")
    ] = None,
    head: Annotated[str, typer.Option(help="New revision of the ref.")] = "HEAD",
    ref: Annotated[str, typer.Option(help="Name of the updated ref.")] = "refs/heads/main",
    push_option: Annotated[
        list[str] | None,
        typer.Option("--push-option", "-o", help="Git push option, repeatable."),
    ] = None,
    format: Annotated[
        str | None, typer.Option(help="Output format: human|json.", show_default="human")
    ] = None,
    max_changed_paths: Annotated[
        int | None, typer.Option("--max-changed-paths", min=1, help="Override the path limit.")
    ] = None,
    max_lines: Annotated[
        int | None, typer.Option("--max-lines", min=1, help="Override the added-line limit.")
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", help="Enable debug logging.")] = False,
) -> None:
    """Scan the commits between two revisions as if they were pushed."""
    _configure_logging(verbose)
    app_config = _load_config_or_raise(repo, config_file)
    output_format = _output_format_or_raise(format or app_config.format)
    app_config = _apply_overrides(
        app_config, max_changed_paths=max_changed_paths, max_lines=max_lines
    )

    old_rev = base if base is not None else BLANK_BLOB_ID
    context = PushContext(
        changes=[RefChange(oldrev=old_rev, newrev=head, ref=ref)],
        push_options=list(push_option or []),
    )
    source = GitRepositoryDiffSource(repo.resolve(), exclude_existing_refs=False)
    outcome = _run_check_or_exit(source, app_config, context)
    _emit(outcome, output_format=output_format, input_source="git_range", context=context)


@app.command("pre-receive")
def pre_receive_command(
    repo: Annotated[Path, typer.Option(help="Repository path.")] = Path("."),
    format: Annotated[
        str | None, typer.Option(help="Output format: human|json.", show_default="human")
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", help="Enable debug logging.")] = False,
) -> None:
    """Run as a git pre-receive hook: ref updates on stdin, push options from the environment."""
    _configure_logging(verbose)
    app_config = _load_config_or_raise(repo, config_file)
    output_format = _output_format_or_raise(format or app_config.format)

    try:
        changes = parse_ref_updates(sys.stdin.read())
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="stdin") from exc
    if not changes:
        return

    context = PushContext(
        changes=changes,
        push_options=read_push_options(os.environ),
        user=os.environ.get("GL_USERNAME") or os.environ.get("USER"),
        project=os.environ.get("GL_PROJECT_PATH"),
    )
    source = GitRepositoryDiffSource(repo.resolve(), exclude_existing_refs=True)
    outcome = _run_check_or_exit(source, app_config, context)
    _emit(outcome, output_format=output_format, input_source="pre_receive", context=context)


@app.command("config")
def config_command(
    repo: Annotated[Path, typer.Option(help="Repository path.")] = Path("."),
    format: Annotated[str, typer.Option(help="Output format: human|json.")] = "human",
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """Show resolved configuration."""
    output_format = _output_format_or_raise(format)
    app_config = _load_config_or_raise(repo, config_file)
    payload = app_config.to_dict()

    if output_format == "json":
        typer.echo(json.dumps(payload, sort_keys=True))
        return

    thresholds = payload["thresholds"]
    detection = payload["detection"]
    lines = [
        "Resolved configuration:",
        f"- source: {payload['source'] or 'defaults'}",
        f"- format: {payload['format']}",
        f"- thresholds.max_changed_paths: {thresholds['max_changed_paths']}",
        f"- thresholds.max_lines_per_request: {thresholds['max_lines_per_request']}",
        f"- thresholds.paths_batch_size: {thresholds['paths_batch_size']}",
        f"- thresholds.payload_bytes_limit: {thresholds['payload_bytes_limit']}",
        f"- detection.remote_enabled: {detection['remote_enabled']}",
        f"- detection.service_url: {detection['service_url']}",
        f"- eligibility: {payload['eligibility']}",
        f"- exclusions: {len(payload['exclusions'])}",
    ]
    typer.echo("\n".join(lines))


@app.command("config-init")
def config_init_command(
    out: Annotated[Path, typer.Option(help="Output path for starter config TOML.")] = Path(
        ".push-guard.toml"
    ),
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite if file already exists."),
    ] = False,
) -> None:
    """Create a starter repository config file."""
    out_path = out.resolve()
    if out_path.exists() and not force:
        raise typer.BadParameter(
            f"Refusing to overwrite existing file: {out_path}. Use --force to overwrite."
        )
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(default_config_template(), encoding="utf-8")
    typer.echo(f"Wrote starter config: {out_path}")


@app.command("config-validate")
def config_validate_command(
    repo: Annotated[Path, typer.Option(help="Repository path.")] = Path("."),
    config_file: Annotated[
        Path,
        typer.Option("--config", help="Path to config TOML file to validate."),
    ] = Path(".push-guard.toml"),
    format: Annotated[str, typer.Option(help="Output format: human|json.")] = "human",
) -> None:
    """Validate a config file and report its exclusions."""
    output_format = _output_format_or_raise(format)
    app_config = _load_config_or_raise(repo, config_file)
    payload = {
        "ok": True,
        "source": app_config.source,
        "exclusions": [item.to_dict() for item in app_config.exclusions],
    }
    if output_format == "json":
        typer.echo(json.dumps(payload, sort_keys=True))
        return
    typer.echo(
        "\n".join(
            [
                "Config is valid.",
                f"- source: {payload['source']}",
                f"- exclusions: {len(payload['exclusions'])}",
            ]
        )
    )


def main() -> None:
    """Console script entrypoint."""
    app()


def parse_ref_updates(text: str) -> list[RefChange]:
    """Parse pre-receive stdin lines of ``<old> <new> <ref>``."""
    changes: list[RefChange] = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        parts = line.split()
        if len(parts) != 3:
            raise ValueError(f"Malformed ref update on line {line_number}: {line!r}")
        changes.append(RefChange(oldrev=parts[0], newrev=parts[1], ref=parts[2]))
    return changes


def read_push_options(environ: Mapping[str, str]) -> list[str]:
    """Collect ``GIT_PUSH_OPTION_<n>`` values announced by ``GIT_PUSH_OPTION_COUNT``."""
    try:
        count = int(environ.get(PUSH_OPTION_COUNT_ENV_VAR, "0"))
    except ValueError:
        return []
    return [
        environ[f"GIT_PUSH_OPTION_{index}"]
        for index in range(count)
        if f"GIT_PUSH_OPTION_{index}" in environ
    ]


def _run_check_or_exit(
    source: GitRepositoryDiffSource, app_config: AppConfig, context: PushContext
) -> CheckOutcome:
    try:
        return SecretsCheck(source, app_config).validate(context)
    except PushGuardError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc


def _emit(
    outcome: CheckOutcome,
    *,
    output_format: str,
    input_source: str,
    context: PushContext,
) -> None:
    blocked = isinstance(outcome, Blocked)
    if output_format == "json":
        typer.echo(render_json(outcome, input_source=input_source, changes=context.changes))
    else:
        typer.echo(render_human(outcome), err=blocked)

    if blocked:
        raise typer.Exit(code=1)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _apply_overrides(
    app_config: AppConfig, *, max_changed_paths: int | None, max_lines: int | None
) -> AppConfig:
    thresholds = app_config.thresholds
    if max_changed_paths is not None:
        thresholds = replace(thresholds, max_changed_paths=max_changed_paths)
    if max_lines is not None:
        thresholds = replace(thresholds, max_lines_per_request=max_lines)
    return replace(app_config, thresholds=thresholds)


def _output_format_or_raise(value: str) -> str:
    output_format = value.lower()
    if output_format not in {"human", "json"}:
        raise typer.BadParameter("format must be one of: human, json", param_hint="--format")
    return output_format


def _load_config_or_raise(repo: Path, config_file: Path | None = None) -> AppConfig:
    try:
        app_config = load_app_config(repo, config_path=config_file)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="config") from exc

    token = os.environ.get(TOKEN_ENV_VAR)
    if token and not app_config.detection.auth_token:
        app_config.detection.auth_token = token
    return app_config
