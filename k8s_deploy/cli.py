"""Thin CLI wrapper for k8s_deploy.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler

from k8s_deploy import __version__
from k8s_deploy.config import (
    Settings,
    get_settings,
    load_deploy_config,
    print_settings_json,
)
from k8s_deploy.errors import DeployError

app = typer.Typer(
    name="k8s-deploy",
    help="k8s-deploy - build container images from a source directory",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"k8s-deploy version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Send log records to stderr through Rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


def _fail(message: str, code: str, json_output: bool) -> NoReturn:
    if json_output:
        _echo_json({"success": False, "code": code, "message": message})
    else:
        console.print(f"Error: {message}", style="red", markup=False, highlight=False)
    raise typer.Exit(code=1)


def _load_settings(json_output: bool = False) -> Settings:
    try:
        return get_settings()
    except DeployError as e:
        _fail(e.message, e.code, json_output)


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        ),
    ] = None,
) -> None:
    """k8s-deploy - build container images from a source directory."""
    level = (log_level or _load_settings().log_level).upper()
    if level not in LOG_LEVELS:
        console.print(f"[red]Invalid log level: {log_level}[/red]")
        console.print(f"Valid values: {', '.join(LOG_LEVELS)}")
        raise typer.Exit(code=1)
    configure_logging(level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = _load_settings(json_output)
    if json_output:
        typer.echo(print_settings_json(settings))
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Daemon:[/bold]")
        console.print(f"  Docker host:         {settings.docker_host}", highlight=False)
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Read chunk size:     {settings.read_chunk_size}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Connect timeout:     {settings.connect_timeout}")
        console.print(f"  Build timeout:       {settings.build_timeout}")


@app.command()
def context(
    directory: Annotated[
        Path,
        typer.Argument(help="Build context directory"),
    ] = Path("."),
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the entries that would be sent as the build context."""
    from k8s_deploy.builds.archive import iter_context_entries

    try:
        entries = list(iter_context_entries(directory))
    except DeployError as e:
        _fail(e.message, e.code, json_output)

    if json_output:
        output = [
            {
                "path": e.relative_path,
                "type": e.entry_type.value,
                "mode": f"{e.mode:04o}",
                "size": e.size,
                "link_target": e.link_target,
            }
            for e in entries
        ]
        _echo_json(output)
        return

    total = sum(e.size for e in entries)
    console.print(
        f"[bold]{len(entries)} entries, {total} bytes in {directory}:[/bold]",
        highlight=False,
    )
    for e in entries:
        suffix = f" -> {e.link_target}" if e.link_target is not None else ""
        console.print(
            f"  {e.mode:04o} {e.entry_type.value:<7} {e.size:>10}  "
            f"{e.relative_path}{suffix}",
            markup=False,
            highlight=False,
        )


@app.command()
def build(
    container_repo: Annotated[
        str,
        typer.Option(
            "--container-repo",
            "-r",
            help='Repository to push the container image to, "owner/name"',
        ),
    ],
    container_dir: Annotated[
        Path,
        typer.Option(
            "--container-dir",
            "-d",
            help="Directory which contains the container Dockerfile",
        ),
    ] = Path("."),
    image_version: Annotated[
        str | None,
        typer.Option(
            "--image-version",
            "-t",
            help="Release version, used as the container image tag. Defaults "
            "to the hash of the most recent commit when run in a git repository",
        ),
    ] = None,
    docker_host: Annotated[
        str | None,
        typer.Option("--docker-host", help="Build daemon endpoint"),
    ] = None,
    timeout: Annotated[
        int | None,
        typer.Option("--timeout", help="Build timeout in seconds"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build a container image from a directory.

    The directory is archived as the build context and built by the
    daemon, tagged "<container-repo>:<image-version>". Build output is
    printed as it arrives. Exits non-zero if the build fails.
    """
    from k8s_deploy.builds.service import (
        decode_build_event,
        find_build_error,
        stream_build,
    )

    try:
        deploy_config = load_deploy_config(container_repo, container_dir, image_version)
    except DeployError as e:
        _fail(e.message, e.code, json_output)

    settings = _load_settings(json_output)
    overrides: dict[str, Any] = {}
    if docker_host:
        overrides["docker_host"] = docker_host
    if timeout is not None:
        overrides["build_timeout"] = timeout
    if overrides:
        settings = settings.model_copy(update=overrides)

    tag = deploy_config.image_tag
    if not json_output:
        console.print(
            f"[blue]Building {tag} from {deploy_config.container_dir} "
            f"(version from {deploy_config.version_source.value})[/blue]",
            highlight=False,
        )

    lines: list[str] = []
    try:
        for line in stream_build(deploy_config.container_dir, tag, settings=settings):
            lines.append(line)
            if not json_output and line.strip():
                text = decode_build_event(line).text
                console.print(text, markup=False, highlight=False)
    except DeployError as e:
        _fail(e.message, e.code, json_output)
    except KeyboardInterrupt:
        console.print("[yellow]Build cancelled[/yellow]")
        raise typer.Exit(code=130) from None

    build_error = find_build_error(lines)
    if json_output:
        _echo_json(
            {
                "success": build_error is None,
                "tag": str(tag),
                "version_source": deploy_config.version_source.value,
                "error": build_error,
                "lines": lines,
            }
        )
    elif build_error is None:
        console.print(f"[green]Built {tag}[/green]", highlight=False)
    else:
        console.print(f"[red]Build failed: {build_error}[/red]", highlight=False)

    if build_error is not None:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
