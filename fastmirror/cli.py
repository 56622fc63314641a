from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from fastmirror.auth import default_token, resolve_token
from fastmirror.config import (
    MirrorConfig,
    check_roots,
    check_server,
    config_path,
    load_config,
    load_config_or_default,
    mask_token,
    save_config,
    state_db_path,
)
from fastmirror.filters import PathFilter, build_path_filter
from fastmirror.models import CopyJob, DuplicateOption
from fastmirror.progress_ui import MirrorProgressUI
from fastmirror.session import MirrorSession
from fastmirror.state_db import load_last_run, record_run
from fastmirror.worker import WorkerStartError


app = typer.Typer(help="FastMirror CLI")
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
) -> None:
    """Mirror a directory tree between two paths on a remote file service."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.ERROR,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


def _console_log(line: str) -> None:
    console.print(Text(line), highlight=False)


def _render_jobs(title: str, jobs: list[CopyJob]) -> None:
    if not jobs:
        return

    table = Table(title=title)
    table.add_column("Source dir")
    table.add_column("Destination dir")
    table.add_column("Files", justify="right")
    table.add_column("Names")

    for job in jobs:
        names = job.names
        preview = ", ".join(names[:5]) + (f", ... (+{len(names) - 5})" if len(names) > 5 else "")
        dst = escape(job.dst_dir) + (" [yellow](new)[/yellow]" if job.create_dst_dir else "")
        table.add_row(escape(job.src_dir), dst, str(len(names)), escape(preview))

    console.print(table)


def _resolve_config(
    server: str | None,
    token: str | None,
    src: str | None,
    dst: str | None,
    policy: DuplicateOption | None,
    *,
    no_mkdir: bool = False,
) -> MirrorConfig:
    base = load_config_or_default()
    config = base.with_overrides(
        server=server,
        src_root=src,
        dst_root=dst,
        duplicate_option=policy,
        create_missing_dirs=False if no_mkdir else None,
    )
    config.token = (token or "").strip() or resolve_token(base.token) or ""
    return config


def _crawl(session: MirrorSession) -> bool:
    if not session.start_diff():
        return False
    session.wait_for_crawl()
    return session.crawl_state.ready


@app.command()
def init(
    server: str,
    src: str = typer.Option(..., "--src", help="Source root on the server (full path)."),
    dst: str = typer.Option(..., "--dst", help="Destination root on the server (full path)."),
    token: str | None = typer.Option(None, "--token", help="Server token. Defaults to FASTMIRROR_TOKEN."),
    policy: DuplicateOption = typer.Option(
        DuplicateOption.NO_OVERWRITE,
        "--policy",
        help="What to do with files that already exist at the destination.",
    ),
) -> None:
    """Write FastMirror config in the current directory."""
    config = MirrorConfig(server="", token="", src_root="", dst_root="").with_overrides(
        server=server, src_root=src, dst_root=dst, duplicate_option=policy
    )
    config.token = (token or "").strip() or default_token()
    problem = check_server(config) or check_roots(config)
    if problem:
        console.print(f"[red]{problem}[/red]")
        raise typer.Exit(code=1)

    path = save_config(config)
    console.print(f"[green]Initialized FastMirror[/green] for {config.server}")
    console.print(f"Config: {path}")
    console.print(f"Mirror: {config.src_root} -> {config.dst_root} ({config.duplicate_option.value})")
    if not config.token:
        console.print(
            "[yellow]FASTMIRROR_TOKEN not found in environment. `token` was initialized as empty.[/yellow]"
        )


def _diff(config: MirrorConfig, path_filter: PathFilter) -> int:
    try:
        with MirrorProgressUI(console=console) as ui:
            with MirrorSession(config, log=_console_log, progress=ui, path_filter=path_filter) as session:
                if not _crawl(session):
                    return 1
                jobs = session.plan()
    except KeyboardInterrupt:
        console.print("[yellow]Diff interrupted.[/yellow]")
        return 130
    except WorkerStartError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    _render_jobs("Planned copies", jobs)
    if not jobs:
        console.print("[green]Destination already has every source file.[/green]")
    else:
        total = sum(len(job.names) for job in jobs)
        console.print(f"{len(jobs)} director(ies), {total} file(s) to copy")
    return 0


@app.command()
def diff(
    server: str | None = typer.Option(None, "--server", help="Server base URL (http/https)."),
    token: str | None = typer.Option(None, "--token", help="Server token."),
    src: str | None = typer.Option(None, "--src", help="Source root on the server."),
    dst: str | None = typer.Option(None, "--dst", help="Destination root on the server."),
    policy: DuplicateOption | None = typer.Option(None, "--policy", help="Duplicate file policy."),
    include: list[str] | None = typer.Option(
        None, "--include", help="Include glob pattern(s) for files to mirror (repeatable)."
    ),
    exclude: list[str] | None = typer.Option(
        None, "--exclude", help="Exclude glob pattern(s) for files to skip (repeatable)."
    ),
) -> None:
    """Crawl both roots and show what a copy would do."""
    config = _resolve_config(server, token, src, dst, policy)
    raise typer.Exit(code=_diff(config, build_path_filter(include, exclude)))


def _copy(config: MirrorConfig, path_filter: PathFilter) -> int:
    try:
        with MirrorProgressUI(console=console) as ui:
            with MirrorSession(config, log=_console_log, progress=ui, path_filter=path_filter) as session:
                if not _crawl(session):
                    return 1
                if not session.start_copy():
                    return 1
                session.wait_for_copy()
                report = session.last_report
    except KeyboardInterrupt:
        console.print(
            "[yellow]Copy interrupted.[/yellow] Requests already sent may still complete on the server."
        )
        return 130
    except WorkerStartError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    if report is None:
        return 1

    asyncio.run(
        record_run(
            state_db_path(),
            server=config.server,
            src_root=config.src_root,
            dst_root=config.dst_root,
            duplicate_option=config.duplicate_option,
            report=report,
        )
    )
    _render_jobs("Failed copies", report.failed_jobs)
    if report.failure_count:
        console.print(
            f"[red]{report.failure_count} of {report.job_count} copy job(s) failed.[/red] "
            "Run `fm failures` to list them again."
        )
        return 1
    console.print(f"[green]Copied {report.job_count} job(s).[/green]")
    return 0


@app.command()
def copy(
    server: str | None = typer.Option(None, "--server", help="Server base URL (http/https)."),
    token: str | None = typer.Option(None, "--token", help="Server token."),
    src: str | None = typer.Option(None, "--src", help="Source root on the server."),
    dst: str | None = typer.Option(None, "--dst", help="Destination root on the server."),
    policy: DuplicateOption | None = typer.Option(None, "--policy", help="Duplicate file policy."),
    include: list[str] | None = typer.Option(
        None, "--include", help="Include glob pattern(s) for files to mirror (repeatable)."
    ),
    exclude: list[str] | None = typer.Option(
        None, "--exclude", help="Exclude glob pattern(s) for files to skip (repeatable)."
    ),
    no_mkdir: bool = typer.Option(
        False,
        "--no-mkdir",
        help="Do not create missing destination directories before copying into them.",
    ),
) -> None:
    """Crawl both roots, then copy what the destination is missing."""
    config = _resolve_config(server, token, src, dst, policy, no_mkdir=no_mkdir)
    raise typer.Exit(code=_copy(config, build_path_filter(include, exclude)))


async def _failures_async(base_dir: Path | None = None) -> int:
    db_path = state_db_path(base_dir)
    if not db_path.exists():
        console.print(f"[yellow]No copy runs recorded in {db_path}[/yellow]")
        return 0

    result = await load_last_run(db_path)
    if result is None:
        console.print(f"[yellow]No copy runs recorded in {db_path}[/yellow]")
        return 0

    record, jobs = result
    finished = datetime.fromtimestamp(record.finished_at)
    console.print(
        f"Last run #{record.run_id} at {finished:%Y-%m-%d %H:%M:%S}: "
        f"{record.src_root} -> {record.dst_root} on {record.server} "
        f"({record.duplicate_option.value})"
    )
    console.print(f"Jobs: {record.job_count} | Failed: {record.failure_count}")
    _render_jobs("Failed copies", jobs)
    return 0


@app.command()
def failures() -> None:
    """Show the failed copy jobs of the last run."""
    raise typer.Exit(code=asyncio.run(_failures_async()))


@app.command()
def show_config() -> None:
    """Print the config file in the current directory (token masked)."""
    try:
        config = load_config()
    except FileNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    console.print(f"Config: {config_path()}")
    console.print(f"Server: {config.server}")
    console.print(f"Token: {mask_token(config.token) or '[yellow](empty)[/yellow]'}")
    console.print(f"Source: {config.src_root}")
    console.print(f"Destination: {config.dst_root}")
    console.print(f"Duplicate option: {config.duplicate_option.value}")
    console.print(f"Create missing dirs: {config.create_missing_dirs}")
