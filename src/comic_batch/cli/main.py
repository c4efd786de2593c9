"""命令行入口。"""

from __future__ import annotations

import logging
import queue
import signal
import threading
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from comic_batch.core.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_QUALITY,
    DEFAULT_RESIZE_HEIGHT,
    DEFAULT_WIDTH_THRESHOLD,
    parse_parameters,
)
from comic_batch.core.exceptions import ComicBatchError, InvalidParameter
from comic_batch.core.models import RunReport
from comic_batch.core.progress import ProgressUpdate
from comic_batch.core.report import summary_lines, write_failure_report
from comic_batch.processing.pipeline import ProcessingSession
from comic_batch.tools.locator import resolve_tool
from comic_batch.utils.logging import setup_logging

app = typer.Typer(help="批量将漫画图片缩放、拆分并压缩为 JPEG（基于 GraphicsMagick）。")
console = Console()

EXIT_FAILED = 1
EXIT_PARTIAL = 2
EXIT_CANCELLED = 130


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            if update.message:
                progress.log(update.message)
            return
        if task_id is None:
            task_id = progress.add_task("处理图片", total=update.total)
        progress.update(task_id, completed=update.total if update.finished else update.completed)
        if update.message:
            progress.log(update.message)

    return callback


def _drain(session: ProcessingSession, progress: Progress, done: threading.Event) -> None:
    callback = _build_progress_callback(progress)
    while not (done.is_set() and session.progress.empty()):
        try:
            update = session.progress.get(timeout=0.1)
        except queue.Empty:
            continue
        callback(update)


def _exit_code(report: RunReport) -> int:
    if report.cancelled:
        return EXIT_CANCELLED
    if report.failed_files:
        return EXIT_PARTIAL
    return 0


@app.command("run")
def run_cli(  # noqa: PLR0913
    input_dir: Path = typer.Argument(..., help="输入目录，其下每个子目录为一个处理单元"),
    output: Path = typer.Option(..., "--output", "-o", help="输出目录"),
    width_threshold: str = typer.Option(str(DEFAULT_WIDTH_THRESHOLD), "--width-threshold", help="宽度达到该值时左右拆分"),
    resize_height: str = typer.Option(str(DEFAULT_RESIZE_HEIGHT), "--resize-height", help="输出高度（像素）"),
    quality: str = typer.Option(str(DEFAULT_QUALITY), "--quality", "-q", help="JPEG 质量 1-100"),
    workers: str = typer.Option(str(DEFAULT_CONCURRENCY), "--workers", "-w", help="并发进程数量 1-6"),
    unsharp_radius: str = typer.Option("1.5", "--unsharp-radius", help="锐化半径"),
    unsharp_sigma: str = typer.Option("1", "--unsharp-sigma", help="锐化 sigma"),
    unsharp_amount: str = typer.Option("0.7", "--unsharp-amount", help="锐化强度，0 表示不锐化"),
    unsharp_threshold: str = typer.Option("0.02", "--unsharp-threshold", help="锐化阈值"),
    grayscale: bool = typer.Option(False, "--gray/--no-gray", help="是否转换为灰度"),
    batch_size: str = typer.Option(str(DEFAULT_BATCH_SIZE), "--batch-size", help="每个 gm batch 进程处理的图片数 1-1000"),
    gm_path: Optional[Path] = typer.Option(None, "--gm", help="GraphicsMagick 可执行文件路径"),
    report_path: Optional[Path] = typer.Option(None, "--report", help="将失败文件列表写入 CSV"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """执行批量处理。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)
    logger = logging.getLogger(__name__)

    try:
        params, warning = parse_parameters(
            width_threshold=width_threshold,
            resize_height=resize_height,
            quality=quality,
            concurrency=workers,
            unsharp_radius=unsharp_radius,
            unsharp_sigma=unsharp_sigma,
            unsharp_amount=unsharp_amount,
            unsharp_threshold=unsharp_threshold,
            grayscale=grayscale,
            batch_size=batch_size,
        )
    except InvalidParameter as exc:
        raise typer.BadParameter(str(exc), param_hint=f"--{exc.field.replace('_', '-')}") from exc
    if warning:
        logger.warning(warning)

    session = ProcessingSession(tool_path=gm_path)
    session.start(input_dir.expanduser().resolve(), output.expanduser().resolve(), params)

    def handle_interrupt(signum, frame) -> None:  # noqa: ARG001
        logger.warning("收到中断信号，正在取消")
        threading.Thread(target=session.cancel, name="comic-cancel", daemon=True).start()

    previous = signal.signal(signal.SIGINT, handle_interrupt)

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        console=console,
    )

    done = threading.Event()
    try:
        with progress:
            drainer = threading.Thread(target=_drain, args=(session, progress, done), daemon=True)
            drainer.start()
            try:
                report = session.wait()
            finally:
                done.set()
                drainer.join()
    except ComicBatchError as exc:
        console.print(f"[red]处理失败：{exc}[/red]")
        raise typer.Exit(code=EXIT_FAILED) from exc
    finally:
        signal.signal(signal.SIGINT, previous)

    for line in summary_lines(report):
        typer.echo(line)

    if report_path is not None:
        written = write_failure_report(report, report_path.expanduser().resolve())
        typer.echo(f"失败列表：{written}")

    raise typer.Exit(code=_exit_code(report))


@app.command("locate")
def locate_cli(
    gm_path: Optional[Path] = typer.Option(None, "--gm", help="GraphicsMagick 可执行文件路径"),
) -> None:
    """查找并校验 GraphicsMagick。"""

    setup_logging(logging.WARNING)
    try:
        path, version = resolve_tool(gm_path)
    except ComicBatchError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=EXIT_FAILED) from exc
    typer.echo(str(path))
    if version:
        typer.echo(version)


if __name__ == "__main__":
    app()
