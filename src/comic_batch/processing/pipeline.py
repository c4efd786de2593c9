"""处理流水线：扫描子目录、组批、受限并发执行与结果汇总。"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Optional

from comic_batch.core.config import ProcessingParameters
from comic_batch.core.exceptions import ComicBatchError, DirectoryError
from comic_batch.core.models import Batch, BatchOutcome, RunReport
from comic_batch.core.progress import ProgressUpdate
from comic_batch.core.report import summary_lines
from comic_batch.core.run_state import RunState
from comic_batch.core.scanner import collect_images, ensure_output_dir, list_subdirectories, split_stem_collisions
from comic_batch.processing.batching import assemble
from comic_batch.processing.worker import run_batch
from comic_batch.tools.locator import resolve_tool

LOGGER = logging.getLogger(__name__)


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]
Notifier = Optional[Callable[[RunReport], None]]


def _log_parameters(params: ProcessingParameters) -> None:
    gray = "开启" if params.grayscale else "关闭"
    if params.unsharp.enabled:
        u = params.unsharp
        LOGGER.info(
            "开始处理：宽度阈值 %d，输出高度 %d，质量 %d，并发 %d，批大小 %d，锐化 %sx%s+%s+%s，灰度 %s",
            params.width_threshold,
            params.resize_height,
            params.quality,
            params.concurrency,
            params.batch_size,
            u.radius,
            u.sigma,
            u.amount,
            u.threshold,
            gray,
        )
    else:
        LOGGER.info(
            "开始处理：宽度阈值 %d，输出高度 %d，质量 %d，并发 %d，批大小 %d，不锐化，灰度 %s",
            params.width_threshold,
            params.resize_height,
            params.quality,
            params.concurrency,
            params.batch_size,
            gray,
        )


def plan_batches(input_dir: Path, output_dir: Path, params: ProcessingParameters, state: RunState) -> list[Batch]:
    """遍历子目录并组批。单个子目录出错只跳过该目录。"""

    batches: list[Batch] = []
    for subdirectory in list_subdirectories(input_dir):
        if state.cancelled:
            break

        name = subdirectory.name
        try:
            target = ensure_output_dir(output_dir / name)
            images = collect_images(subdirectory, target)
        except DirectoryError as exc:
            LOGGER.error("跳过子目录 %s: %s", name, exc)
            continue

        if not images:
            LOGGER.info("子目录 %s 中没有图片", name)
            continue

        images, duplicates = split_stem_collisions(images)
        if duplicates:
            LOGGER.warning("子目录 %s 中有 %d 个文件与其他文件输出名冲突，已跳过", name, len(duplicates))
            state.results.record_failures(image.name for image in duplicates)

        batches.extend(assemble(images, target, params.batch_size, start_index=len(batches)))
    return batches


def run_batches(
    batches: list[Batch],
    tool: Path,
    params: ProcessingParameters,
    state: RunState,
    progress_callback: ProgressCallback = None,
) -> None:
    """在至多 params.concurrency 个并发进程中执行所有批次，全部结束后返回。"""

    total = sum(len(batch.images) for batch in batches)
    remaining: dict[str, int] = {}
    for batch in batches:
        remaining[batch.subdirectory] = remaining.get(batch.subdirectory, 0) + 1

    slots = threading.BoundedSemaphore(params.concurrency)
    started: set[str] = set()
    started_lock = threading.Lock()

    def guarded(batch: Batch) -> BatchOutcome:
        with slots:
            with started_lock:
                first = batch.subdirectory not in started
                started.add(batch.subdirectory)
            if first and not state.cancelled:
                LOGGER.info("开始处理子目录: %s", batch.subdirectory)
            return run_batch(batch, tool, params, state)

    completed = 0
    _emit_progress(progress_callback, completed, total, "开始执行处理任务")

    with ThreadPoolExecutor(max_workers=params.concurrency, thread_name_prefix="comic-batch") as executor:
        future_map: dict[Future, Batch] = {}
        for batch in batches:
            future_map[executor.submit(guarded, batch)] = batch

        for future in as_completed(future_map):
            batch = future_map[future]
            try:
                outcome = future.result()
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("批次执行异常：%s", exc)
                state.results.record_failures(batch.filenames())
                outcome = BatchOutcome(batch=batch, failed=batch.filenames())

            completed += len(batch.images)
            remaining[batch.subdirectory] -= 1
            if remaining[batch.subdirectory] == 0 and not state.cancelled:
                LOGGER.info("子目录处理完成: %s", batch.subdirectory)

            if outcome.skipped:
                message = f"跳过 {batch.subdirectory} 批次 {batch.index}"
            else:
                message = f"完成 {batch.subdirectory} 批次 {batch.index}（{outcome.processed} 张）"
            _emit_progress(progress_callback, completed, total, message)


def process_directory(
    input_dir: Path,
    output_dir: Path,
    params: ProcessingParameters,
    progress_callback: ProgressCallback = None,
    state: Optional[RunState] = None,
    tool_path: Optional[Path] = None,
    notifier: Notifier = None,
) -> RunReport:
    """批量处理入口：查找工具、扫描目录、并发执行并生成报告。

    工具缺失、参数或根目录错误在开始处理前抛出；单张图片、批次或子目录
    的错误只记录为失败文件，不会中断整个运行。
    """

    state = state or RunState()
    _log_parameters(params)

    tool, _ = resolve_tool(tool_path)

    if not input_dir.is_dir():
        raise DirectoryError(f"输入目录不存在: {input_dir}")
    ensure_output_dir(output_dir)

    state.results.mark_started()
    batches = plan_batches(input_dir, output_dir, params, state)
    total_images = sum(len(batch.images) for batch in batches)
    LOGGER.info("共 %d 张图片，分为 %d 个批次", total_images, len(batches))

    if batches:
        run_batches(batches, tool, params, state, progress_callback)
    else:
        _emit_progress(progress_callback, 0, 0, "没有需要处理的图片")

    status = "cancelled" if state.cancelled else "completed"
    report = state.results.snapshot(status=status, total_images=total_images)
    for line in summary_lines(report):
        LOGGER.info(line)

    _emit_progress(progress_callback, total_images, total_images, "处理完成", status=status)
    if notifier is not None:
        notifier(report)
    return report


def _emit_progress(
    callback: ProgressCallback,
    completed: int,
    total: int,
    message: Optional[str] = None,
    status: str = "running",
) -> None:
    if not callback:
        return
    callback(ProgressUpdate(total=total, completed=completed, message=message, status=status))


class ProcessingSession:
    """供界面层使用的会话：后台启动一次运行，提供进度流、取消与等待。"""

    def __init__(self, tool_path: Optional[Path] = None, notifier: Notifier = None) -> None:
        self.tool_path = tool_path
        self.notifier = notifier
        self.progress: queue.Queue[ProgressUpdate] = queue.Queue()
        self._state: Optional[RunState] = None
        self._future: Optional[Future] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._status = "idle"
        self._lock = threading.Lock()

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    @property
    def state(self) -> Optional[RunState]:
        return self._state

    def _set_status(self, value: str) -> None:
        with self._lock:
            self._status = value

    def start(
        self, input_dir: Path, output_dir: Path, params: ProcessingParameters
    ) -> tuple["queue.Queue[ProgressUpdate]", Future]:
        """在后台线程开始处理，立即返回 (进度队列, 最终报告的 Future)。"""

        with self._lock:
            if self._status == "running":
                raise ComicBatchError("已有任务正在运行")
            self._status = "running"

        self.progress = queue.Queue()
        self._state = RunState()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="comic-session")
        self._future = self._executor.submit(self._run, input_dir, output_dir, params, self._state)
        self._executor.shutdown(wait=False)
        return self.progress, self._future

    def _run(self, input_dir: Path, output_dir: Path, params: ProcessingParameters, state: RunState) -> RunReport:
        try:
            report = process_directory(
                input_dir,
                output_dir,
                params,
                progress_callback=self.progress.put,
                state=state,
                tool_path=self.tool_path,
                notifier=self.notifier,
            )
        except ComicBatchError as exc:
            LOGGER.error("处理失败：%s", exc)
            self._set_status("failed")
            self.progress.put(ProgressUpdate(total=0, completed=0, message=str(exc), status="failed"))
            raise
        self._set_status(report.status)
        return report

    def cancel(self) -> int:
        """请求取消并终止所有存活子进程；返回时这些进程均已退出。"""

        if self._state is None:
            return 0
        LOGGER.info("正在停止处理")
        return self._state.stop()

    def wait(self, timeout: Optional[float] = None) -> RunReport:
        if self._future is None:
            raise ComicBatchError("任务尚未开始")
        return self._future.result(timeout=timeout)
