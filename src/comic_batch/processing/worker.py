"""单个批次的执行单元：探测尺寸、路由、生成脚本并调用 gm batch。"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from pathlib import Path

from comic_batch.core.config import ProcessingParameters
from comic_batch.core.exceptions import BatchExecutionFailure, DimensionProbeFailure
from comic_batch.core.models import Batch, BatchOutcome, ConvertJob
from comic_batch.core.run_state import RunState
from comic_batch.processing.router import route
from comic_batch.tools.commands import build_script
from comic_batch.tools.probe import batch_dimensions, image_dimensions

LOGGER = logging.getLogger(__name__)

BATCH_ARGS = ("batch", "-stop-on-error", "off")
SCRIPT_PREFIX = "comic_batch_"


def plan_jobs(
    batch: Batch,
    tool: Path,
    params: ProcessingParameters,
    outcome: BatchOutcome,
    state: RunState,
) -> list[ConvertJob]:
    """探测尺寸并路由为 convert 任务。

    无法获取尺寸的图片，以及输出路径已被本次运行中其他图片占用的图片，
    都记入 outcome.failed。逐张回退探测前检查取消标志，取消后批次标记为跳过。
    """

    paths = [image.source_path for image in batch.images]
    try:
        known = batch_dimensions(tool, paths)
    except DimensionProbeFailure as exc:
        LOGGER.warning("批量获取尺寸失败，逐张重试: %s", exc)
        known = {}

    jobs: list[ConvertJob] = []
    for image in batch.images:
        dimensions = known.get(image.source_path)
        if dimensions is None:
            if state.cancelled:
                outcome.skipped = True
                break
            LOGGER.debug("批量结果中缺少 %s，单独获取尺寸", image.name)
            dimensions = image_dimensions(tool, image.source_path)
        if dimensions is None:
            LOGGER.warning("无法获取图片尺寸: %s", image.source_path)
            outcome.failed.append(image.name)
            continue

        image.width, image.height = dimensions
        image_jobs = route(image, image.width, image.height, params)
        if not state.reserve_outputs(job.output_path for job in image_jobs):
            LOGGER.warning("输出文件名与其他图片冲突，已跳过: %s", image.source_path)
            outcome.failed.append(image.name)
            continue

        jobs.extend(image_jobs)
        outcome.processed += 1
    outcome.jobs = len(jobs)
    return jobs


def _write_script(script: str) -> Path:
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            prefix=SCRIPT_PREFIX,
            suffix=".txt",
            delete=False,
            encoding="utf-8",
            errors="surrogateescape",
        ) as handle:
            handle.write(script)
            return Path(handle.name)
    except (OSError, UnicodeError) as exc:
        raise BatchExecutionFailure(f"无法写入批处理脚本: {exc}") from exc


def _remove_quietly(path: Path) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        LOGGER.debug("删除临时脚本失败 %s: %s", path, exc)


def execute_script(tool: Path, script: str, state: RunState) -> bool:
    """以 `gm batch -stop-on-error off` 执行脚本，运行期间登记进程以便取消。

    返回 False 表示在启动前已经取消；进程启动失败或非零退出抛出
    BatchExecutionFailure。
    """

    script_path = _write_script(script)
    job_id = state.new_job_id()
    try:
        with script_path.open("rb") as stdin:
            try:
                process = subprocess.Popen(
                    [str(tool), *BATCH_ARGS],
                    stdin=stdin,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    text=True,
                    errors="replace",
                )
            except OSError as exc:
                raise BatchExecutionFailure(f"无法启动 gm batch: {exc}") from exc

            if not state.register_process(job_id, process):
                process.terminate()
                process.wait()
                return False

            try:
                _, stderr = process.communicate()
            finally:
                state.unregister_process(job_id)
    finally:
        _remove_quietly(script_path)

    if process.returncode != 0:
        message = (stderr or "").strip() or "<无输出>"
        raise BatchExecutionFailure(f"gm batch 以状态 {process.returncode} 退出: {message}")
    return True


def run_batch(batch: Batch, tool: Path, params: ProcessingParameters, state: RunState) -> BatchOutcome:
    """执行一个批次，结果汇总到 state.results。

    批处理模式不会逐行报告状态，因此进程失败时整批图片都记为失败。
    """

    outcome = BatchOutcome(batch=batch)
    if state.cancelled:
        outcome.skipped = True
        return outcome

    jobs = plan_jobs(batch, tool, params, outcome, state)

    if outcome.skipped or state.cancelled:
        outcome.skipped = True
        outcome.processed = 0
        state.results.record_failures(outcome.failed)
        return outcome

    if jobs:
        try:
            started = execute_script(tool, build_script(jobs), state)
        except BatchExecutionFailure as exc:
            LOGGER.error("[%s] 批次 %d 处理失败: %s", batch.subdirectory, batch.index, exc)
            outcome.failed = batch.filenames()
            outcome.processed = 0
        else:
            if not started:
                outcome.skipped = True
                outcome.processed = 0

    state.results.record_success(outcome.processed)
    state.results.record_failures(outcome.failed)
    return outcome
