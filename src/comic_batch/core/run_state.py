"""单次运行的共享状态：取消标志、存活子进程登记与结果汇总。"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
import uuid
from pathlib import Path
from typing import Iterable, Optional

from comic_batch.core.models import RunReport

LOGGER = logging.getLogger(__name__)


class ResultAggregator:
    """线程安全的处理计数与失败文件列表。"""

    def __init__(self) -> None:
        self._count_lock = threading.Lock()
        self._failed_lock = threading.Lock()
        self._processed = 0
        self._failed: list[str] = []
        self._started_at: Optional[float] = None

    def mark_started(self) -> None:
        self._started_at = time.monotonic()

    def record_success(self, count: int) -> None:
        if count <= 0:
            return
        with self._count_lock:
            self._processed += count

    def record_failures(self, names: Iterable[str]) -> None:
        names = list(names)
        if not names:
            return
        with self._failed_lock:
            self._failed.extend(names)

    @property
    def processed(self) -> int:
        with self._count_lock:
            return self._processed

    @property
    def failed(self) -> list[str]:
        with self._failed_lock:
            return list(self._failed)

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at

    def snapshot(self, status: str = "completed", total_images: int = 0) -> RunReport:
        return RunReport(
            processed=self.processed,
            failed_files=self.failed,
            elapsed_seconds=self.elapsed(),
            status=status,
            total_images=total_images,
        )

    def reset(self) -> None:
        with self._count_lock:
            self._processed = 0
        with self._failed_lock:
            self._failed.clear()
        self._started_at = None


class RunState:
    """一次运行内所有工作线程共享的上下文。

    取消标志与存活进程表共用一把锁：登记新进程时如果已经取消，
    登记失败，由调用方自行终止该进程，stop() 因此不会漏掉任何进程。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._processes: dict[str, subprocess.Popen] = {}
        self._reserved_outputs: set[str] = set()
        self.results = ResultAggregator()

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def request_cancel(self) -> None:
        with self._lock:
            self._cancelled = True

    def new_job_id(self) -> str:
        return uuid.uuid4().hex

    def register_process(self, job_id: str, process: subprocess.Popen) -> bool:
        """登记一个正在运行的子进程；已取消时返回 False。"""

        with self._lock:
            if self._cancelled:
                return False
            self._processes[job_id] = process
            return True

    def unregister_process(self, job_id: str) -> None:
        with self._lock:
            self._processes.pop(job_id, None)

    def reserve_outputs(self, paths: Iterable[Path]) -> bool:
        """占用一组输出路径（忽略大小写）；任一路径已被占用时全部不占用并返回 False。"""

        keys = {str(path).lower() for path in paths}
        with self._lock:
            if keys & self._reserved_outputs:
                return False
            self._reserved_outputs |= keys
            return True

    def live_processes(self) -> list[subprocess.Popen]:
        with self._lock:
            return list(self._processes.values())

    def stop(self) -> int:
        """设置取消标志并终止所有存活子进程，等待它们全部退出后返回。"""

        with self._lock:
            self._cancelled = True
            snapshot = list(self._processes.values())

        for process in snapshot:
            if process.poll() is None:
                process.terminate()
            process.wait()

        with self._lock:
            self._processes.clear()

        LOGGER.info("已终止 %d 个子进程", len(snapshot))
        return len(snapshot)

    def reset(self) -> None:
        with self._lock:
            self._cancelled = False
            self._processes.clear()
            self._reserved_outputs.clear()
        self.results.reset()
