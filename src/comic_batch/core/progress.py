"""运行进度事件：由处理流水线推送给 CLI 回调或会话的进度队列。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

FINAL_STATUSES = ("completed", "cancelled", "failed")


@dataclass(slots=True)
class ProgressUpdate:
    """一次进度推送。

    total 与 completed 按图片张数计数，message 是可直接展示的中文说明。
    处理过程中 status 为 "running"；最后一条更新携带本次运行的最终状态
    （completed、cancelled 或 failed）。
    """

    total: int
    completed: int
    message: Optional[str] = None
    status: str = "running"

    @property
    def finished(self) -> bool:
        return self.status in FINAL_STATUSES
