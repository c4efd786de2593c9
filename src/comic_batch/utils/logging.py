"""命令行运行的日志配置。"""

from __future__ import annotations

import logging


def setup_logging(level: int = logging.INFO) -> None:
    """配置根日志。

    批次在 comic-batch-* 工作线程中执行，格式里带上线程名，
    便于区分并发批次的输出。
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s",
    )
