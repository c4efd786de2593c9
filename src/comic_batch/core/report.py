"""运行报告的格式化与导出。"""

from __future__ import annotations

import csv
from pathlib import Path

from comic_batch.core.models import RunReport

HEADER = ["filename"]


def format_elapsed(seconds: float) -> str:
    """一分钟以内按秒显示，否则按分钟显示。"""

    if seconds < 60:
        return f"{int(seconds)} 秒"
    return f"{int(seconds // 60)} 分钟"


def summary_lines(report: RunReport) -> list[str]:
    """生成最终展示给用户的统计信息。"""

    lines: list[str] = []
    if report.cancelled:
        lines.append("处理已被取消")

    shown, overflow = report.displayed_failures()
    if shown:
        lines.append(f"失败文件 {len(report.failed_files)} 个：")
        lines.extend(f"- {name}" for name in shown)
        if overflow:
            lines.append(f"... 以及另外 {overflow} 个文件")

    lines.append(f"共处理图片 {report.processed} 张")
    lines.append(f"耗时 {format_elapsed(report.elapsed_seconds)}")
    if not report.cancelled:
        lines.append("处理完成")
    return lines


def write_failure_report(report: RunReport, path: Path) -> Path:
    """将全部失败文件名写入 CSV。"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for name in report.failed_files:
            writer.writerow([name])
    return path
