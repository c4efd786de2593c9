"""通过 `gm identify` 获取图片尺寸。"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from comic_batch.core.exceptions import DimensionProbeFailure

LOGGER = logging.getLogger(__name__)

BATCH_FORMAT = "%f\t%w\t%h\n"
SINGLE_FORMAT = "%w %h"

Dimensions = tuple[int, int]


def _run_identify(tool: Path, fmt: str, paths: Sequence[Path]) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            [str(tool), "identify", "-format", fmt, *(str(p) for p in paths)],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="surrogateescape",
            check=False,
        )
    except OSError as exc:
        raise DimensionProbeFailure(f"无法启动 identify: {exc}") from exc


def parse_batch_output(output: str, paths: Sequence[Path]) -> dict[Path, Dimensions]:
    """把 `文件名\\t宽\\t高` 格式的输出按文件名对应回完整路径。

    identify 只输出文件名，不同目录下的同名文件无法精确区分：
    文件名唯一时直接匹配；重复时按顺序分配给第一个尚未匹配的路径。
    这是尽力而为的策略，解析失败的行直接跳过。
    """

    by_name: dict[str, list[Path]] = {}
    for path in paths:
        by_name.setdefault(path.name, []).append(path)

    result: dict[Path, Dimensions] = {}
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split("\t")
        if len(parts) != 3:
            continue
        name, raw_width, raw_height = parts
        try:
            width, height = int(raw_width), int(raw_height)
        except ValueError:
            continue

        candidates = by_name.get(name)
        if not candidates:
            continue
        if len(candidates) == 1:
            result[candidates[0]] = (width, height)
            continue
        for candidate in candidates:
            if candidate not in result:
                result[candidate] = (width, height)
                break
    return result


def batch_dimensions(tool: Path, paths: Sequence[Path]) -> dict[Path, Dimensions]:
    """一次 identify 调用获取多张图片的尺寸。

    只有进程无法启动时才抛出 DimensionProbeFailure；缺失或格式错误的
    条目不会出现在返回值里，由调用方逐张回退。
    """

    if not paths:
        return {}

    completed = _run_identify(tool, BATCH_FORMAT, paths)
    if completed.returncode != 0:
        # 有一张图片损坏时 identify 也会返回非零，但其余行仍然可用。
        LOGGER.debug("批量 identify 返回 %d: %s", completed.returncode, completed.stderr.strip())
    return parse_batch_output(completed.stdout, paths)


def image_dimensions(tool: Path, path: Path) -> Optional[Dimensions]:
    """单张图片的尺寸；失败时返回 None。"""

    try:
        completed = _run_identify(tool, SINGLE_FORMAT, [path])
    except DimensionProbeFailure as exc:
        LOGGER.debug("%s", exc)
        return None

    output = completed.stdout.strip()
    if completed.returncode != 0 or not output:
        return None

    parts = output.split()
    if len(parts) != 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None
