"""convert 命令行的拼装。"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Union

from comic_batch.core.models import ConvertJob


def escape_path(path: Union[str, Path]) -> str:
    """转义反斜杠与双引号，并整体加双引号，供批处理脚本逐行解析。"""

    escaped = str(path).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_tokens(job: ConvertJob) -> list[str]:
    """生成一次 convert 调用的参数列表（路径已转义）。"""

    tokens = ["convert", escape_path(job.input_path)]

    if job.crop is not None:
        tokens += ["-crop", job.crop.geometry()]

    tokens += ["-resize", f"x{job.resize_height}"]

    if job.grayscale:
        tokens += ["-colorspace", "GRAY"]

    unsharp = job.unsharp
    if unsharp.amount > 0:
        tokens += ["-unsharp", f"{unsharp.radius}x{unsharp.sigma}+{unsharp.amount}+{unsharp.threshold}"]

    tokens += ["-quality", str(job.quality), escape_path(job.output_path)]
    return tokens


def build_command(job: ConvertJob) -> str:
    return " ".join(build_tokens(job))


def build_script(jobs: Iterable[ConvertJob]) -> str:
    """把多条 convert 命令拼成 `gm batch` 读取的脚本，每行一条。"""

    return "".join(build_command(job) + "\n" for job in jobs)
