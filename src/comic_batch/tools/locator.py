"""GraphicsMagick 可执行文件的查找与校验。"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from comic_batch.core.exceptions import ToolNotFound, ToolUnusable

LOGGER = logging.getLogger(__name__)

TOOL_NAME = "gm"
KNOWN_PATHS: tuple[Path, ...] = (
    Path("/opt/homebrew/bin/gm"),
    Path("/usr/local/bin/gm"),
    Path("/usr/bin/gm"),
)
PACKAGE_MANAGER_DIRS: tuple[str, ...] = ("/opt/homebrew/bin", "/usr/local/bin", "/opt/local/bin")


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def _search_path(extra_dirs: Sequence[str]) -> str:
    original = os.environ.get("PATH", "")
    return os.pathsep.join([*extra_dirs, original]) if original else os.pathsep.join(extra_dirs)


def locate(
    known_paths: Sequence[Path] = KNOWN_PATHS,
    extra_dirs: Sequence[str] = PACKAGE_MANAGER_DIRS,
    name: str = TOOL_NAME,
) -> Path:
    """先检查固定安装路径，再在补充了包管理器目录的 PATH 中查找。"""

    for candidate in known_paths:
        if _is_executable(candidate):
            LOGGER.debug("在固定路径找到 %s: %s", name, candidate)
            return candidate

    found = shutil.which(name, path=_search_path(extra_dirs))
    if found and _is_executable(Path(found)):
        LOGGER.debug("通过 PATH 找到 %s: %s", name, found)
        return Path(found)

    raise ToolNotFound(f"未找到 GraphicsMagick ({name})，请先安装，例如 brew install graphicsmagick")


def verify(path: Path) -> str:
    """运行 `gm --version`，返回版本信息的首行。"""

    try:
        completed = subprocess.run(
            [str(path), "--version"],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise ToolUnusable(f"无法运行 {path}: {exc}") from exc

    if completed.returncode != 0:
        raise ToolUnusable(f"{path} --version 以状态 {completed.returncode} 退出: {completed.stdout.strip()}")

    output = completed.stdout.strip()
    version = output.splitlines()[0] if output else ""
    LOGGER.info("GraphicsMagick 版本: %s", version or "<未知>")
    return version


def resolve_tool(explicit: Optional[Path] = None) -> tuple[Path, str]:
    """查找（或使用指定的）可执行文件并校验，返回路径与版本。"""

    if explicit is not None:
        path = explicit.expanduser()
        if not _is_executable(path):
            raise ToolNotFound(f"指定的 GraphicsMagick 不存在或不可执行: {path}")
    else:
        path = locate()
    LOGGER.info("使用 GraphicsMagick: %s", path)
    return path, verify(path)
