"""输入目录扫描与筛选逻辑。"""

from __future__ import annotations

from pathlib import Path

from comic_batch.core.exceptions import DirectoryError
from comic_batch.core.models import ImageTask

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png"}


def is_supported_image(path: Path) -> bool:
    return path.suffix.lower() in IMAGE_EXTENSIONS


def list_subdirectories(input_dir: Path) -> list[Path]:
    """返回输入目录下的直接子目录；顶层的普通文件被忽略。"""

    try:
        entries = list(input_dir.iterdir())
    except OSError as exc:
        raise DirectoryError(f"无法读取输入目录 {input_dir}: {exc}") from exc

    subdirectories = [entry for entry in entries if entry.is_dir()]
    subdirectories.sort(key=lambda x: x.name.lower())
    return subdirectories


def collect_images(subdirectory: Path, output_dir: Path) -> list[ImageTask]:
    """收集子目录中的图片文件（不递归），按文件名排序。"""

    try:
        candidates = [entry for entry in subdirectory.iterdir() if entry.is_file()]
    except OSError as exc:
        raise DirectoryError(f"无法读取子目录 {subdirectory}: {exc}") from exc

    images = [
        ImageTask(source_path=candidate, output_dir=output_dir)
        for candidate in candidates
        if is_supported_image(candidate)
    ]
    images.sort(key=lambda x: x.source_path.name.lower())
    return images


def split_stem_collisions(images: list[ImageTask]) -> tuple[list[ImageTask], list[ImageTask]]:
    """按输出文件名去重。

    输出路径由文件名（去掉扩展名）决定，a.jpg 与 a.png 会写到同一个 a.jpg，
    因此同名的后续文件被挑出，由调用方记为失败。
    """

    seen: set[str] = set()
    unique: list[ImageTask] = []
    duplicates: list[ImageTask] = []
    for image in images:
        key = image.output_stem.lower()
        if key in seen:
            duplicates.append(image)
            continue
        seen.add(key)
        unique.append(image)
    return unique, duplicates


def ensure_output_dir(path: Path) -> Path:
    """按需创建输出目录。"""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DirectoryError(f"无法创建输出目录 {path}: {exc}") from exc
    return path
