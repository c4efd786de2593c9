"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from comic_batch.core.config import UnsharpConfig

MAX_DISPLAYED_FAILURES = 10


@dataclass(slots=True)
class ImageTask:
    """扫描阶段得到的单张输入图片。尺寸在探测之后才填充。"""

    source_path: Path
    output_dir: Path
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def name(self) -> str:
        return self.source_path.name

    @property
    def output_stem(self) -> str:
        return self.source_path.stem


@dataclass(frozen=True, slots=True)
class CropRect:
    """裁剪区域，对应 -crop WxH+X+Y。"""

    width: int
    height: int
    x: int = 0
    y: int = 0

    def geometry(self) -> str:
        return f"{self.width}x{self.height}+{self.x}+{self.y}"


@dataclass(frozen=True, slots=True)
class ConvertJob:
    """一次 convert 调用的完整描述。"""

    input_path: Path
    output_path: Path
    resize_height: int
    quality: int
    unsharp: UnsharpConfig
    grayscale: bool = False
    crop: Optional[CropRect] = None


@dataclass(slots=True)
class Batch:
    """同一个输出子目录下、交给一次外部进程执行的一组图片。"""

    index: int
    output_dir: Path
    images: list[ImageTask]

    @property
    def subdirectory(self) -> str:
        return self.output_dir.name

    def filenames(self) -> list[str]:
        return [image.name for image in self.images]


@dataclass(slots=True)
class BatchOutcome:
    """单个批次的执行结果，由执行它的工作线程独占。"""

    batch: Batch
    processed: int = 0
    jobs: int = 0
    failed: list[str] = field(default_factory=list)
    skipped: bool = False


@dataclass(slots=True)
class RunReport:
    """运行结束时的统计快照。"""

    processed: int
    failed_files: list[str]
    elapsed_seconds: float
    status: str = "completed"  # completed | cancelled | failed
    total_images: int = 0

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"

    def displayed_failures(self, limit: int = MAX_DISPLAYED_FAILURES) -> tuple[list[str], int]:
        """返回用于展示的前若干个失败文件名以及剩余数量。"""

        shown = self.failed_files[:limit]
        return shown, len(self.failed_files) - len(shown)
