"""处理任务的参数模型与校验。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from comic_batch.core.exceptions import InvalidParameter

RawValue = Union[str, int, float]

DEFAULT_WIDTH_THRESHOLD = 3000
DEFAULT_RESIZE_HEIGHT = 1648
DEFAULT_QUALITY = 85
DEFAULT_CONCURRENCY = 2
MAX_CONCURRENCY = 6
DEFAULT_BATCH_SIZE = 40
MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 1000


@dataclass(frozen=True, slots=True)
class UnsharpConfig:
    """锐化（unsharp mask）参数。amount 为 0 时不锐化。"""

    radius: float = 1.5
    sigma: float = 1.0
    amount: float = 0.7
    threshold: float = 0.02

    @property
    def enabled(self) -> bool:
        return self.amount > 0


@dataclass(frozen=True, slots=True)
class ProcessingParameters:
    """单次运行的处理参数，运行期间只读。"""

    width_threshold: int = DEFAULT_WIDTH_THRESHOLD
    resize_height: int = DEFAULT_RESIZE_HEIGHT
    quality: int = DEFAULT_QUALITY
    concurrency: int = DEFAULT_CONCURRENCY
    unsharp: UnsharpConfig = UnsharpConfig()
    grayscale: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE


def _parse_int(field: str, value: RawValue) -> int:
    if isinstance(value, bool):
        raise InvalidParameter(field, f"{field} 必须为整数: {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise InvalidParameter(field, f"{field} 必须为整数: {value!r}") from exc


def _parse_float(field: str, value: RawValue) -> float:
    try:
        return float(str(value).strip())
    except ValueError as exc:
        raise InvalidParameter(field, f"{field} 必须为数字: {value!r}") from exc


def validate_batch_size(value: RawValue) -> Tuple[int, Optional[str]]:
    """校验批大小；不合法时回退到默认值并返回警告文本。"""

    try:
        size = _parse_int("batch_size", value)
    except InvalidParameter:
        size = None

    if size is None or not MIN_BATCH_SIZE <= size <= MAX_BATCH_SIZE:
        warning = (
            f"批大小 {value!r} 无效（需在 {MIN_BATCH_SIZE}-{MAX_BATCH_SIZE} 之间），"
            f"使用默认值 {DEFAULT_BATCH_SIZE}"
        )
        return DEFAULT_BATCH_SIZE, warning
    return size, None


def parse_parameters(
    *,
    width_threshold: RawValue = DEFAULT_WIDTH_THRESHOLD,
    resize_height: RawValue = DEFAULT_RESIZE_HEIGHT,
    quality: RawValue = DEFAULT_QUALITY,
    concurrency: RawValue = DEFAULT_CONCURRENCY,
    unsharp_radius: RawValue = 1.5,
    unsharp_sigma: RawValue = 1.0,
    unsharp_amount: RawValue = 0.7,
    unsharp_threshold: RawValue = 0.02,
    grayscale: bool = False,
    batch_size: RawValue = DEFAULT_BATCH_SIZE,
) -> Tuple[ProcessingParameters, Optional[str]]:
    """将用户输入（字符串或数字）校验并转换为 ProcessingParameters。

    任何数值参数不合法都会抛出 InvalidParameter；批大小例外，
    不合法时回退到默认值，警告文本作为第二个返回值交给调用方。
    """

    threshold = _parse_int("width_threshold", width_threshold)
    if threshold <= 0:
        raise InvalidParameter("width_threshold", f"宽度阈值必须大于 0: {threshold}")

    height = _parse_int("resize_height", resize_height)
    if height <= 0:
        raise InvalidParameter("resize_height", f"输出高度必须大于 0: {height}")

    qual = _parse_int("quality", quality)
    if not 1 <= qual <= 100:
        raise InvalidParameter("quality", f"输出质量必须在 1-100 之间: {qual}")

    workers = _parse_int("concurrency", concurrency)
    if not 1 <= workers <= MAX_CONCURRENCY:
        raise InvalidParameter("concurrency", f"并发数必须在 1-{MAX_CONCURRENCY} 之间: {workers}")

    unsharp_values = {}
    for field, raw in (
        ("unsharp_radius", unsharp_radius),
        ("unsharp_sigma", unsharp_sigma),
        ("unsharp_amount", unsharp_amount),
        ("unsharp_threshold", unsharp_threshold),
    ):
        number = _parse_float(field, raw)
        if not number >= 0:
            raise InvalidParameter(field, f"锐化参数不能为负数: {field}={raw!r}")
        unsharp_values[field] = number

    size, warning = validate_batch_size(batch_size)

    params = ProcessingParameters(
        width_threshold=threshold,
        resize_height=height,
        quality=qual,
        concurrency=workers,
        unsharp=UnsharpConfig(
            radius=unsharp_values["unsharp_radius"],
            sigma=unsharp_values["unsharp_sigma"],
            amount=unsharp_values["unsharp_amount"],
            threshold=unsharp_values["unsharp_threshold"],
        ),
        grayscale=bool(grayscale),
        batch_size=size,
    )
    return params, warning
