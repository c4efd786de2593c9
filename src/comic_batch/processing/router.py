"""按宽度阈值决定整图输出还是左右拆分。"""

from __future__ import annotations

from comic_batch.core.config import ProcessingParameters
from comic_batch.core.models import ConvertJob, CropRect, ImageTask

OUTPUT_SUFFIX = ".jpg"


def route(image: ImageTask, width: int, height: int, params: ProcessingParameters) -> list[ConvertJob]:
    """生成一张图片对应的 convert 任务。

    宽度小于阈值时输出整图 ``<name>.jpg``；否则拆成两半，先右半
    ``<name>-1.jpg`` 后左半 ``<name>-2.jpg``，符合从右往左的漫画阅读顺序。
    """

    stem = image.output_stem

    def make_job(output_name: str, crop: CropRect | None) -> ConvertJob:
        return ConvertJob(
            input_path=image.source_path,
            output_path=image.output_dir / output_name,
            resize_height=params.resize_height,
            quality=params.quality,
            unsharp=params.unsharp,
            grayscale=params.grayscale,
            crop=crop,
        )

    if width < params.width_threshold:
        return [make_job(f"{stem}{OUTPUT_SUFFIX}", None)]

    crop_width = width // 2
    return [
        make_job(f"{stem}-1{OUTPUT_SUFFIX}", CropRect(crop_width, height, crop_width, 0)),
        make_job(f"{stem}-2{OUTPUT_SUFFIX}", CropRect(crop_width, height, 0, 0)),
    ]
