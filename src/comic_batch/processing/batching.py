"""把子目录的图片切分为固定大小的批次。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from comic_batch.core.config import DEFAULT_BATCH_SIZE, validate_batch_size
from comic_batch.core.models import Batch, ImageTask

LOGGER = logging.getLogger(__name__)


def assemble(
    images: Sequence[ImageTask],
    output_dir: Path,
    batch_size: int | str = DEFAULT_BATCH_SIZE,
    start_index: int = 0,
) -> list[Batch]:
    """按顺序切分，最后一批可以不足 batch_size。"""

    size, warning = validate_batch_size(batch_size)
    if warning:
        LOGGER.warning(warning)

    return [
        Batch(index=start_index + number, output_dir=output_dir, images=list(images[offset : offset + size]))
        for number, offset in enumerate(range(0, len(images), size))
    ]
