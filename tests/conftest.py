"""测试公共夹具：用 Pillow 实现的 gm 替身与测试图片生成。"""

from __future__ import annotations

import stat
import sys
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image

from comic_batch.core.config import ProcessingParameters, UnsharpConfig

FAKE_GM_SOURCE = '''#!{python}
"""gm 替身：支持 --version、identify -format 与 batch -stop-on-error off。"""

import os
import shlex
import sys
import time

from PIL import Image


def log(event):
    path = os.environ.get("FAKE_GM_LOG")
    if path:
        with open(path, "a", encoding="utf-8") as handle:
            handle.write(f"{{event}} {{os.getpid()}}\\n")


def identify(args):
    index = args.index("-format")
    fmt = args[index + 1]
    paths = args[index + 2:]
    hidden = set(filter(None, os.environ.get("FAKE_GM_HIDE", "").split(",")))
    status = 0
    for path in paths:
        name = os.path.basename(path)
        if len(paths) > 1 and name in hidden:
            continue
        try:
            with Image.open(path) as img:
                width, height = img.size
        except Exception as exc:
            sys.stderr.write(f"identify: {{path}}: {{exc}}\\n")
            status = 1
            continue
        sys.stdout.write(fmt.replace("%f", name).replace("%w", str(width)).replace("%h", str(height)))
    return status


def convert(tokens):
    source, output, options = tokens[1], tokens[-1], tokens[2:-1]
    quality = 75
    with Image.open(source) as img:
        img.load()
        for option, value in zip(options[0::2], options[1::2]):
            if option == "-crop":
                size, x, y = value.split("+")
                crop_w, crop_h = (int(v) for v in size.split("x"))
                img = img.crop((int(x), int(y), int(x) + crop_w, int(y) + crop_h))
            elif option == "-resize":
                target_h = int(value.lstrip("x"))
                target_w = max(1, round(img.width * target_h / img.height))
                img = img.resize((target_w, target_h))
            elif option == "-colorspace":
                img = img.convert("L")
            elif option == "-quality":
                quality = int(value)
        if img.mode not in ("L", "RGB"):
            img = img.convert("RGB")
        img.save(output, "JPEG", quality=quality)


def batch():
    log("start")
    delay = float(os.environ.get("FAKE_GM_DELAY", "0"))
    if delay:
        time.sleep(delay)
    failures = 0
    for line in sys.stdin:
        tokens = shlex.split(line)
        if not tokens:
            continue
        try:
            convert(tokens)
        except Exception as exc:
            sys.stderr.write(f"convert failed: {{exc}}\\n")
            failures += 1
    log("end")
    if os.environ.get("FAKE_GM_FAIL_BATCH"):
        sys.stderr.write("forced failure\\n")
        return 1
    return 1 if failures else 0


def main(args):
    if args[:1] == ["--version"]:
        print("GraphicsMagick 1.3.99 fake")
        return 0
    if args[:1] == ["identify"]:
        return identify(args)
    if args[:1] == ["batch"]:
        return batch()
    sys.stderr.write(f"unsupported: {{args}}\\n")
    return 2


sys.exit(main(sys.argv[1:]))
'''


def write_executable(path: Path, source: str) -> Path:
    path.write_text(source, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_gm(tmp_path: Path) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return write_executable(bin_dir / "gm", FAKE_GM_SOURCE.format(python=sys.executable))


@pytest.fixture
def make_image() -> Callable[..., Path]:
    def _make(path: Path, size: tuple[int, int], color: str = "gray") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new("RGB", size, color).save(path)
        return path

    return _make


@pytest.fixture
def params() -> ProcessingParameters:
    return ProcessingParameters(
        width_threshold=3000,
        resize_height=100,
        quality=80,
        concurrency=1,
        unsharp=UnsharpConfig(amount=0),
        batch_size=40,
    )
