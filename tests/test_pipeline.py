"""端到端流水线测试：真实子进程调用 gm 替身。"""

from __future__ import annotations

import dataclasses
import logging
import subprocess
import threading
import time
from pathlib import Path

import pytest
from PIL import Image
from typer.testing import CliRunner

from comic_batch.cli.main import app
from comic_batch.core.config import ProcessingParameters
from comic_batch.core.exceptions import ComicBatchError, DirectoryError, ToolNotFound
from comic_batch.core.progress import ProgressUpdate
from comic_batch.core.run_state import RunState
from comic_batch.processing.pipeline import ProcessingSession, process_directory


class CountingRunState(RunState):
    """记录同时存活的子进程数量峰值。"""

    def __init__(self) -> None:
        super().__init__()
        self._count_lock = threading.Lock()
        self.live = 0
        self.peak = 0
        self.spawned = 0

    def register_process(self, job_id: str, process: subprocess.Popen) -> bool:
        registered = super().register_process(job_id, process)
        if registered:
            with self._count_lock:
                self.live += 1
                self.spawned += 1
                self.peak = max(self.peak, self.live)
        return registered

    def unregister_process(self, job_id: str) -> None:
        with self._count_lock:
            self.live -= 1
        super().unregister_process(job_id)


def _scenario(tmp_path: Path, make_image) -> tuple[Path, Path]:
    source = tmp_path / "input"
    output = tmp_path / "output"
    make_image(source / "vol1" / "img1.png", (2000, 200), "blue")
    make_image(source / "vol1" / "img2.png", (4000, 200), "red")
    return source, output


def test_end_to_end_split_and_whole(tmp_path: Path, fake_gm: Path, make_image, params) -> None:
    source, output = _scenario(tmp_path, make_image)
    (source / "loose.jpg").write_text("top-level files are ignored")

    report = process_directory(source, output, params, tool_path=fake_gm)

    assert report.processed == 2
    assert report.failed_files == []
    assert report.status == "completed"
    assert report.total_images == 2
    assert sorted(p.name for p in (output / "vol1").iterdir()) == ["img1.jpg", "img2-1.jpg", "img2-2.jpg"]
    with Image.open(output / "vol1" / "img1.jpg") as img:
        assert img.size == (1000, 100)
    with Image.open(output / "vol1" / "img2-1.jpg") as right, Image.open(output / "vol1" / "img2-2.jpg") as left:
        assert right.size == left.size == (1000, 100)
        # 右半部分与左半部分都来自红色原图。
        assert right.getpixel((10, 10))[0] > 200
        assert left.getpixel((10, 10))[0] > 200


def test_grayscale_output(tmp_path: Path, fake_gm: Path, make_image, params) -> None:
    source, output = _scenario(tmp_path, make_image)

    process_directory(source, output, dataclasses.replace(params, grayscale=True), tool_path=fake_gm)

    with Image.open(output / "vol1" / "img1.jpg") as img:
        assert img.mode == "L"


def test_failed_batch_marks_every_image(tmp_path: Path, fake_gm: Path, make_image, params, monkeypatch) -> None:
    source, output = _scenario(tmp_path, make_image)
    make_image(source / "vol2" / "ok.png", (300, 200))
    monkeypatch.setenv("FAKE_GM_FAIL_BATCH", "1")

    report = process_directory(source, output, params, tool_path=fake_gm)

    assert report.processed == 0
    assert sorted(report.failed_files) == ["img1.png", "img2.png", "ok.png"]
    assert report.status == "completed"


def test_unreadable_image_fails_alone(tmp_path: Path, fake_gm: Path, make_image, params) -> None:
    source, output = _scenario(tmp_path, make_image)
    (source / "vol1" / "broken.jpg").write_text("not an image")

    report = process_directory(source, output, params, tool_path=fake_gm)

    assert report.processed == 2
    assert report.failed_files == ["broken.jpg"]


def test_missing_batch_entries_fall_back_to_single_probe(
    tmp_path: Path, fake_gm: Path, make_image, params, monkeypatch
) -> None:
    source, output = _scenario(tmp_path, make_image)
    monkeypatch.setenv("FAKE_GM_HIDE", "img2.png")

    report = process_directory(source, output, params, tool_path=fake_gm)

    assert report.processed == 2
    assert (output / "vol1" / "img2-1.jpg").exists()


def test_output_name_collision_is_reported(tmp_path: Path, fake_gm: Path, make_image, params) -> None:
    source = tmp_path / "input"
    make_image(source / "vol" / "a.jpg", (100, 100))
    make_image(source / "vol" / "a.png", (100, 100))

    report = process_directory(source, tmp_path / "output", params, tool_path=fake_gm)

    assert report.processed == 1
    assert report.failed_files == ["a.png"]


def test_split_output_colliding_with_other_file_is_reported(
    tmp_path: Path, fake_gm: Path, make_image, params
) -> None:
    source = tmp_path / "input"
    output = tmp_path / "output"
    make_image(source / "vol" / "p.png", (4000, 100))
    make_image(source / "vol" / "p-1.png", (100, 100))

    report = process_directory(source, output, params, tool_path=fake_gm)

    assert report.processed == 1
    assert report.failed_files == ["p.png"]
    assert sorted(p.name for p in (output / "vol").iterdir()) == ["p-1.jpg"]


def test_subdirectory_start_is_logged_from_worker_threads(
    tmp_path: Path, fake_gm: Path, make_image, params, caplog
) -> None:
    source = tmp_path / "input"
    for volume in ("v1", "v2"):
        for index in range(3):
            make_image(source / volume / f"{index}.png", (100, 100))
    caplog.set_level(logging.INFO, logger="comic_batch.processing.pipeline")

    process_directory(source, tmp_path / "output", dataclasses.replace(params, batch_size=1), tool_path=fake_gm)

    starts = [record for record in caplog.records if record.getMessage().startswith("开始处理子目录")]
    assert sorted(record.getMessage() for record in starts) == ["开始处理子目录: v1", "开始处理子目录: v2"]
    assert all(record.threadName.startswith("comic-batch") for record in starts)


def test_many_subdirectories_and_batches(tmp_path: Path, fake_gm: Path, make_image, params) -> None:
    source = tmp_path / "input"
    output = tmp_path / "output"
    for volume in ("v1", "v2", "v3"):
        for index in range(5):
            make_image(source / volume / f"{index:02d}.png", (3500 if index % 2 else 800, 120))
    (source / "empty").mkdir()
    updates: list[ProgressUpdate] = []
    notified = []

    report = process_directory(
        source,
        output,
        dataclasses.replace(params, concurrency=3, batch_size=2),
        progress_callback=updates.append,
        tool_path=fake_gm,
        notifier=notified.append,
    )

    assert report.processed == 15
    assert report.failed_files == []
    for volume in ("v1", "v2", "v3"):
        assert len(list((output / volume).glob("*.jpg"))) == 3 + 2 * 2
    assert notified == [report]
    assert updates[-1].status == "completed"
    assert updates[-1].finished
    assert not any(update.finished for update in updates[:-1])
    assert updates[-1].completed == updates[-1].total == 15
    assert [u.completed for u in updates] == sorted(u.completed for u in updates)


def test_concurrency_limit_is_respected(tmp_path: Path, fake_gm: Path, make_image, params, monkeypatch) -> None:
    source = tmp_path / "input"
    for index in range(6):
        make_image(source / "vol" / f"{index}.png", (100, 100))
    monkeypatch.setenv("FAKE_GM_DELAY", "0.3")
    state = CountingRunState()

    report = process_directory(
        source,
        tmp_path / "output",
        dataclasses.replace(params, concurrency=2, batch_size=1),
        state=state,
        tool_path=fake_gm,
    )

    assert report.processed == 6
    assert state.spawned == 6
    assert 1 <= state.peak <= 2
    assert state.live == 0


def test_missing_tool_is_fatal(tmp_path: Path, make_image, params) -> None:
    source, output = _scenario(tmp_path, make_image)

    with pytest.raises(ToolNotFound):
        process_directory(source, output, params, tool_path=tmp_path / "no-gm")


def test_session_cancel_terminates_running_batches(
    tmp_path: Path, fake_gm: Path, make_image, params, monkeypatch
) -> None:
    source = tmp_path / "input"
    output = tmp_path / "output"
    for index in range(6):
        make_image(source / "vol" / f"{index}.png", (100, 100))
    monkeypatch.setenv("FAKE_GM_DELAY", "30")

    session = ProcessingSession(tool_path=fake_gm)
    progress, future = session.start(source, output, dataclasses.replace(params, concurrency=2, batch_size=1))
    assert session.status == "running"

    deadline = time.monotonic() + 20
    while session.state is not None and not session.state.live_processes():
        assert time.monotonic() < deadline, "batch process never started"
        time.sleep(0.05)
    running = session.state.live_processes()

    session.cancel()

    assert all(process.poll() is not None for process in running)
    report = session.wait(timeout=30)
    assert future.result() is report
    assert report.status == "cancelled"
    assert report.processed == 0
    assert session.status == "cancelled"
    assert list(output.rglob("*.jpg")) == []
    assert not progress.empty()


def test_session_refuses_second_start_while_running(
    tmp_path: Path, fake_gm: Path, make_image, params, monkeypatch
) -> None:
    source = tmp_path / "input"
    make_image(source / "vol" / "0.png", (100, 100))
    monkeypatch.setenv("FAKE_GM_DELAY", "30")
    session = ProcessingSession(tool_path=fake_gm)
    session.start(source, tmp_path / "output", params)

    with pytest.raises(ComicBatchError):
        session.start(source, tmp_path / "output", params)

    session.cancel()
    assert session.wait(timeout=30).status == "cancelled"


def test_session_reports_fatal_errors(tmp_path: Path, fake_gm: Path, params) -> None:
    session = ProcessingSession(tool_path=fake_gm)

    session.start(tmp_path / "missing", tmp_path / "output", params)

    with pytest.raises(DirectoryError):
        session.wait(timeout=30)
    assert session.status == "failed"


def test_cli_run_and_report(tmp_path: Path, fake_gm: Path, make_image) -> None:
    source, output = _scenario(tmp_path, make_image)
    (source / "vol1" / "broken.png").write_text("nope")
    report_path = tmp_path / "failed.csv"

    result = CliRunner().invoke(
        app,
        [
            "run",
            str(source),
            "-o",
            str(output),
            "--gm",
            str(fake_gm),
            "--resize-height",
            "100",
            "--unsharp-amount",
            "0",
            "--batch-size",
            "5000",
            "--report",
            str(report_path),
        ],
    )

    assert result.exit_code == 2, result.output
    assert "共处理图片 2 张" in result.output
    assert "- broken.png" in result.output
    assert report_path.read_text(encoding="utf-8").splitlines() == ["filename", "broken.png"]


def test_cli_rejects_invalid_quality(tmp_path: Path, fake_gm: Path) -> None:
    result = CliRunner().invoke(app, ["run", str(tmp_path), "-o", str(tmp_path / "o"), "--quality", "0"])

    assert result.exit_code == 2
    assert not (tmp_path / "o").exists()


def test_cli_locate(fake_gm: Path) -> None:
    result = CliRunner().invoke(app, ["locate", "--gm", str(fake_gm)])

    assert result.exit_code == 0
    assert str(fake_gm) in result.output
    assert "GraphicsMagick 1.3.99 fake" in result.output
