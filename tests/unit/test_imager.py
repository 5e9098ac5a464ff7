"""Tests for arkive.core.imager: image_device and image lookup."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from arkive.core.errors import BlockIOError, InvalidArgument, OperationCancelled, SourceNotFound
from arkive.core.imager import MIN_CHUNK_SIZE, find_image, image_device, image_name
from arkive.core.models import CancelToken, ImageDirection

CHUNK = MIN_CHUNK_SIZE


def _device(tmp_path: Path, size: int) -> Path:
    dev = tmp_path / "fake_device"
    dev.write_bytes(bytes(i % 251 for i in range(size)))
    return dev


class TestImageName:
    def test_name(self):
        assert image_name(0) == "disk_0.img"
        assert image_name("sdb") == "disk_sdb.img"


class TestFindImage:
    def test_exact_name(self, tmp_path: Path):
        (tmp_path / "disk_1.img").write_bytes(b"a")
        (tmp_path / "disk_0.img").write_bytes(b"b")
        assert find_image(tmp_path, 1).name == "disk_1.img"

    def test_fallback_to_any_image(self, tmp_path: Path):
        (tmp_path / "other.img").write_bytes(b"a")
        assert find_image(tmp_path, 3).name == "other.img"

    def test_missing(self, tmp_path: Path):
        with pytest.raises(SourceNotFound):
            find_image(tmp_path)


class TestImageDevice:
    def test_read_copies_every_byte(self, tmp_path: Path):
        size = CHUNK * 3 + 123
        dev = _device(tmp_path, size)
        image = tmp_path / "backup" / "disk_0.img"

        result = image_device(ImageDirection.READ, dev, image, chunk_size=CHUNK)

        assert result.bytes_transferred == size
        assert result.total_bytes == size
        assert image.read_bytes() == dev.read_bytes()

    def test_write_restores_onto_existing_target(self, tmp_path: Path):
        image = tmp_path / "disk_0.img"
        image.write_bytes(b"\x07" * (CHUNK + 10))
        target = tmp_path / "target_device"
        target.write_bytes(b"\x00" * (CHUNK + 10))

        result = image_device(ImageDirection.WRITE, target, image, chunk_size=CHUNK)
        assert result.bytes_transferred == CHUNK + 10
        assert target.read_bytes() == image.read_bytes()

    def test_write_requires_existing_target(self, tmp_path: Path):
        image = tmp_path / "disk_0.img"
        image.write_bytes(b"x" * 10)
        with pytest.raises(SourceNotFound):
            image_device(ImageDirection.WRITE, tmp_path / "missing", image, chunk_size=CHUNK)
        assert not (tmp_path / "missing").exists()

    def test_missing_source(self, tmp_path: Path):
        with pytest.raises(SourceNotFound):
            image_device(ImageDirection.READ, tmp_path / "nodev", tmp_path / "x.img", chunk_size=CHUNK)

    def test_chunk_too_small(self, tmp_path: Path):
        dev = _device(tmp_path, 10)
        with pytest.raises(InvalidArgument):
            image_device(ImageDirection.READ, dev, tmp_path / "x.img", chunk_size=512)

    def test_empty_paths(self, tmp_path: Path):
        with pytest.raises(InvalidArgument):
            image_device(ImageDirection.READ, "", tmp_path / "x.img")

    def test_short_read_aborts(self, tmp_path: Path):
        dev = _device(tmp_path, CHUNK * 2)
        real_read = os.read
        calls = {"n": 0}

        def _short(fd, n):
            calls["n"] += 1
            data = real_read(fd, n)
            return data[: n // 2] if calls["n"] == 2 else data

        with patch("arkive.core.imager.os.read", side_effect=_short):
            with pytest.raises(BlockIOError, match="Short read"):
                image_device(ImageDirection.READ, dev, tmp_path / "x.img", chunk_size=CHUNK)

    def test_short_write_aborts(self, tmp_path: Path):
        dev = _device(tmp_path, CHUNK)
        with patch("arkive.core.imager.os.write", return_value=10):
            with pytest.raises(BlockIOError, match="Short write"):
                image_device(ImageDirection.READ, dev, tmp_path / "x.img", chunk_size=CHUNK)

    def test_cancel_between_chunks(self, tmp_path: Path):
        dev = _device(tmp_path, CHUNK * 4)
        token = CancelToken()

        def _reporter(pct, msg):
            if pct > 0:
                token.cancel()

        with pytest.raises(OperationCancelled):
            image_device(ImageDirection.READ, dev, tmp_path / "x.img", _reporter, CHUNK, token)

    def test_progress_reaches_stage_end(self, tmp_path: Path):
        dev = _device(tmp_path, CHUNK * 4)
        seen: list[int] = []
        image_device(ImageDirection.READ, dev, tmp_path / "x.img", lambda p, m: seen.append(p), CHUNK)
        assert seen[0] == 0
        assert seen[-1] == 100
        assert seen == sorted(seen)
