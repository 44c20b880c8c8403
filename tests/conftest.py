"""
Pytest configuration and shared fixtures for busbcopy tests.

External utilities are never executed: digests are computed with hashlib and
copies with shutil so tests run without root or real USB devices.
"""

import hashlib
import os
import shutil
import subprocess
from pathlib import Path
from typing import Callable, List

import pytest

from busbcopy.config import settings
from busbcopy.domain.models import MIB, Device, Source, SourceKind


@pytest.fixture(autouse=True)
def default_settings():
    """Every test starts from the built-in defaults."""
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    yield
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


# ==============================================================================
# Source Fixtures
# ==============================================================================


@pytest.fixture
def image_file(tmp_path) -> Path:
    """A 4 KiB image (a multiple of 512 bytes)."""
    path = tmp_path / "image.img"
    path.write_bytes(os.urandom(4096))
    return path


@pytest.fixture
def odd_image_file(tmp_path) -> Path:
    """An image whose size is not a multiple of 512 bytes."""
    path = tmp_path / "odd.img"
    path.write_bytes(os.urandom(1000))
    return path


@pytest.fixture
def image_source(image_file) -> Source:
    return Source(path=str(image_file), kind=SourceKind.IMAGE)


@pytest.fixture
def files_source(tmp_path) -> Source:
    tree = tmp_path / "tree"
    (tree / "sub").mkdir(parents=True)
    (tree / "a.txt").write_text("a")
    (tree / "sub" / "b.txt").write_text("b")
    return Source(path=str(tree), kind=SourceKind.FILES)


# ==============================================================================
# Device Fixtures
# ==============================================================================


@pytest.fixture
def usb_device() -> Device:
    return Device(path="/dev/sdb", size_bytes=8 * 1024 * MIB)


@pytest.fixture
def make_device_files(tmp_path) -> Callable[[int], List[Path]]:
    """Create ``count`` regular files standing in for raw block devices."""

    def _make(count: int, size: int = 64 * 1024) -> List[Path]:
        paths = []
        for index in range(count):
            path = tmp_path / f"dev{index}"
            path.write_bytes(b"\x00" * size)
            paths.append(path)
        return paths

    return _make


# ==============================================================================
# External Tool Fakes
# ==============================================================================


def fake_openssl_md5(data: bytes) -> str:
    return f"MD5(stdin)= {hashlib.md5(data).hexdigest()}\n"


def fake_run_command(command, check=True, stdin=None, log_output=True):
    """Stand-in for run_command that understands ``openssl dgst -md5``."""
    if list(command[:2]) == ["openssl", "dgst"]:
        return subprocess.CompletedProcess(
            command, 0, stdout=fake_openssl_md5(stdin.read()), stderr=""
        )
    return subprocess.CompletedProcess(command, 0, stdout="", stderr="")


def fake_run_pipeline(producer, consumer):
    """Stand-in for ``dd if=X bs=N count=M | openssl dgst -md5``."""
    options = dict(arg.split("=", 1) for arg in producer[1:])
    block_size = int(options["bs"])
    count = int(options["count"])
    with open(options["if"], "rb") as device:
        data = device.read(block_size * count)
    return fake_openssl_md5(data)


def fake_dd_copy(command, cancel_event=None, poll_interval=1.0):
    """Stand-in for run_cancellable that performs ``dd if=X of=Y`` in-place."""
    options = dict(arg.split("=", 1) for arg in command[1:] if "=" in arg)
    with open(options["if"], "rb") as src, open(options["of"], "r+b") as dst:
        shutil.copyfileobj(src, dst)


@pytest.fixture
def fake_tools(monkeypatch):
    """Route digest and dd calls through the hashlib/shutil fakes."""
    monkeypatch.setattr(
        "busbcopy.storage.verification.run_command", fake_run_command
    )
    monkeypatch.setattr(
        "busbcopy.storage.verification.run_pipeline", fake_run_pipeline
    )
    monkeypatch.setattr("busbcopy.storage.copy.run_cancellable", fake_dd_copy)
    monkeypatch.setattr("busbcopy.storage.copy.run_command", fake_run_command)
