"""Tests for the credential readiness watcher."""

import asyncio
import time

import pytest

from teleport_helper.credentials.watcher import CredentialWatcher
from teleport_helper.exceptions import CredentialTimeout

from conftest import FakeProcess


def test_defaults_match_proxy_contract():
    watcher = CredentialWatcher()
    assert watcher.marker == "  export AWS_ACCESS_KEY_ID="
    assert watcher.interval == 0.5
    assert watcher.max_attempts == 20
    assert watcher.budget == pytest.approx(10.0)


def test_rejects_non_positive_budget():
    with pytest.raises(ValueError):
        CredentialWatcher(interval=0)
    with pytest.raises(ValueError):
        CredentialWatcher(max_attempts=0)


@pytest.mark.asyncio
async def test_missing_file_is_not_ready(tmp_path):
    assert await CredentialWatcher().is_ready(tmp_path / "nope.log") is False


@pytest.mark.asyncio
async def test_marker_needs_leading_spaces(tmp_path):
    path = tmp_path / "proxy.log"
    path.write_text("export AWS_ACCESS_KEY_ID=AKIA\n")
    assert await CredentialWatcher().is_ready(path) is False
    path.write_text("  export AWS_ACCESS_KEY_ID=AKIA\n")
    assert await CredentialWatcher().is_ready(path) is True


@pytest.mark.asyncio
async def test_returns_once_marker_appears(tmp_path, proxy_output):
    path = tmp_path / "proxy.log"
    path.write_text("Starting proxy...\n")
    watcher = CredentialWatcher(interval=0.02, max_attempts=100)

    asyncio.get_running_loop().call_later(0.1, path.write_text, proxy_output)
    start = time.monotonic()
    await watcher.watch(path)
    assert time.monotonic() - start < 1.5


@pytest.mark.asyncio
async def test_file_created_late(tmp_path, proxy_output):
    path = tmp_path / "proxy.log"
    asyncio.get_running_loop().call_later(0.05, path.write_text, proxy_output)
    await CredentialWatcher(interval=0.02, max_attempts=100).watch(path)


@pytest.mark.asyncio
async def test_times_out_after_budget(tmp_path):
    path = tmp_path / "proxy.log"
    path.write_text("ERROR: not logged in\n")
    watcher = CredentialWatcher(interval=0.05, max_attempts=10)

    start = time.monotonic()
    with pytest.raises(CredentialTimeout) as exc_info:
        await watcher.watch(path)
    elapsed = time.monotonic() - start

    assert 0.45 <= elapsed <= 1.5
    assert exc_info.value.path == path
    assert exc_info.value.waited == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_early_proxy_exit_keeps_polling(tmp_path, caplog):
    path = tmp_path / "proxy.log"
    watcher = CredentialWatcher(interval=0.01, max_attempts=3)

    with pytest.raises(CredentialTimeout):
        await watcher.watch(path, process=FakeProcess(returncode=1))
    assert "exited with code 1" in caplog.text
