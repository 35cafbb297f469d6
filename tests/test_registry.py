"""Tests for process discovery and termination."""

import asyncio
import os
from types import SimpleNamespace

import psutil
import pytest

from teleport_helper.credentials import registry as registry_module
from teleport_helper.credentials.registry import (
    ProcessEntry,
    PsProcessRegistry,
    PsutilProcessRegistry,
    create_registry,
    parse_ps_listing,
)
from teleport_helper.credentials.reaper import is_proxy_command
from teleport_helper.process import ProcessOutput

from conftest import FakeRegistry, FakeRunner


PS_AUX = """\
USER       PID %CPU %MEM    VSZ   RSS TTY      STAT START   TIME COMMAND
root         1  0.0  0.1 167744 11788 ?        Ss   Oct18   0:03 /sbin/init splash
me        2101  0.3  0.4 1288420 71236 ?       Sl   09:12   0:04 tsh proxy aws --app yl-development
me        2240  0.1  0.3 1288420 61236 ?       Sl   09:30   0:01 /usr/local/bin/tsh proxy db yl-rds --tunnel --port=45123
me        2301  0.0  0.0  10000  2000 pts/1    S+   09:40   0:00 grep --color=auto tsh proxy aws
me        2302  0.0  0.0  12000  3000 pts/1    R+   09:40   0:00 ps aux
me        2310  0.0  0.1  20000  9000 pts/1    Ss   09:41   0:00 -zsh
me        2400  0.0  0.1  20000  9000 pts/1    S    09:41   0:00 vim notes-about-tsh-proxy.md
"""


class TestParsePsListing:
    """Tests for parse_ps_listing()."""

    def test_skips_header_and_listing_commands(self):
        pids = [entry.pid for entry in parse_ps_listing(PS_AUX)]
        assert pids == [1, 2101, 2240, 2310, 2400]

    def test_keeps_full_command(self):
        entries = {entry.pid: entry.command for entry in parse_ps_listing(PS_AUX)}
        assert entries[2240] == "/usr/local/bin/tsh proxy db yl-rds --tunnel --port=45123"

    def test_ignores_garbage(self):
        assert parse_ps_listing("not a ps listing\n\n") == []


class TestPsProcessRegistry:
    """Tests for PsProcessRegistry."""

    @pytest.mark.asyncio
    async def test_kill_set_is_exactly_matching_pids(self):
        runner = FakeRunner()
        runner.outputs[("aux",)] = ProcessOutput(PS_AUX, "", 0)
        registry = PsProcessRegistry(runner)

        matches = await registry.match(is_proxy_command)
        pids = [entry.pid for entry in matches]
        assert pids == [2101, 2240]
        assert 2301 not in pids

        await registry.terminate(pids)
        assert runner.calls[-1] == ("silent", "kill", ["2101", "2240"])

    @pytest.mark.asyncio
    async def test_terminate_nothing_runs_nothing(self):
        runner = FakeRunner()
        await PsProcessRegistry(runner).terminate([])
        assert runner.calls == []


@pytest.mark.asyncio
async def test_match_excludes_current_process():
    registry = FakeRegistry([
        ProcessEntry(pid=os.getpid(), command="python -m teleport_helper tsh proxy aws"),
        ProcessEntry(pid=99, command="tsh proxy aws --app yl-admin"),
    ])
    assert [e.pid for e in await registry.match(is_proxy_command)] == [99]


class TestPsutilProcessRegistry:
    """Tests for PsutilProcessRegistry."""

    @pytest.mark.asyncio
    async def test_enumerate(self, monkeypatch):
        procs = [
            SimpleNamespace(info={"pid": 10, "cmdline": ["tsh", "proxy", "aws", "--app", "yl-admin"]}),
            SimpleNamespace(info={"pid": 11, "cmdline": None}),
            SimpleNamespace(info={"pid": 12, "cmdline": ["sleep", "100"]}),
        ]
        monkeypatch.setattr(registry_module.psutil, "process_iter", lambda attrs: iter(procs))

        entries = await PsutilProcessRegistry().enumerate()
        assert entries == [
            ProcessEntry(pid=10, command="tsh proxy aws --app yl-admin"),
            ProcessEntry(pid=12, command="sleep 100"),
        ]

    @pytest.mark.asyncio
    async def test_terminate_real_process(self):
        proc = await asyncio.create_subprocess_exec("sleep", "30")
        await PsutilProcessRegistry().terminate([proc.pid])
        returncode = await asyncio.wait_for(proc.wait(), 5)
        assert returncode != 0

    @pytest.mark.asyncio
    async def test_terminate_ignores_vanished(self, monkeypatch):
        def gone(pid):
            raise psutil.NoSuchProcess(pid)
        monkeypatch.setattr(registry_module.psutil, "Process", gone)
        await PsutilProcessRegistry().terminate([123456])


def test_create_registry():
    assert isinstance(create_registry("ps"), PsProcessRegistry)
    assert isinstance(create_registry("psutil"), PsutilProcessRegistry)
    with pytest.raises(ValueError):
        create_registry("wmi")
