"""Shared test fixtures."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple
from unittest.mock import patch

import pytest

from qemumac import constants
from qemumac.config import build_configuration
from qemumac.models import Configuration


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep DEBUG output off and ignore any profile file on the host."""
    monkeypatch.setattr(constants, "_LOG_VERBOSE", False)
    monkeypatch.delenv(constants.PROFILES_ENV, raising=False)


def base_params(arch: str, root: Path) -> Dict[str, str]:
    params = {
        "ARCH": arch,
        "QEMU_RAM": "256",
        "QEMU_HDD": str(root / "disks" / "os.img"),
        "QEMU_SHARED_HDD": str(root / "disks" / "shared.img"),
        "QEMU_GRAPHICS": "1152x870x8",
    }
    if arch == "m68k":
        params.update(
            QEMU_MACHINE="q800",
            QEMU_ROM=str(root / "Quadra800.rom"),
            QEMU_PRAM=str(root / "pram.img"),
        )
    else:
        params.update(QEMU_MACHINE="mac99")
    return params


@pytest.fixture
def make_config(tmp_path):
    """Build a validated Configuration for ``arch`` with optional key overrides."""

    def _make(arch: str = "m68k", name: str = "testmac", **overrides) -> Configuration:
        params = base_params(arch, tmp_path)
        for key, value in overrides.items():
            if value is None:
                params.pop(key, None)
            else:
                params[key] = str(value)
        return build_configuration(params, name=name)

    return _make


@pytest.fixture
def write_config(tmp_path):
    """Write config text to ``<tmp>/<name>.conf`` and return the path."""

    def _write(text: str, name: str = "testmac") -> Path:
        path = tmp_path / f"{name}.conf"
        path.write_text(text)
        return path

    return _write


@pytest.fixture
def rom_file(tmp_path) -> Path:
    rom = tmp_path / "Quadra800.rom"
    rom.write_bytes(b"\x00" * 1024)
    return rom


class FakeHost:
    """In-memory stand-in for the host link table driven through ``ip``.

    ``before`` holds one-shot callbacks fired ahead of the first command
    matching their argument prefix.
    """

    def __init__(self) -> None:
        self.links: Dict[str, Dict[str, object]] = {}
        self.calls: List[List[str]] = []
        self.fail_on: List[List[str]] = []
        self.create_race: Optional[str] = None
        self.before: List[Tuple[List[str], Callable[[], None]]] = []

    def add_link(self, name: str, kind: str = "bridge", up: bool = False, master: Optional[str] = None) -> None:
        self.links[name] = {"kind": kind, "up": up, "master": master}

    def run(self, cmd, check=True, **kwargs):
        if cmd[0] == "sudo":
            cmd = cmd[1:]
        self.calls.append(list(cmd))
        args = cmd[1:]
        for prefix, action in list(self.before):
            if args[: len(prefix)] == prefix:
                self.before.remove((prefix, action))
                action()
        for prefix in self.fail_on:
            if args[: len(prefix)] == prefix:
                return self._result(cmd, 2, stderr="RTNETLINK answers: Operation not permitted", check=check)

        if args[:2] == ["link", "show"]:
            link = self.links.get(args[2])
            if link is None:
                return self._result(cmd, 1, stderr=f'Device "{args[2]}" does not exist.', check=check)
            flags = "BROADCAST,MULTICAST" + (",UP" if link["up"] else "")
            state = "UP" if link["up"] else "DOWN"
            return self._result(cmd, 0, stdout=f"7: {args[2]}: <{flags}> mtu 1500 state {state}\n", check=check)
        if args[:2] == ["link", "add"]:
            name = args[3]
            if self.create_race == name:
                self.add_link(name)
                return self._result(cmd, 2, stderr="RTNETLINK answers: File exists", check=check)
            if name in self.links:
                return self._result(cmd, 2, stderr="RTNETLINK answers: File exists", check=check)
            self.add_link(name)
            return self._result(cmd, 0, check=check)
        if args[:2] == ["link", "set"]:
            link = self.links.get(args[2])
            if link is None:
                return self._result(cmd, 1, stderr="Cannot find device", check=check)
            action = args[3]
            if action == "up":
                link["up"] = True
            elif action == "down":
                link["up"] = False
            elif action == "master":
                link["master"] = args[4]
            elif action == "nomaster":
                link["master"] = None
            return self._result(cmd, 0, check=check)
        if args[:2] == ["tuntap", "add"]:
            name = args[3]
            if name in self.links:
                return self._result(cmd, 2, stderr="ioctl(TUNSETIFF): Device or resource busy", check=check)
            self.add_link(name, kind="tap")
            return self._result(cmd, 0, check=check)
        if args[:2] == ["tuntap", "del"]:
            self.links.pop(args[3], None)
            return self._result(cmd, 0, check=check)
        raise AssertionError(f"unexpected command {cmd}")

    @staticmethod
    def _result(cmd, code, stdout="", stderr="", check=True):
        if code != 0 and check:
            raise subprocess.CalledProcessError(code, cmd, output=stdout, stderr=stderr)
        return subprocess.CompletedProcess(cmd, code, stdout=stdout, stderr=stderr)

    def mutating_calls(self) -> List[List[str]]:
        return [call for call in self.calls if call[1:3] != ["link", "show"]]


@pytest.fixture
def host():
    fake = FakeHost()
    with patch("qemumac.network.run", side_effect=fake.run), patch(
        "qemumac.network.host_is_macos", return_value=False
    ):
        yield fake
