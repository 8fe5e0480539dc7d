"""pytest configuration and shared fixtures."""

from __future__ import annotations

import base64
import hashlib
import subprocess
from pathlib import Path
from typing import List, Optional

import pytest

from privacy_stack import pihole, resolver, system
from privacy_stack.config import Paths, StackConfig

OS_RELEASE = 'PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"\nID=debian\nVERSION_ID="12"\n'
ROOT_HINTS = ".                        3600000      NS    A.ROOT-SERVERS.NET.\n"


def fake_key(seed: str) -> str:
    return base64.b64encode(hashlib.sha256(seed.encode()).digest()).decode()


class FakeHost:
    """Answers the external commands the provisioner runs and records every call."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.installed = {"ip", "curl", "wg", "pihole"}
        self.pihole_version = "Pi-hole version is v5.17.1 (Latest: v5.17.1)"
        self.fail_on: List[List[str]] = []
        self.missing: List[str] = []
        self._counter = 0

    def which(self, name: str) -> Optional[str]:
        return f"/usr/bin/{name}" if name in self.installed else None

    def ran(self, *prefix: str) -> List[List[str]]:
        return [c for c in self.calls if c[: len(prefix)] == list(prefix)]

    def run_cmd(self, cmd, check=True, input=None, env=None):
        cmd = list(cmd)
        self.calls.append(cmd)
        if cmd[0] in self.missing:
            raise FileNotFoundError(2, "No such file or directory", cmd[0])
        for prefix in self.fail_on:
            if cmd[: len(prefix)] == prefix:
                raise subprocess.CalledProcessError(1, cmd, output="", stderr="boom")

        out = ""
        if cmd[:2] == ["wg", "genkey"] or cmd[:2] == ["wg", "genpsk"]:
            self._counter += 1
            out = fake_key(f"{cmd[1]}-{self._counter}") + "\n"
        elif cmd[:2] == ["wg", "pubkey"]:
            out = fake_key("pub:" + (input or "").strip()) + "\n"
        elif cmd[:4] == ["ip", "-4", "route", "list"]:
            out = "default via 192.0.2.1 dev eth0 proto dhcp src 192.0.2.10 metric 100\n"
        elif cmd[:2] == ["pihole", "-v"]:
            out = self.pihole_version + "\n"
        elif cmd[:2] == ["hostname", "-I"]:
            out = "192.0.2.10 10.8.0.1\n"
        elif cmd[0] == "bash":
            # the Pi-hole installer
            self.installed.add("pihole")
        return subprocess.CompletedProcess(cmd, 0, stdout=out, stderr="")


class FakeResponse:
    def __init__(self, text: str) -> None:
        self.text = text

    def raise_for_status(self) -> None:
        pass


@pytest.fixture
def paths(tmp_path: Path) -> Paths:
    (tmp_path / "etc").mkdir()
    (tmp_path / "etc" / "os-release").write_text(OS_RELEASE)
    return Paths(root=tmp_path)


@pytest.fixture
def host(monkeypatch) -> FakeHost:
    fake = FakeHost()
    monkeypatch.setattr(system, "run_cmd", fake.run_cmd)
    monkeypatch.setattr(system, "which", fake.which)
    monkeypatch.setattr(system, "is_root", lambda: True)
    monkeypatch.setattr(system, "stdin_is_tty", lambda: False)
    monkeypatch.setattr(system, "detect_public_ip", lambda: "203.0.113.5")

    def fake_get(url, timeout=None):
        if "internic" in url:
            return FakeResponse(ROOT_HINTS)
        return FakeResponse("#!/bin/bash\nexit 0\n")

    monkeypatch.setattr(resolver.requests, "get", fake_get)
    monkeypatch.setattr(pihole.requests, "get", fake_get)
    return fake


@pytest.fixture
def config(paths: Paths) -> StackConfig:
    return StackConfig(paths=paths)
