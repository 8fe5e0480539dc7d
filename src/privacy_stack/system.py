# src/privacy_stack/system.py
from __future__ import annotations

import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import requests

from .config import PUBLIC_IP_URL, HTTP_TIMEOUT, SUPPORTED_DISTROS
from .errors import DependencyInstallError, PlatformError, ServiceControlError
from .logging_utils import get_logger

log = get_logger(__name__)

# command -> Debian package providing it
COMMAND_PACKAGES = {
    "ip": "iproute2",
}


# ---------- Commands ----------

def run_cmd(
    cmd: Sequence[str],
    check: bool = True,
    input: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
) -> subprocess.CompletedProcess:
    log.debug("run: %s", " ".join(cmd))
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)
    return subprocess.run(
        list(cmd),
        check=check,
        input=input,
        capture_output=True,
        text=True,
        env=full_env,
    )


def error_detail(exc: Exception) -> str:
    out = getattr(exc, "stderr", None) or getattr(exc, "stdout", None) or str(exc)
    return out.strip()


def which(name: str) -> Optional[str]:
    return shutil.which(name)


def is_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


def stdin_is_tty() -> bool:
    return sys.stdin is not None and sys.stdin.isatty()


# ---------- Platform ----------

def read_os_release(path: Path) -> Dict[str, str]:
    if not path.is_file():
        raise PlatformError(f"Unsupported system: {path} not found.")
    data: Dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key] = value.strip().strip('"').strip("'")
    return data


def check_platform(path: Path) -> Dict[str, str]:
    """Debian and derivatives only (apt, systemd, wg-quick units)."""
    info = read_os_release(path)
    distro = info.get("ID", "")
    like = info.get("ID_LIKE", "").split()
    if distro in SUPPORTED_DISTROS or "debian" in like:
        return info
    raise PlatformError(
        "Unsupported distribution. This installer currently targets Debian/Ubuntu systems."
    )


# ---------- Packages ----------

class Apt:
    """apt-get wrapper that refreshes the package index at most once per run."""

    def __init__(self) -> None:
        self.updated = False

    def _apt(self, *args: str) -> None:
        try:
            run_cmd(["apt-get", *args], env={"DEBIAN_FRONTEND": "noninteractive"})
        except (subprocess.CalledProcessError, FileNotFoundError) as exc:
            detail = error_detail(exc)[-400:]
            raise DependencyInstallError(f"apt-get {' '.join(args)} failed: {detail}") from exc

    def ensure_update(self) -> None:
        if not self.updated:
            log.info("Updating package index (apt-get update)...")
            self._apt("update", "-y")
            self.updated = True

    def install(self, *packages: str) -> None:
        self.ensure_update()
        self._apt("install", "-y", *packages)

    def require_commands(self, *commands: str) -> None:
        missing = [c for c in commands if which(c) is None]
        if missing:
            log.info("Installing missing commands: %s", ", ".join(missing))
            self.install(*(COMMAND_PACKAGES.get(c, c) for c in missing))


# ---------- Services ----------

def systemctl(action: str, unit: str) -> None:
    try:
        run_cmd(["systemctl", action, unit])
    except (subprocess.CalledProcessError, FileNotFoundError) as exc:
        detail = error_detail(exc)
        raise ServiceControlError(f"systemctl {action} {unit} failed: {detail}") from exc


# ---------- Network ----------

def detect_public_ip() -> Optional[str]:
    try:
        resp = requests.get(PUBLIC_IP_URL, timeout=HTTP_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as exc:
        log.warning("Public IP lookup failed: %s", exc)
        return None
    ip = resp.text.strip()
    return ip or None


def host_addresses() -> List[str]:
    try:
        out = run_cmd(["hostname", "-I"]).stdout
    except (subprocess.CalledProcessError, FileNotFoundError):
        return []
    return out.split()
