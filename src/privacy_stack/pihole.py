# src/privacy_stack/pihole.py
from __future__ import annotations

import json
import re
import secrets
import string
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

import requests

from . import system
from .config import ADMIN_PASSWORD_LENGTH, HTTP_TIMEOUT, MIN_PIHOLE_VERSION, PIHOLE_INSTALLER_URL, Paths
from .errors import DependencyInstallError, ServiceControlError
from .keys import write_secret_file
from .logging_utils import get_logger
from .models import FilterCapability, ServiceCredential

log = get_logger(__name__)

PIHOLE_SERVICE = "pihole-FTL"
_VERSION_RE = re.compile(r"v?(\d+)\.(\d+)(?:\.(\d+))?")


# ---------- Capability ----------

def parse_version(output: str) -> Optional[tuple]:
    """First x.y[.z] in ``pihole -v`` output (the core version on v5 and v6)."""
    m = _VERSION_RE.search(output or "")
    if not m:
        return None
    return tuple(int(g) for g in m.groups() if g is not None)


def probe() -> FilterCapability:
    if system.which("pihole") is None:
        return FilterCapability(installed=False)
    try:
        out = system.run_cmd(["pihole", "-v"]).stdout
    except (subprocess.CalledProcessError, FileNotFoundError) as exc:
        log.warning("pihole -v failed: %s", exc)
        return FilterCapability(installed=True)
    return FilterCapability(installed=True, version=parse_version(out), raw_version=out.strip())


def is_compatible(cap: FilterCapability) -> bool:
    return cap.installed and cap.version is not None and cap.version[:2] >= MIN_PIHOLE_VERSION


# ---------- Installation ----------

def install(apt: system.Apt) -> None:
    log.info("Installing Pi-hole (network-wide ad/tracker blocker)...")
    apt.install("curl", "ca-certificates")

    try:
        resp = requests.get(PIHOLE_INSTALLER_URL, timeout=HTTP_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise DependencyInstallError(f"Cannot download Pi-hole installer: {exc}") from exc

    with tempfile.TemporaryDirectory(prefix="pihole-") as tmp:
        script = Path(tmp) / "basic-install.sh"
        script.write_text(resp.text, encoding="utf-8")
        script.chmod(0o700)
        try:
            system.run_cmd(
                ["bash", str(script), "--unattended"],
                env={"PIHOLE_SKIP_OS_CHECK": "true"},
            )
        except (subprocess.CalledProcessError, FileNotFoundError) as exc:
            detail = system.error_detail(exc)[-400:]
            raise DependencyInstallError(f"Pi-hole installer failed: {detail}") from exc


def upgrade() -> None:
    log.info("Upgrading Pi-hole (pihole -up)...")
    try:
        system.run_cmd(["pihole", "-up"])
    except (subprocess.CalledProcessError, FileNotFoundError) as exc:
        raise DependencyInstallError(f"pihole -up failed: {system.error_detail(exc)}") from exc


# ---------- Control ----------

class Pihole:
    """
    Pi-hole control interface. Commands follow the installed major version:
    v5 exposes ``pihole -a``, v6 moved settings to ``pihole-FTL --config``.
    """

    def __init__(self, capability: FilterCapability):
        self.capability = capability

    @property
    def legacy(self) -> bool:
        major = self.capability.major
        return major is None or major < 6

    def _ctl(self, cmd: List[str], what: str) -> None:
        try:
            system.run_cmd(cmd)
        except (subprocess.CalledProcessError, FileNotFoundError) as exc:
            raise ServiceControlError(f"Pi-hole {what} failed: {system.error_detail(exc)}") from exc

    def set_interface(self, iface: str) -> None:
        if self.legacy:
            self._ctl(["pihole", "-a", "setinterface", iface], "setinterface")
        else:
            self._ctl(["pihole-FTL", "--config", "dns.interface", iface], "dns.interface")

    def set_upstream(self, upstream: str) -> None:
        if self.legacy:
            self._ctl(["pihole", "-a", "setdns", upstream], "setdns")
        else:
            self._ctl(["pihole-FTL", "--config", "dns.upstreams", json.dumps([upstream])], "dns.upstreams")

    def set_password(self, password: str) -> None:
        if self.legacy:
            self._ctl(["pihole", "-a", "-p", password], "password change")
        else:
            self._ctl(["pihole", "setpassword", password], "password change")

    def restart(self) -> None:
        system.systemctl("restart", PIHOLE_SERVICE)


# ---------- Admin credential ----------

def generate_password(length: int = ADMIN_PASSWORD_LENGTH) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def resolve_admin_credential(paths: Paths, supplied: Optional[str]) -> ServiceCredential:
    """
    A supplied password always wins; otherwise the stored one is kept;
    otherwise a new one is generated.
    """
    if supplied:
        return ServiceCredential(supplied, "supplied")
    path = paths.pihole_password
    if path.is_file():
        stored = path.read_text(encoding="utf-8").strip()
        if stored:
            return ServiceCredential(stored, "stored")
    return ServiceCredential(generate_password(), "generated")


def store_admin_credential(paths: Paths, credential: ServiceCredential) -> Path:
    path = paths.pihole_password
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    write_secret_file(path, credential.value)
    return path
