# src/privacy_stack/firewall.py
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import List, Tuple

from . import system
from .errors import ServiceControlError


# -----------------------------
# Data
# -----------------------------

@dataclass(frozen=True)
class NatRule:
    """One iptables rule, stored without its -A/-D verb."""
    table: str          # "filter" | "nat"
    chain: str
    spec: Tuple[str, ...]

    def command(self, verb: str) -> str:
        parts = ["iptables"]
        if self.table != "filter":
            parts += ["-t", self.table]
        parts += [verb, self.chain, *self.spec]
        return " ".join(parts)


# -----------------------------
# WAN detection
# -----------------------------

def detect_wan_iface() -> str:
    """Interface carrying the IPv4 default route."""
    try:
        out = system.run_cmd(["ip", "-4", "route", "list", "default"]).stdout.strip()
    except (subprocess.CalledProcessError, FileNotFoundError) as exc:
        raise ServiceControlError(f"Cannot query default route: {exc}") from exc
    line = next((l for l in out.splitlines() if l.strip()), "")
    if not line:
        raise ServiceControlError(
            "Unable to detect the primary network interface (no default route)."
        )
    parts = line.split()
    if "dev" not in parts:
        raise ServiceControlError(f"Cannot parse default route line: {line}")
    idx = parts.index("dev")
    if idx + 1 >= len(parts):
        raise ServiceControlError(f"Cannot parse WAN iface from: {line}")
    return parts[idx + 1]


# -----------------------------
# Tunnel up/down rules
# -----------------------------

def forwarding_rules(wg_iface: str, wan_iface: str) -> List[NatRule]:
    return [
        NatRule("nat", "POSTROUTING", ("-o", wan_iface, "-j", "MASQUERADE")),
        NatRule("filter", "FORWARD", ("-i", wan_iface, "-o", wg_iface, "-j", "ACCEPT")),
        NatRule("filter", "FORWARD", ("-i", wg_iface, "-o", wan_iface, "-j", "ACCEPT")),
    ]


def post_up_down(wg_iface: str, wan_iface: str) -> Tuple[str, str]:
    """
    PostUp / PostDown lines for wg-quick.

    Both come from the same rule list: PostDown deletes exactly what PostUp
    appended, so up/down cycles never accumulate rules.
    """
    rules = forwarding_rules(wg_iface, wan_iface)
    up = "; ".join(r.command("-A") for r in rules)
    down = "; ".join(r.command("-D") for r in rules)
    return up, down
