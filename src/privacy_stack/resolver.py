# src/privacy_stack/resolver.py
from __future__ import annotations

from pathlib import Path

import requests

from . import system
from .config import HTTP_TIMEOUT, RESOLVER_ADDRESS, RESOLVER_PORT, ROOT_HINTS_URL, Paths
from .errors import DependencyInstallError
from .logging_utils import get_logger

log = get_logger(__name__)

UNBOUND_SERVICE = "unbound"
UNBOUND_PACKAGES = ("unbound", "unbound-anchor")

# Static policy: loopback listener for Pi-hole only, DNSSEC hardening,
# private ranges never returned for public names.
RESOLVER_POLICY = f"""server:
    verbosity: 0
    interface: {RESOLVER_ADDRESS}
    port: {RESOLVER_PORT}
    do-ip4: yes
    do-ip6: no
    do-udp: yes
    do-tcp: yes
    access-control: 127.0.0.0/8 allow
    access-control: 10.0.0.0/8 allow
    access-control: 172.16.0.0/12 allow
    access-control: 192.168.0.0/16 allow
    access-control: 169.254.0.0/16 allow
    root-hints: "/var/lib/unbound/root.hints"
    hide-identity: yes
    hide-version: yes
    qname-minimisation: yes
    harden-glue: yes
    harden-below-nxdomain: yes
    harden-referral-path: yes
    harden-dnssec-stripped: yes
    use-caps-for-id: no
    prefetch: yes
    cache-min-ttl: 3600
    cache-max-ttl: 86400
    rrset-cache-size: 256m
    msg-cache-size: 128m
    unwanted-reply-threshold: 10000000
    private-address: 10.0.0.0/8
    private-address: 172.16.0.0/12
    private-address: 192.168.0.0/16
    private-address: 169.254.0.0/16
    private-address: fd00::/8
    private-address: fe80::/10
"""


def render_resolver_policy() -> str:
    return RESOLVER_POLICY


def write_resolver_policy(paths: Paths) -> Path:
    path = paths.unbound_conf
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_resolver_policy(), encoding="utf-8")
    log.info("Unbound policy written to %s", path)
    return path


def fetch_root_hints(paths: Paths) -> Path:
    path = paths.root_hints
    try:
        resp = requests.get(ROOT_HINTS_URL, timeout=HTTP_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise DependencyInstallError(f"Cannot download root hints from {ROOT_HINTS_URL}: {exc}") from exc
    path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
    path.write_text(resp.text, encoding="utf-8")
    return path


def restart_resolver() -> None:
    system.systemctl("enable", UNBOUND_SERVICE)
    system.systemctl("restart", UNBOUND_SERVICE)


def bind_filter_to_resolver(pihole, address: str = RESOLVER_ADDRESS, port: int = RESOLVER_PORT) -> str:
    """Make the resolver the filter's only upstream. Control failures propagate."""
    upstream = f"{address}#{port}"
    pihole.set_upstream(upstream)
    log.info("Pi-hole upstream set to %s", upstream)
    return upstream
