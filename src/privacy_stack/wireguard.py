# src/privacy_stack/wireguard.py
from __future__ import annotations
import io
import ipaddress
import subprocess
from pathlib import Path
from typing import List

import qrcode

from . import system
from .config import CLIENT_ALLOWED_IPS, PERSISTENT_KEEPALIVE, Paths
from .errors import ServiceControlError
from .firewall import post_up_down
from .keys import ensure_private_dir, write_secret_file
from .logging_utils import get_logger
from .models import KeyPair, NetworkPlan, PeerBinding

log = get_logger(__name__)

SYSCTL_FORWARDING = (
    "net.ipv4.ip_forward=1\n"
    "net.ipv6.conf.all.forwarding=1\n"
)


# ---------- Rendering ----------

def _format_endpoint(host: str, port: int) -> str:
    try:
        if ipaddress.ip_address(host).version == 6:
            return f"[{host}]:{port}"
    except ValueError:
        pass  # hostname
    return f"{host}:{port}"


def _single_host(allowed_ips: str) -> str:
    net = ipaddress.ip_network(allowed_ips, strict=True)
    if net.num_addresses != 1:
        raise ValueError(f"Peer AllowedIPs must be a single host, got {allowed_ips}")
    return allowed_ips


def render_server_conf(
    plan: NetworkPlan,
    server: KeyPair,
    peers: List[PeerBinding],
    listen_port: int,
    interface: str,
    egress_interface: str,
) -> str:
    post_up, post_down = post_up_down(interface, egress_interface)

    lines = [
        "[Interface]",
        f"Address = {plan.server_address}",
        f"ListenPort = {listen_port}",
        f"PrivateKey = {server.private_key}",
        f"PostUp = {post_up}",
        f"PostDown = {post_down}",
        "",
    ]

    for p in peers:
        lines.append("[Peer]")
        lines.append(f"# {p.name}")
        lines.append(f"PublicKey = {p.keypair.public_key}")
        lines.append(f"PresharedKey = {p.preshared.value}")
        # one /32 per client, so clients cannot claim each other's address
        lines.append(f"AllowedIPs = {_single_host(p.allowed_ips)}")
        lines.append("")

    return "\n".join(lines).strip() + "\n"


def render_client_conf(
    plan: NetworkPlan,
    peer: PeerBinding,
    server_public_key: str,
    endpoint_host: str,
    listen_port: int,
) -> str:
    lines = [
        "[Interface]",
        f"PrivateKey = {peer.keypair.private_key}",
        f"Address = {peer.address}",
        f"DNS = {plan.dns_address}",
        "",
        "[Peer]",
        f"PublicKey = {server_public_key}",
        f"PresharedKey = {peer.preshared.value}",
        f"Endpoint = {_format_endpoint(endpoint_host, listen_port)}",
        f"AllowedIPs = {CLIENT_ALLOWED_IPS}",
        # keepalive so roaming/NATed clients stay reachable
        f"PersistentKeepalive = {PERSISTENT_KEEPALIVE}",
    ]
    return "\n".join(lines) + "\n"


def render_qr(conf: str) -> str:
    qr = qrcode.QRCode(border=2)
    qr.add_data(conf)
    qr.make(fit=True)
    out = io.StringIO()
    qr.print_ascii(out=out)
    return out.getvalue()


# ---------- Writing ----------

def write_server_conf(paths: Paths, interface: str, conf: str) -> Path:
    """
    Writes /etc/wireguard/<interface>.conf (always overwritten, 0600).
    """
    path = paths.server_conf(interface)
    ensure_private_dir(path.parent)
    write_secret_file(path, conf)
    log.info("Server config written to %s", path)
    return path


def write_client_conf(paths: Paths, name: str, conf: str) -> Path:
    path = paths.client_conf(name)
    ensure_private_dir(path.parent)
    write_secret_file(path, conf)
    log.info("Client config for '%s' written to %s", name, path)
    return path


def write_client_qr(paths: Paths, name: str, conf: str) -> Path:
    path = paths.client_qr(name)
    path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
    # the QR embeds the client private key
    write_secret_file(path, render_qr(conf))
    return path


# ---------- System ----------

def enable_forwarding(paths: Paths) -> Path:
    path = paths.sysctl_conf
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(SYSCTL_FORWARDING, encoding="utf-8")
    try:
        system.run_cmd(["sysctl", "--system"])
    except (subprocess.CalledProcessError, FileNotFoundError) as exc:
        raise ServiceControlError(f"sysctl --system failed: {system.error_detail(exc)}") from exc
    return path


def service_unit(interface: str) -> str:
    return f"wg-quick@{interface}"


def start_tunnel(interface: str) -> None:
    unit = service_unit(interface)
    system.systemctl("enable", unit)
    system.systemctl("restart", unit)


def stop_tunnel(interface: str) -> None:
    system.systemctl("stop", service_unit(interface))
