"""Provisioning orchestrator.

Runs the four stages in order (resolver, filter install, filter configure,
tunnel). Each stage is idempotent and re-applies its configuration on every
run. A failing stage undoes its own file changes before the error propagates;
stages that already completed are left in place. The provisioning record in
``/var/lib/privacy-stack/state.json`` tracks what each stage last applied.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from . import pihole, resolver, system, wireguard
from .config import RESOLVER_ADDRESS, RESOLVER_PORT, StackConfig
from .errors import DependencyInstallError, MissingEndpoint, PrivilegeError
from .firewall import detect_wan_iface
from .ipam import plan_network
from .keys import KeyMaterialManager
from .logging_utils import get_logger
from .models import NetworkPlan, PeerBinding, ProvisioningSummary, Role, ServiceCredential
from .state import COMPLETED, FAILED, RUNNING, ProvisioningRecord, inputs_hash, load_record, run_lock, save_record

log = get_logger(__name__)

PREFLIGHT_COMMANDS = ("ip", "curl")
TUNNEL_PACKAGES = ("wireguard", "wireguard-tools", "iptables")


# -----------------------------
# Run context
# -----------------------------

@dataclass
class RunContext:
    config: StackConfig
    apt: system.Apt
    plan: NetworkPlan
    wan_iface: str
    endpoint: str
    record: ProvisioningRecord = field(default_factory=ProvisioningRecord)
    filter: Optional[pihole.Pihole] = None
    credential: Optional[ServiceCredential] = None
    client_conf_path: Optional[Path] = None
    client_qr_path: Optional[Path] = None

    @property
    def paths(self):
        return self.config.paths


class FileJournal:
    """Snapshots files before a stage touches them so they can be put back."""

    def __init__(self) -> None:
        self._snapshots: Dict[Path, Optional[Tuple[bytes, int]]] = {}

    def track(self, *paths: Path) -> None:
        for path in paths:
            if path in self._snapshots:
                continue
            if path.is_file():
                self._snapshots[path] = (path.read_bytes(), path.stat().st_mode & 0o777)
            else:
                self._snapshots[path] = None

    def forget(self, path: Path) -> None:
        self._snapshots.pop(path, None)

    def existed(self, path: Path) -> bool:
        return self._snapshots.get(path) is not None

    def restore(self) -> List[Path]:
        restored = []
        for path, snap in reversed(list(self._snapshots.items())):
            if snap is None:
                if path.exists():
                    path.unlink()
                    restored.append(path)
                continue
            content, mode = snap
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.chmod(path, mode)
            restored.append(path)
        return restored


# -----------------------------
# Stages
# -----------------------------

class Stage:
    name = ""

    def inputs(self, ctx: RunContext) -> Dict[str, Any]:
        return {}

    def apply(self, ctx: RunContext, journal: FileJournal) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def compensate(self, ctx: RunContext, journal: FileJournal) -> None:
        for path in journal.restore():
            log.info("Rolled back %s", path)


class ResolverSetup(Stage):
    name = "resolver"

    def inputs(self, ctx):
        return {"policy": inputs_hash({"text": resolver.render_resolver_policy()})}

    def apply(self, ctx, journal):
        log.info("Installing and configuring Unbound (recursive DNS resolver)...")
        ctx.apt.install(*resolver.UNBOUND_PACKAGES)
        journal.track(ctx.paths.unbound_conf, ctx.paths.root_hints)
        resolver.write_resolver_policy(ctx.paths)
        resolver.fetch_root_hints(ctx.paths)
        resolver.restart_resolver()
        return {"listen": f"{RESOLVER_ADDRESS}#{RESOLVER_PORT}"}


class FilterInstall(Stage):
    name = "filter-install"

    def apply(self, ctx, journal):
        cap = pihole.probe()
        if pihole.is_compatible(cap):
            log.info("Pi-hole %s already installed. Skipping installation step.",
                     ".".join(map(str, cap.version)))
        elif not cap.installed:
            pihole.install(ctx.apt)
            cap = pihole.probe()
        else:
            log.warning("Pi-hole version %r is older than required or unknown; upgrading",
                        cap.raw_version or None)
            pihole.upgrade()
            cap = pihole.probe()

        if not cap.installed:
            raise DependencyInstallError("Pi-hole is still missing after installation.")
        ctx.filter = pihole.Pihole(cap)
        return {"version": ".".join(map(str, cap.version)) if cap.version else None}

    def compensate(self, ctx, journal):
        log.warning("Pi-hole installation is not rolled back; re-run after fixing the cause.")


class FilterConfigure(Stage):
    name = "filter-configure"

    def inputs(self, ctx):
        return {
            "interface": ctx.wan_iface,
            "upstream": f"{RESOLVER_ADDRESS}#{RESOLVER_PORT}",
            "password_supplied": bool(ctx.config.pihole_password),
        }

    def apply(self, ctx, journal):
        log.info("Configuring Pi-hole to use Unbound and apply supplied settings...")
        if ctx.filter is None:
            ctx.filter = pihole.Pihole(pihole.probe())
        ctl = ctx.filter

        ctl.set_interface(ctx.wan_iface)
        resolver.bind_filter_to_resolver(ctl, RESOLVER_ADDRESS, RESOLVER_PORT)

        cred = pihole.resolve_admin_credential(ctx.paths, ctx.config.pihole_password)
        journal.track(ctx.paths.pihole_password)
        pihole.store_admin_credential(ctx.paths, cred)
        ctl.set_password(cred.value)
        # Pi-hole now has this password; the file must keep matching it
        journal.forget(ctx.paths.pihole_password)
        ctx.credential = cred

        ctl.restart()
        return {"credential": cred.source}


class TunnelConfigure(Stage):
    name = "tunnel"

    def __init__(self) -> None:
        self.started = False

    def inputs(self, ctx):
        cfg = ctx.config
        return {
            "network": ctx.plan.cidr,
            "interface": cfg.vpn_interface,
            "port": cfg.vpn_port,
            "client": cfg.client_name,
            "endpoint": ctx.endpoint,
            "wan": ctx.wan_iface,
        }

    def apply(self, ctx, journal):
        log.info("Installing and configuring WireGuard (secure VPN tunnel)...")
        cfg = ctx.config
        paths = ctx.paths
        ctx.apt.install(*TUNNEL_PACKAGES)

        km = KeyMaterialManager(paths, cfg.vpn_interface)
        journal.track(
            km.private_key_path(Role.SERVER, "server"),
            km.public_key_path(Role.SERVER, "server"),
            km.private_key_path(Role.CLIENT, cfg.client_name),
            km.public_key_path(Role.CLIENT, cfg.client_name),
            km.preshared_path(cfg.client_name),
        )
        server = km.ensure_keypair(Role.SERVER, "server")
        client = PeerBinding(
            name=cfg.client_name,
            address=ctx.plan.client_address,
            keypair=km.ensure_keypair(Role.CLIENT, cfg.client_name),
            preshared=km.ensure_preshared(cfg.client_name),
            allowed_ips=ctx.plan.client_allowed_ips,
        )

        server_conf = wireguard.render_server_conf(
            ctx.plan, server, [client], cfg.vpn_port, cfg.vpn_interface, ctx.wan_iface
        )
        client_conf = wireguard.render_client_conf(
            ctx.plan, client, server.public_key, ctx.endpoint, cfg.vpn_port
        )

        journal.track(
            paths.server_conf(cfg.vpn_interface),
            paths.client_conf(cfg.client_name),
            paths.client_qr(cfg.client_name),
            paths.sysctl_conf,
        )
        wireguard.write_server_conf(paths, cfg.vpn_interface, server_conf)
        ctx.client_conf_path = wireguard.write_client_conf(paths, cfg.client_name, client_conf)
        ctx.client_qr_path = wireguard.write_client_qr(paths, cfg.client_name, client_conf)

        wireguard.enable_forwarding(paths)
        self.started = True
        wireguard.start_tunnel(cfg.vpn_interface)
        return {"server_public_key": server.public_key, "client_public_key": client.keypair.public_key}

    def compensate(self, ctx, journal):
        iface = ctx.config.vpn_interface
        had_config = journal.existed(ctx.paths.server_conf(iface))
        super().compensate(ctx, journal)
        if not self.started:
            return
        if had_config:
            log.info("Restarting %s with the previous configuration", wireguard.service_unit(iface))
            wireguard.start_tunnel(iface)
        else:
            # runs PostDown, which removes exactly the PostUp rules
            wireguard.stop_tunnel(iface)


def default_stages() -> List[Stage]:
    return [ResolverSetup(), FilterInstall(), FilterConfigure(), TunnelConfigure()]


# -----------------------------
# Preflight
# -----------------------------

def resolve_endpoint(server_ip: Optional[str]) -> str:
    endpoint = (server_ip or "").strip()
    if not endpoint:
        endpoint = (system.detect_public_ip() or "").strip()
    if not endpoint and system.stdin_is_tty():
        endpoint = input("Enter the public IPv4 address for WireGuard clients to reach: ").strip()
    if not endpoint:
        raise MissingEndpoint("Server public IP is required. Provide via --server-ip.")
    return endpoint


def preflight(config: StackConfig, apt: Optional[system.Apt] = None) -> RunContext:
    """Checks everything that can fail before the host is modified."""
    if not system.is_root():
        raise PrivilegeError("This installer must be run as root.")
    system.check_platform(config.paths.os_release)

    plan = plan_network(config.vpn_network)

    apt = apt or system.Apt()
    apt.require_commands(*PREFLIGHT_COMMANDS)

    wan_iface = detect_wan_iface()
    endpoint = resolve_endpoint(config.server_ip)
    log.info("Primary interface %s, clients will connect to %s:%s", wan_iface, endpoint, config.vpn_port)
    return RunContext(config=config, apt=apt, plan=plan, wan_iface=wan_iface, endpoint=endpoint)


# -----------------------------
# Run
# -----------------------------

def run_stage(stage: Stage, ctx: RunContext) -> None:
    state_file = ctx.paths.state_file
    digest = inputs_hash(stage.inputs(ctx))
    prev = ctx.record.get(stage.name)
    if prev is not None:
        if prev.status != COMPLETED:
            log.warning("Stage %s did not complete last time (%s); re-applying", stage.name, prev.status)
        elif prev.inputs != digest:
            log.info("Stage %s inputs changed since %s; reconfiguring", stage.name, prev.updated_at)
        else:
            log.debug("Stage %s already applied with identical inputs; re-applying", stage.name)

    ctx.record.mark(stage.name, RUNNING, digest)
    save_record(ctx.record, state_file)

    journal = FileJournal()
    try:
        details = stage.apply(ctx, journal) or {}
    except Exception:
        log.error("Stage %s failed; undoing its changes", stage.name)
        try:
            stage.compensate(ctx, journal)
        except Exception:
            log.exception("Rollback of stage %s failed", stage.name)
        ctx.record.mark(stage.name, FAILED, digest)
        save_record(ctx.record, state_file)
        raise

    ctx.record.mark(stage.name, COMPLETED, digest, **details)
    save_record(ctx.record, state_file)


def build_summary(ctx: RunContext) -> ProvisioningSummary:
    addrs = system.host_addresses()
    host = addrs[0] if addrs else ctx.endpoint
    cfg = ctx.config
    return ProvisioningSummary(
        admin_url=f"http://{host}/admin",
        admin_password=ctx.credential.value if ctx.credential else "",
        password_path=str(ctx.paths.pihole_password),
        interface=cfg.vpn_interface,
        listen_port=cfg.vpn_port,
        client_config_path=str(ctx.client_conf_path or ctx.paths.client_conf(cfg.client_name)),
        client_qr_path=str(ctx.client_qr_path or ctx.paths.client_qr(cfg.client_name)),
    )


def provision(config: StackConfig, stages: Optional[List[Stage]] = None) -> ProvisioningSummary:
    ctx = preflight(config)
    with run_lock(config.paths.lock_file):
        ctx.record = load_record(config.paths.state_file)
        for stage in stages if stages is not None else default_stages():
            run_stage(stage, ctx)
    return build_summary(ctx)
