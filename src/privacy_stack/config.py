"""Defaults and run configuration for privacy-stack.

Every component receives the :class:`StackConfig` built once by the CLI and
reads only the fields it needs. File locations are grouped in :class:`Paths`
so a whole run can be pointed at a staging tree instead of ``/``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

DEFAULT_VPN_INTERFACE = "wg0"
DEFAULT_VPN_PORT = 51820
DEFAULT_VPN_NETWORK = "10.8.0.0/24"
DEFAULT_CLIENT_NAME = "client1"

RESOLVER_ADDRESS = "127.0.0.1"
RESOLVER_PORT = 5335

CLIENT_ALLOWED_IPS = "0.0.0.0/0, ::/0"
PERSISTENT_KEEPALIVE = 25

ROOT_HINTS_URL = "https://www.internic.net/domain/named.root"
PUBLIC_IP_URL = "https://api.ipify.org"
PIHOLE_INSTALLER_URL = "https://install.pi-hole.net"
HTTP_TIMEOUT = 15

MIN_PIHOLE_VERSION = (5, 0)
ADMIN_PASSWORD_LENGTH = 24

SUPPORTED_DISTROS = ("debian", "ubuntu")

ROOT_ENV = "PRIVACY_STACK_ROOT"


@dataclass(frozen=True)
class Paths:
    root: Path = Path("/")

    @classmethod
    def from_env(cls) -> "Paths":
        return cls(root=Path(os.environ.get(ROOT_ENV, "/")))

    def _p(self, rel: str) -> Path:
        return self.root / rel

    # WireGuard
    @property
    def wireguard_dir(self) -> Path:
        return self._p("etc/wireguard")

    @property
    def clients_dir(self) -> Path:
        return self.wireguard_dir / "clients"

    def server_conf(self, interface: str) -> Path:
        return self.wireguard_dir / f"{interface}.conf"

    def server_key(self, interface: str) -> Path:
        return self.wireguard_dir / f"{interface}_server.key"

    def client_key(self, name: str) -> Path:
        return self.clients_dir / f"{name}.key"

    def client_psk(self, name: str) -> Path:
        return self.clients_dir / f"{name}.psk"

    def client_conf(self, name: str) -> Path:
        return self.clients_dir / f"{name}.conf"

    # Local state
    @property
    def state_dir(self) -> Path:
        return self._p("var/lib/privacy-stack")

    def client_qr(self, name: str) -> Path:
        return self.state_dir / f"{name}.qr"

    @property
    def state_file(self) -> Path:
        return self.state_dir / "state.json"

    @property
    def lock_file(self) -> Path:
        return self.state_dir / ".lock"

    @property
    def sysctl_conf(self) -> Path:
        return self._p("etc/sysctl.d/99-privacy-stack.conf")

    # Unbound
    @property
    def unbound_conf(self) -> Path:
        return self._p("etc/unbound/unbound.conf.d/pi-hole.conf")

    @property
    def root_hints(self) -> Path:
        return self._p("var/lib/unbound/root.hints")

    # Pi-hole
    @property
    def pihole_password(self) -> Path:
        return self._p("root/.pihole_webpassword")

    @property
    def os_release(self) -> Path:
        return self._p("etc/os-release")


@dataclass
class StackConfig:
    server_ip: Optional[str] = None
    pihole_password: Optional[str] = None
    vpn_interface: str = DEFAULT_VPN_INTERFACE
    vpn_port: int = DEFAULT_VPN_PORT
    vpn_network: str = DEFAULT_VPN_NETWORK
    client_name: str = DEFAULT_CLIENT_NAME
    verbose: bool = False
    paths: Paths = field(default_factory=Paths.from_env)

    @classmethod
    def from_args(cls, args) -> "StackConfig":
        return cls(
            server_ip=args.server_ip or None,
            pihole_password=args.pihole_password or None,
            vpn_interface=args.vpn_interface,
            vpn_port=args.vpn_port,
            vpn_network=args.vpn_network,
            client_name=args.client_name,
            verbose=args.verbose,
        )
