# src/privacy_stack/models.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Role(str, Enum):
    SERVER = "server"
    CLIENT = "client"


@dataclass(frozen=True)
class NetworkPlan:
    base_address: str          # ex "10.8.0.0"
    prefix_length: int         # ex 24
    server_address: str        # ex "10.8.0.1/24"
    client_address: str        # ex "10.8.0.2/24"
    client_allowed_ips: str    # ex "10.8.0.2/32"
    dns_address: str           # ex "10.8.0.1", resolver address pushed to clients

    @property
    def cidr(self) -> str:
        return f"{self.base_address}/{self.prefix_length}"


@dataclass(frozen=True)
class KeyPair:
    role: Role
    name: str
    private_key: str           # base64, 32 bytes
    public_key: str            # base64, derived from private_key


@dataclass(frozen=True)
class PresharedSecret:
    name: str
    value: str                 # base64, 32 bytes


@dataclass
class PeerBinding:
    name: str
    address: str               # tunnel address with prefix, ex "10.8.0.2/24"
    keypair: KeyPair
    preshared: PresharedSecret
    allowed_ips: str           # what the server accepts from this peer, ex "10.8.0.2/32"


@dataclass
class ServiceCredential:
    value: str
    source: str                # "supplied" | "stored" | "generated"


@dataclass
class FilterCapability:
    installed: bool
    version: Optional[tuple] = None   # ex (5, 17, 1)
    raw_version: str = ""

    @property
    def major(self) -> Optional[int]:
        return self.version[0] if self.version else None


@dataclass
class ProvisioningSummary:
    admin_url: str
    admin_password: str
    password_path: str
    interface: str
    listen_port: int
    client_config_path: str
    client_qr_path: str
