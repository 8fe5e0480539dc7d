# src/privacy_stack/ipam.py
from __future__ import annotations
import ipaddress

from .errors import InsufficientAddressSpace, InvalidNetworkSpec
from .models import NetworkPlan

# base+1 server, base+2 first client, room left for later clients
MAX_BASE_LAST_OCTET = 252
MIN_USABLE_HOSTS = 3


def _is_number(text: str) -> bool:
    return text.isascii() and text.isdigit()


def _parse_cidr(cidr: str) -> tuple[ipaddress.IPv4Address, int]:
    if not isinstance(cidr, str) or cidr.count("/") != 1:
        raise InvalidNetworkSpec(
            f"Invalid VPN network '{cidr}'. Use format like 10.8.0.0/24."
        )
    base_str, prefix_str = (part.strip() for part in cidr.split("/"))

    octets = base_str.split(".")
    if len(octets) != 4 or not all(_is_number(o) for o in octets):
        raise InvalidNetworkSpec(
            f"Invalid base address '{base_str}': expected four dotted decimal octets."
        )
    if any(int(o) > 255 for o in octets):
        raise InvalidNetworkSpec(f"Invalid base address '{base_str}': octet out of range.")

    if not _is_number(prefix_str):
        raise InvalidNetworkSpec(f"Invalid prefix length '{prefix_str}'.")
    prefix = int(prefix_str)
    if prefix > 32:
        raise InvalidNetworkSpec(f"Invalid prefix length '{prefix}': must be 0-32.")

    base = ipaddress.IPv4Address(".".join(str(int(o)) for o in octets))
    return base, prefix


def plan_network(cidr: str) -> NetworkPlan:
    """
    Derive the server/client tunnel addresses from a CIDR like '10.8.0.0/24'.

    Server gets base+1, first client base+2, both keeping the prefix. The
    server accepts the client only from its own /32.
    """
    base, prefix = _parse_cidr(cidr)

    if int(str(base).split(".")[3]) > MAX_BASE_LAST_OCTET:
        raise InsufficientAddressSpace(
            "The base address provided leaves insufficient room for server/client allocation."
        )

    net = ipaddress.ip_network(f"{base}/{prefix}", strict=False)
    if net.num_addresses - 2 < MIN_USABLE_HOSTS:
        raise InsufficientAddressSpace(
            f"/{prefix} leaves fewer than {MIN_USABLE_HOSTS} usable host addresses."
        )

    server_ip = base + 1
    client_ip = base + 2
    for ip in (server_ip, client_ip):
        if ip not in net or ip == net.broadcast_address:
            raise InsufficientAddressSpace(
                f"{ip} falls outside the usable range of {net}; choose a lower base address."
            )

    return NetworkPlan(
        base_address=str(base),
        prefix_length=prefix,
        server_address=f"{server_ip}/{prefix}",
        client_address=f"{client_ip}/{prefix}",
        client_allowed_ips=f"{client_ip}/32",
        dns_address=str(server_ip),
    )
