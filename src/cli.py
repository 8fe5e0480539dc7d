import argparse
import re
import sys

from privacy_stack.config import (
    DEFAULT_CLIENT_NAME,
    DEFAULT_VPN_INTERFACE,
    DEFAULT_VPN_NETWORK,
    DEFAULT_VPN_PORT,
    StackConfig,
)
from privacy_stack.errors import ProvisioningError
from privacy_stack.logging_utils import setup_logging
from privacy_stack.orchestrator import provision


# ---------------------------------------------------
# Argument types
# ---------------------------------------------------

_IFACE_RE = re.compile(r"^[A-Za-z0-9_=+.-]{1,15}$")
_NAME_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]{0,63}$")


def _interface(value):
    if not _IFACE_RE.match(value):
        raise argparse.ArgumentTypeError(f"invalid interface name: {value!r}")
    return value


def _client_name(value):
    if not _NAME_RE.match(value):
        raise argparse.ArgumentTypeError(
            f"invalid client name: {value!r} (letters, digits, '.', '_', '-')"
        )
    return value


def _port(value):
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}")
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port


# ---------------------------------------------------
# Summary
# ---------------------------------------------------

def format_summary(summary):
    return "\n".join([
        "",
        "==================== Installation Summary ====================",
        f"Pi-hole admin URL: {summary.admin_url}",
        f"Pi-hole admin password: {summary.admin_password}",
        f"Stored at: {summary.password_path}",
        "",
        f"WireGuard server interface: {summary.interface}",
        f"WireGuard server listens on UDP port: {summary.listen_port}",
        f"WireGuard client profile: {summary.client_config_path}",
        f"WireGuard client QR (ANSI): {summary.client_qr_path}",
        f"To display the QR code: cat {summary.client_qr_path}",
        "===============================================================",
    ])


# ---------------------------------------------------
# CLI / Parser
# ---------------------------------------------------

def build_parser():
    parser = argparse.ArgumentParser(
        prog="privacy-stack",
        description="Install Unbound, Pi-hole and WireGuard as a DNS-filtering VPN gateway.",
        allow_abbrev=False,
    )
    parser.add_argument("--server-ip", metavar="IPV4",
                        help="Public address of this server (used in client configs)")
    parser.add_argument("--pihole-password", metavar="PASS",
                        help="Password for the Pi-hole admin interface (auto-generated if omitted)")
    parser.add_argument("--vpn-interface", type=_interface, default=DEFAULT_VPN_INTERFACE,
                        help=f"WireGuard interface name (default: {DEFAULT_VPN_INTERFACE})")
    parser.add_argument("--vpn-port", type=_port, default=DEFAULT_VPN_PORT,
                        help=f"WireGuard UDP listen port (default: {DEFAULT_VPN_PORT})")
    parser.add_argument("--vpn-network", metavar="CIDR", default=DEFAULT_VPN_NETWORK,
                        help=f"WireGuard VPN network in CIDR format (default: {DEFAULT_VPN_NETWORK})")
    parser.add_argument("--client-name", type=_client_name, default=DEFAULT_CLIENT_NAME,
                        help=f"Label for the first generated WireGuard client (default: {DEFAULT_CLIENT_NAME})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None):
    parser = build_parser()
    # unknown options: argparse prints usage and exits 2
    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    config = StackConfig.from_args(args)

    try:
        summary = provision(config)
    except ProvisioningError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return exc.exit_code

    print(format_summary(summary))
    return 0


if __name__ == "__main__":
    sys.exit(main())
