"""Address planning tests."""

import ipaddress

import pytest

from privacy_stack.errors import InsufficientAddressSpace, InvalidNetworkSpec
from privacy_stack.ipam import plan_network


class TestPlanNetwork:

    def test_default_network(self):
        plan = plan_network("10.8.0.0/24")
        assert plan.server_address == "10.8.0.1/24"
        assert plan.client_address == "10.8.0.2/24"
        assert plan.client_allowed_ips == "10.8.0.2/32"
        assert plan.dns_address == "10.8.0.1"
        assert plan.cidr == "10.8.0.0/24"

    def test_deterministic(self):
        assert plan_network("172.16.5.0/24") == plan_network("172.16.5.0/24")

    @pytest.mark.parametrize("cidr", [
        "10.8.0.0/24", "192.168.10.0/24", "10.0.0.0/8", "10.8.0.16/28", "10.8.0.100/16",
    ])
    def test_addresses_inside_subnet(self, cidr):
        plan = plan_network(cidr)
        net = ipaddress.ip_network(cidr, strict=False)
        server = ipaddress.ip_interface(plan.server_address).ip
        client = ipaddress.ip_interface(plan.client_address).ip
        base = ipaddress.ip_address(cidr.split("/")[0])

        assert server != client
        assert server in net and client in net
        assert server == base + 1
        assert client == base + 2

    @pytest.mark.parametrize("last", [253, 254, 255])
    def test_high_last_octet_rejected(self, last):
        with pytest.raises(InsufficientAddressSpace):
            plan_network(f"10.8.0.{last}/24")

    def test_252_is_the_last_accepted_octet(self):
        plan = plan_network("10.8.0.252/16")
        assert plan.client_address == "10.8.0.254/16"

    @pytest.mark.parametrize("cidr", ["10.8.0.0/30", "10.8.0.0/31", "10.8.0.0/32"])
    def test_prefix_too_small(self, cidr):
        with pytest.raises(InsufficientAddressSpace):
            plan_network(cidr)

    def test_client_past_end_of_block(self):
        # 10.8.0.0/29 ends at .7, so the client would get the broadcast address
        with pytest.raises(InsufficientAddressSpace):
            plan_network("10.8.0.5/29")

    @pytest.mark.parametrize("cidr", [
        "10.8.0.0", "10.8.0/24", "10.8.0.0.0/24", "10.8.0.x/24", "10.8.0.0/abc",
        "10.8.0.0/33", "10.8.0.256/24", "/24", "10.8.0.0/", "10.8.0.0/24/1", "",
    ])
    def test_malformed(self, cidr):
        with pytest.raises(InvalidNetworkSpec):
            plan_network(cidr)
