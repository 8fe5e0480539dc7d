"""Command line tests."""

import pytest

import cli
from privacy_stack.errors import InsufficientAddressSpace, MissingEndpoint
from privacy_stack.models import ProvisioningSummary


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda verbose=False: None)


def _summary():
    return ProvisioningSummary(
        admin_url="http://192.0.2.10/admin",
        admin_password="pw",
        password_path="/root/.pihole_webpassword",
        interface="wg0",
        listen_port=51820,
        client_config_path="/etc/wireguard/clients/client1.conf",
        client_qr_path="/var/lib/privacy-stack/client1.qr",
    )


class TestParser:

    def test_defaults(self):
        args = cli.build_parser().parse_args([])
        assert args.vpn_interface == "wg0"
        assert args.vpn_port == 51820
        assert args.vpn_network == "10.8.0.0/24"
        assert args.client_name == "client1"
        assert args.server_ip is None

    @pytest.mark.parametrize("argv", [
        ["--bogus"],
        ["--server"],                      # no abbreviations
        ["--vpn-port", "70000"],
        ["--vpn-port", "abc"],
        ["--client-name", "../etc"],
        ["--vpn-interface", "this-name-is-too-long"],
    ])
    def test_rejected(self, argv, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(argv)
        assert exc.value.code == 2
        assert "usage:" in capsys.readouterr().err

    def test_help(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["--help"])
        assert exc.value.code == 0
        assert "--vpn-network" in capsys.readouterr().out


class TestMain:

    def test_success_prints_summary(self, monkeypatch, capsys):
        seen = {}

        def fake_provision(config):
            seen["config"] = config
            return _summary()

        monkeypatch.setattr(cli, "provision", fake_provision)
        code = cli.main(["--server-ip", "203.0.113.5", "--client-name", "laptop", "--vpn-port", "443"])

        assert code == 0
        assert seen["config"].server_ip == "203.0.113.5"
        assert seen["config"].client_name == "laptop"
        assert seen["config"].vpn_port == 443
        out = capsys.readouterr().out
        assert "Installation Summary" in out
        assert "Pi-hole admin password: pw" in out

    @pytest.mark.parametrize("error", [
        MissingEndpoint("Server public IP is required. Provide via --server-ip."),
        InsufficientAddressSpace("no room"),
    ])
    def test_failure_exit_code(self, monkeypatch, capsys, error):
        def fake_provision(config):
            raise error

        monkeypatch.setattr(cli, "provision", fake_provision)
        code = cli.main([])

        captured = capsys.readouterr()
        assert code == 1
        assert captured.err.startswith("Error: ")
        assert "Installation Summary" not in captured.out

    def test_end_to_end_missing_endpoint(self, config, host, monkeypatch, capsys):
        from privacy_stack import system
        monkeypatch.setattr(system, "detect_public_ip", lambda: None)
        monkeypatch.setenv("PRIVACY_STACK_ROOT", str(config.paths.root))

        assert cli.main([]) == 1
        assert "Provide via --server-ip" in capsys.readouterr().err
        assert not config.paths.wireguard_dir.exists()
