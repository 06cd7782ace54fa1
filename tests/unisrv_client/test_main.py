"""
Tests for argument parsing and the CLI entry point.
"""

import logging
from unittest.mock import AsyncMock, patch

import pytest
import yaml

from unisrv.errors import HealthCheckError, ResolutionError
from unisrv_client.main import create_parser, load_settings, main, parse_cli_args


@pytest.fixture
def isolated(clean_env, tmp_path):
    """No user config or session, and root logging restored afterwards."""
    clean_env.setattr("unisrv.config.settings.DEFAULT_CONFIG_PATH", tmp_path / "config.yml")
    clean_env.setenv("UNISRV_SESSION_FILE", str(tmp_path / "session.json"))
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield tmp_path
    root.handlers[:] = handlers
    root.setLevel(level)


class TestParser:
    """Argument parsing for the rollout and management commands."""

    def test_rollout_defaults(self):
        args = parse_cli_args(["rollout", "web", "nginx:1.27"])
        assert args.command == "rollout"
        assert args.service == "web"
        assert args.image == "nginx:1.27"
        assert args.group == "default"
        assert args.port is None
        assert args.replicas is None
        assert args.vcpus == 1
        assert args.memory == 1024
        assert args.args == []
        assert args.leave_behind is None

    def test_rollout_options_and_container_args(self):
        args = parse_cli_args(
            [
                "rollout",
                "-g", "canary",
                "-p", "8080",
                "-r", "3",
                "-m", "2G",
                "-e", "MODE=worker",
                "-e", "DEBUG=1",
                "--leave-behind", "instances",
                "web",
                "ghcr.io/acme/web:1.4",
                "--threads", "4",
            ]
        )
        assert args.group == "canary"
        assert args.port == 8080
        assert args.replicas == 3
        assert args.memory == 2048
        assert args.env == [("MODE", "worker"), ("DEBUG", "1")]
        assert args.leave_behind == "instances"
        assert args.args == ["--threads", "4"]

    def test_rollout_options_after_image(self):
        args = parse_cli_args(
            ["rollout", "web", "nginx:1.27", "--port", "8080", "--leave-behind", "targets"]
        )
        assert args.port == 8080
        assert args.leave_behind == "targets"
        assert args.args == []

    def test_options_after_image_then_container_args(self):
        args = parse_cli_args(
            ["rollout", "web", "nginx:1.27", "-p8080", "--env=MODE=worker", "sh", "-c", "echo -p"]
        )
        assert args.port == 8080
        assert args.env == [("MODE", "worker")]
        assert args.args == ["sh", "-c", "echo -p"]

    def test_double_dash_ends_options(self):
        args = parse_cli_args(["rollout", "web", "nginx:1.27", "-r", "2", "--", "--port", "9"])
        assert args.replicas == 2
        assert args.port is None
        assert args.args == ["--port", "9"]

    def test_options_on_both_sides_of_image(self):
        args = parse_cli_args(
            ["rollout", "-e", "A=1", "-g", "canary", "web", "nginx", "-e", "B=2", "-m", "2G"]
        )
        assert args.env == [("A", "1"), ("B", "2")]
        assert args.group == "canary"
        assert args.memory == 2048
        assert args.vcpus == 1
        assert args.args == []

    def test_instance_run(self):
        args = parse_cli_args(
            ["instance", "run", "nginx", "--name", "scratch", "-d", "-c", "2", "nginx", "-g"]
        )
        assert args.instance_command == "run"
        assert args.image == "nginx"
        assert args.name == "scratch"
        assert args.detach is True
        assert args.vcpus == 2
        assert args.memory == 1024
        assert args.args == ["nginx", "-g"]

    def test_login_commands(self):
        args = parse_cli_args(["login", "-u", "alice"])
        assert (args.username, args.password) == ("alice", None)
        args = parse_cli_args(["reg", "login", "ghcr.io", "-u", "alice", "--password-stdin"])
        assert args.registry_command == "login"
        assert args.password_stdin is True

    @pytest.mark.parametrize(
        "argv",
        [
            ["rollout", "-r", "0", "web", "nginx"],
            ["rollout", "-p", "70000", "web", "nginx"],
            ["rollout", "-c", "64", "web", "nginx"],
            ["rollout", "-m", "64M", "web", "nginx"],
            ["rollout", "--leave-behind", "everything", "web", "nginx"],
            ["rollout", "web", "nginx", "--replicas", "0"],
            ["instance", "run", "nginx", "--memory", "64M"],
            ["registry", "login", "ghcr.io", "-p", "pw", "--password-stdin"],
            ["login"],
            ["service", "target", "add", "web", "abc"],
        ],
    )
    def test_rejected(self, argv):
        with pytest.raises(SystemExit) as exc:
            parse_cli_args(argv)
        assert exc.value.code == 2

    def test_aliases(self):
        parser = create_parser()
        assert parser.parse_args(["instances", "ls", "-a"]).all is True
        assert parser.parse_args(["service", "info", "web"]).service == "web"
        args = parser.parse_args(["service", "target", "rm", "web", "1234"])
        assert args.target_command == "rm"


class TestLoadSettings:
    def test_flags_override_config(self, isolated):
        config = isolated / "custom.yml"
        config.write_text(yaml.safe_dump({"api_url": "https://file.example.com", "token": "a"}))
        args = create_parser().parse_args(
            ["--config", str(config), "--api-url", "https://flag.example.com/", "instance", "ls"]
        )

        settings = load_settings(args)

        assert settings.api_url == "https://flag.example.com"
        assert settings.token == "a"


class TestMain:
    """Exit codes of the entry point."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage: unisrv" in capsys.readouterr().out

    def test_success(self, isolated):
        with patch("unisrv_client.main.route_command", new=AsyncMock(return_value=0)) as route:
            assert main(["--token", "t", "rollout", "web", "nginx"]) == 0

        ctx, args = route.await_args.args
        assert ctx.settings.token == "t"
        assert ctx.output_format == "table"
        assert args.image == "nginx"

    @pytest.mark.parametrize(
        "error,code",
        [
            (ResolutionError("No service found matching 'web'", "service", "web"), 6),
            (HealthCheckError("stream closed", "abc"), 1),
        ],
    )
    def test_errors_map_to_exit_codes(self, isolated, capsys, error, code):
        with patch("unisrv_client.main.route_command", new=AsyncMock(side_effect=error)):
            assert main(["--token", "t", "rollout", "web", "nginx"]) == code
        assert str(error) in capsys.readouterr().err

    def test_missing_config_file(self, isolated, capsys):
        assert main(["--config", str(isolated / "nope.yml"), "instance", "ls"]) == 1
        assert "Error loading configuration" in capsys.readouterr().err

    def test_missing_subcommand(self, isolated, capsys):
        assert main(["--token", "t", "instance"]) == 2
        assert "No instance subcommand" in capsys.readouterr().err

    def test_missing_registry_subcommand(self, isolated, capsys):
        assert main(["registry"]) == 2
        assert "No registry subcommand" in capsys.readouterr().err

    def test_login_needs_no_stored_session(self, isolated):
        login = AsyncMock(return_value=0)
        with patch("unisrv_client.commands.auth.AuthCommands.login", new=login):
            assert main(["login", "-u", "alice", "-p", "pw"]) == 0

        ctx, args = login.await_args.args
        assert ctx.client.credentials is None
        assert args.username == "alice"
