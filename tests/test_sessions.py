"""
Tests for session selection: destinations, quoting and handler choice.
"""
from __future__ import annotations

import shlex

import pytest

from ssh_access.commands import Commands
from ssh_access.errors import ConfigurationError, InvalidDestination
from ssh_access.sessions import (
    Destination,
    SessionOptions,
    new_session_handler,
    parse_destination,
    sh_join,
    sh_quote,
)
from ssh_access.shell import Shell
from ssh_access.subsystem import Subsystem


class TestParseDestination:
    """Tests for parse_destination."""

    @pytest.mark.parametrize("text,expected", [
        ("alice@myhost", Destination(user="alice", instance="myhost")),
        ("ssh://bob@myhost:2222", Destination(user="bob", instance="myhost", port=2222)),
        ("myhost", Destination(user=None, instance="myhost")),
    ])
    def test_documented_forms(self, text: str, expected: Destination) -> None:
        assert parse_destination(text) == expected

    def test_instance_only(self) -> None:
        assert parse_destination("web-1") == Destination(user=None, instance="web-1")

    def test_user_and_instance(self) -> None:
        assert parse_destination("ubuntu@web-1") == Destination(user="ubuntu", instance="web-1")

    def test_splits_at_first_at(self) -> None:
        assert parse_destination("a@b@c") == Destination(user="a", instance="b@c")

    def test_plain_form_has_no_port(self) -> None:
        """A colon in the plain form is part of the instance name."""
        assert parse_destination("web-1:2222") == Destination(user=None, instance="web-1:2222")

    def test_empty_instance(self) -> None:
        with pytest.raises(InvalidDestination):
            parse_destination("ubuntu@")

    def test_uri(self) -> None:
        assert parse_destination("ssh://ubuntu@web-1:2222") == Destination(
            user="ubuntu", instance="web-1", port=2222
        )

    def test_uri_without_user_or_port(self) -> None:
        assert parse_destination("ssh://web-1") == Destination(user=None, instance="web-1")

    def test_uri_keeps_case(self) -> None:
        assert parse_destination("ssh://Web-Server").instance == "Web-Server"

    def test_uri_decodes_user(self) -> None:
        assert parse_destination("ssh://first%2Elast@web").user == "first.last"

    def test_uri_trailing_slash(self) -> None:
        assert parse_destination("ssh://web-1/").instance == "web-1"

    def test_uri_bad_port(self) -> None:
        with pytest.raises(InvalidDestination) as exc_info:
            parse_destination("ssh://web-1:ssh")
        assert exc_info.value.destination == "ssh://web-1:ssh"

    def test_uri_port_zero(self) -> None:
        with pytest.raises(InvalidDestination):
            parse_destination("ssh://web-1:0")

    def test_uri_path_rejected(self) -> None:
        with pytest.raises(InvalidDestination):
            parse_destination("ssh://web-1/home")

    def test_uri_empty_host(self) -> None:
        with pytest.raises(InvalidDestination):
            parse_destination("ssh://ubuntu@")


class TestQuoting:
    """Tests for sh_quote and sh_join."""

    @pytest.mark.parametrize("arg,expected", [
        ("ls", "ls"),
        ("/var/log/syslog", "/var/log/syslog"),
        ("a=b,c:d@e%f+g", "a=b,c:d@e%f+g"),
        ("", "''"),
        ("hello world", "'hello world'"),
        ("it's", "'it'\"'\"'s'"),
        ("$HOME", "'$HOME'"),
        ("a;b", "'a;b'"),
        ("$'b", "'$'\"'\"'b'"),
        ("such/safe/123", "such/safe/123"),
    ])
    def test_sh_quote(self, arg: str, expected: str) -> None:
        assert sh_quote(arg) == expected

    def test_sh_join(self) -> None:
        assert sh_join(["ls", "-la", "my dir"]) == "ls -la 'my dir'"

    def test_sh_join_empty(self) -> None:
        assert sh_join([]) == ""

    @pytest.mark.parametrize("args", [
        ["echo", "hello world"],
        ["printf", "%s\\n", "it's", "\"quoted\""],
        ["grep", "-e", "a|b", "*.txt"],
        ["touch", "", "\t\n"],
    ])
    def test_shell_reads_back_same_arguments(self, args: list[str]) -> None:
        assert shlex.split(sh_join(args)) == args


class TestNewSessionHandler:
    """Tests for new_session_handler."""

    def test_no_arguments(self) -> None:
        with pytest.raises(ConfigurationError, match="destination is not specified"):
            new_session_handler(SessionOptions(), [])

    def test_shell_without_command(self) -> None:
        handler, destination = new_session_handler(SessionOptions(), ["web-1"])

        assert handler == Shell(command="")
        assert destination == Destination(user=None, instance="web-1", port=22)

    def test_single_command_joined(self) -> None:
        handler, _ = new_session_handler(SessionOptions(), ["web-1", "ls", "-la", "my dir"])
        assert handler == Commands(commands=("ls -la 'my dir'",))

    def test_force_pty_runs_shell(self) -> None:
        opts = SessionOptions(force_pseudo_terminal=True)
        handler, _ = new_session_handler(opts, ["web-1", "top"])
        assert handler == Shell(command="top")

    def test_batch_commands(self) -> None:
        opts = SessionOptions(batch_commands=True)
        handler, _ = new_session_handler(opts, ["web-1", "uptime", "df -h"])
        assert handler == Commands(commands=("uptime", "df -h"))

    def test_batch_without_commands(self) -> None:
        opts = SessionOptions(batch_commands=True)
        handler, _ = new_session_handler(opts, ["web-1"])
        assert handler == Commands(commands=())

    def test_subsystem(self) -> None:
        opts = SessionOptions(with_subsystem=True)
        handler, _ = new_session_handler(opts, ["web-1", "sftp"])
        assert handler == Subsystem(command="sftp")

    @pytest.mark.parametrize("rest", [[], ["sftp", "extra"]])
    def test_subsystem_needs_exactly_one_name(self, rest: list[str]) -> None:
        opts = SessionOptions(with_subsystem=True)
        with pytest.raises(ConfigurationError, match="exactly one subsystem"):
            new_session_handler(opts, ["web-1", *rest])

    def test_subsystem_and_batch_conflict(self) -> None:
        opts = SessionOptions(with_subsystem=True, batch_commands=True)
        with pytest.raises(ConfigurationError, match="cannot be used together"):
            new_session_handler(opts, ["web-1", "sftp"])

    def test_login_user_overrides(self) -> None:
        opts = SessionOptions(login_user="admin")
        _, destination = new_session_handler(opts, ["ubuntu@web-1"])
        assert destination.user == "admin"

    def test_port_option_overrides_uri(self) -> None:
        opts = SessionOptions(port=2200)
        _, destination = new_session_handler(opts, ["ssh://web-1:2222"])
        assert destination.port == 2200

    def test_uri_port_used(self) -> None:
        _, destination = new_session_handler(SessionOptions(), ["ssh://web-1:2222"])
        assert destination.port == 2222

    def test_invalid_destination(self) -> None:
        with pytest.raises(InvalidDestination):
            new_session_handler(SessionOptions(), ["ssh://web-1:bad"])

    def test_kinds(self) -> None:
        assert Shell.kind == "shell"
        assert Commands.kind == "commands"
        assert Subsystem.kind == "subsystem"


class TestSessionOptions:
    """Tests for SessionOptions."""

    def test_invalid_port(self) -> None:
        with pytest.raises(ConfigurationError, match="port"):
            SessionOptions(port=70000)
