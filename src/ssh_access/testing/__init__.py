"""
Testing utilities for ssh-access.

Provides MockSSHServer for integration testing without a real instance.
"""
from ssh_access.testing.mock_server import MockServerConfig, MockSSHServer

__all__ = ["MockSSHServer", "MockServerConfig"]
