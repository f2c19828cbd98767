"""
Input validation for values that come from the command line.

Login users, instance names and ports end up in API requests and in the
SSH handshake; reject shell metacharacters, control characters and
out-of-range values before anything is sent.
"""

import re
from typing import Final

MAX_USERNAME_LENGTH: Final[int] = 32
MAX_INSTANCE_NAME_LENGTH: Final[int] = 255

# Characters that must never appear in a user or instance name
DANGEROUS_CHARS: Final[frozenset[str]] = frozenset(
    "\x00"  # null byte
    "\n\r"  # newlines
    "`$(){}[]|;&<>\\'\""  # shell metacharacters
    "\t"  # tab
)

# POSIX-style: letter or underscore, then alphanumerics, underscore, hyphen
_USERNAME_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[a-zA-Z_][a-zA-Z0-9_-]*$"
)

# Lightsail resource names: alphanumeric first, then alphanumerics,
# hyphens, underscores and periods
_INSTANCE_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$"
)


def _check_dangerous_chars(value: str, field_name: str) -> None:
    """
    Raise ValueError if ``value`` contains a forbidden character.
    """
    assert isinstance(value, str), \
        f"Precondition: value must be str, got {type(value).__name__}"
    assert isinstance(field_name, str) and field_name, \
        f"Precondition: field_name must be non-empty str, got {field_name!r}"

    for char in value:
        if char in DANGEROUS_CHARS:
            if char == "\x00":
                char_desc = "null byte"
            elif char == "\n":
                char_desc = "newline"
            elif char == "\r":
                char_desc = "carriage return"
            elif char == "\t":
                char_desc = "tab"
            else:
                char_desc = repr(char)
            raise ValueError(
                f"{field_name} contains forbidden character: {char_desc}"
            )


def validate_username(username: str) -> str:
    """
    Validate a login user name per POSIX conventions.

    Returns:
        The username unchanged

    Raises:
        ValueError: If the username is invalid, with a clear message
    """
    if not isinstance(username, str):
        raise ValueError(f"username must be a string, got {type(username).__name__}")

    if not username:
        raise ValueError("username must not be empty")

    _check_dangerous_chars(username, "username")

    if len(username) > MAX_USERNAME_LENGTH:
        raise ValueError(
            f"username exceeds maximum length of {MAX_USERNAME_LENGTH} characters "
            f"(got {len(username)})"
        )

    if not _USERNAME_PATTERN.match(username):
        first_char = username[0]
        if not (first_char.isalpha() or first_char == "_"):
            raise ValueError(
                f"username must start with a letter or underscore, "
                f"got '{first_char}'"
            )
        for char in username:
            if not (char.isalnum() or char in "_-"):
                raise ValueError(
                    f"username contains invalid character: {repr(char)}"
                )
        raise ValueError(
            "username contains invalid characters "
            "(only alphanumeric, underscore, and hyphen allowed)"
        )

    return username


def validate_instance_name(name: str) -> str:
    """
    Validate a Lightsail instance name.

    Returns:
        The name unchanged

    Raises:
        ValueError: If the name is invalid
    """
    if not isinstance(name, str):
        raise ValueError(f"instance name must be a string, got {type(name).__name__}")

    if not name:
        raise ValueError("instance name must not be empty")

    _check_dangerous_chars(name, "instance name")

    if len(name) > MAX_INSTANCE_NAME_LENGTH:
        raise ValueError(
            f"instance name exceeds maximum length of {MAX_INSTANCE_NAME_LENGTH} "
            f"characters (got {len(name)})"
        )

    if not _INSTANCE_NAME_PATTERN.match(name):
        raise ValueError(
            f"instance name {name!r} must start with a letter or digit and "
            "contain only letters, digits, '.', '_' and '-'"
        )

    return name


def validate_port(port: int) -> int:
    """
    Validate a TCP port number.

    Returns:
        The port number unchanged

    Raises:
        ValueError: If the port is invalid, with a clear message
    """
    # bool is a subclass of int
    if isinstance(port, bool):
        raise ValueError("port must be an integer, got bool")

    if not isinstance(port, int):
        raise ValueError(f"port must be an integer, got {type(port).__name__}")

    if port < 1:
        raise ValueError(f"port must be at least 1, got {port}")

    if port > 65535:
        raise ValueError(f"port must be at most 65535, got {port}")

    return port


def parse_port(value: str) -> int:
    """
    Parse a decimal port string such as the value of ``-p``.

    Raises:
        ValueError: If the value is not a decimal number in 1-65535
    """
    if not value.isascii() or not value.isdigit():
        raise ValueError(f"invalid port {value!r}: must be a decimal number")
    return validate_port(int(value))
