"""SSH credential helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class SSHCredentials:
    """Connection credential for one target host.

    Secret fields are excluded from ``repr`` so a credential can never leak
    through a log line or an exception message.
    """

    username: str
    port: int = 22
    auth_method: str = "key"
    key_path: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    passphrase: Optional[str] = field(default=None, repr=False)
    timeout: int = 20

    def validate(self) -> None:
        if self.auth_method not in ("key", "password"):
            raise ValueError(f"Unsupported auth method: {self.auth_method}")
        if self.auth_method == "password" and not self.password:
            raise ValueError("Password authentication selected but no password provided")
        if self.auth_method == "key" and not self.key_path:
            raise ValueError("Key authentication selected but no key_path provided")

    def secrets(self) -> tuple:
        """Secret values that must be masked wherever commands are logged."""
        return tuple(value for value in (self.password, self.passphrase) if value)
