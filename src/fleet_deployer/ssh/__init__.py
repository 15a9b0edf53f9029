"""SSH transport for remote targets."""

from .credentials import SSHCredentials
from .session import SSHConnectionError, SSHSession

__all__ = [
    "SSHCredentials",
    "SSHConnectionError",
    "SSHSession",
]
