"""Remote session errors."""

from __future__ import annotations


class TransportError(Exception):
    """Raised when the CM server is unreachable or rejects a command.

    Attributes:
        command: Name of the command that failed, if any.
        exit_code: Exit status reported by the server, if any.
    """

    def __init__(self, message: str, *, command: str | None = None, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code

    def __str__(self) -> str:
        message = super().__str__()
        if self.command is None:
            return message
        if self.exit_code is None:
            return f"{message} ({self.command})"
        return f"{message} ({self.command} returned exit code {self.exit_code})"
