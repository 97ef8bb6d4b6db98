"""Session wrapper around the CM server transport."""

from __future__ import annotations

import importlib
import logging
import threading
from typing import Callable, Protocol

from cmsync.config.models import ServerSettings

from .errors import TransportError
from .models import Command, Response, WorkItem

LOGGER = logging.getLogger(__name__)


class Transport(Protocol):
    """Black-box connection to a CM server.

    Implementations own the wire protocol. ``execute`` returns the structured
    response for a command; any failure to reach the server should surface as
    ``TransportError`` or ``OSError``. Transports need not be thread-safe:
    ``APISession`` never issues two ``execute`` calls on one transport at once.
    """

    def connect(self, settings: ServerSettings) -> None: ...

    def execute(self, command: Command, *, interim: bool = False) -> Response: ...

    def disconnect(self) -> None: ...


TransportFactory = Callable[[], Transport]


class APISession:
    """An authenticated session against the CM server.

    The session is a context manager; leaving the ``with`` block terminates it
    regardless of how the block exits. Commands may be issued from several
    threads; they reach the transport one at a time.
    """

    def __init__(self, settings: ServerSettings, transport: Transport) -> None:
        self._settings = settings
        self._transport = transport
        self._connected = False
        self._lock = threading.Lock()

    @property
    def settings(self) -> ServerSettings:
        """Return the server settings the session was opened with."""
        return self._settings

    @property
    def connected(self) -> bool:
        """Return whether the session is open."""
        return self._connected

    def open(self) -> "APISession":
        """Connect the underlying transport.

        Raises:
            TransportError: If the server cannot be reached.
        """
        if self._connected:
            return self
        via = (
            f" via {self._settings.ip_host}:{self._settings.ip_port}"
            if self._settings.ip_host
            else ""
        )
        LOGGER.debug(
            "Opening CM session to %s:%s%s as %s (secure=%s)",
            self._settings.host,
            self._settings.port,
            via,
            self._settings.user,
            self._settings.secure,
        )
        try:
            self._transport.connect(self._settings)
        except OSError as exc:
            raise TransportError(f"Unable to connect to {self._settings.url}: {exc}") from exc
        self._connected = True
        return self

    def run_command(self, command: Command) -> Response:
        """Execute ``command`` and return its response.

        Raises:
            TransportError: If the session is closed, the transport fails, or the
                command exits with a non-zero status.
        """
        return self._execute(command, interim=False)

    def run_command_with_interim(self, command: Command) -> Response:
        """Execute ``command`` letting the transport stream large result sets."""
        return self._execute(command, interim=True)

    def terminate(self) -> None:
        """Close the session; calling it again is harmless."""
        if not self._connected:
            return
        self._connected = False
        try:
            self._transport.disconnect()
        except OSError as exc:
            LOGGER.warning("Error while terminating CM session: %s", exc)
        LOGGER.debug("CM session to %s terminated", self._settings.url)

    def __enter__(self) -> "APISession":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.terminate()

    def _execute(self, command: Command, *, interim: bool) -> Response:
        if not self._connected:
            raise TransportError("CM session is not open", command=command.name)
        LOGGER.debug("Executing %s", command.describe())
        try:
            with self._lock:
                response = self._transport.execute(command, interim=interim)
        except OSError as exc:
            raise TransportError(f"Transport failure: {exc}", command=command.name) from exc
        LOGGER.debug("%s returned %s", response.command, response.exit_code)
        if response.exit_code != 0:
            raise TransportError(
                response.message or "Command failed",
                command=response.command,
                exit_code=response.exit_code,
            )
        return response


def load_transport_factory(spec: str) -> TransportFactory:
    """Import a transport factory from a ``package.module:attribute`` path.

    Raises:
        TransportError: If the path is malformed or cannot be imported.
    """
    module_name, _, attribute = spec.partition(":")
    if not module_name or not attribute:
        raise TransportError(f"Transport path must look like 'package.module:factory', got {spec!r}")
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attribute)
    except (ImportError, AttributeError) as exc:
        raise TransportError(f"Unable to load transport {spec!r}: {exc}") from exc
    if not callable(factory):
        raise TransportError(f"Transport {spec!r} is not callable")
    return factory


__all__ = [
    "APISession",
    "Command",
    "Response",
    "Transport",
    "TransportError",
    "TransportFactory",
    "WorkItem",
    "load_transport_factory",
]
