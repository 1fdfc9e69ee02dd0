"""Loopback listener that hosts the bridge app on an ephemeral port."""

from __future__ import annotations

import ipaddress
import logging
import socket
import threading
import time
from types import TracebackType

import uvicorn
from fastapi import FastAPI

from sqlgate.mcp.server import MCP_PATH

logger = logging.getLogger(__name__)

_STARTUP_TIMEOUT_S = 10.0
_GRACEFUL_SHUTDOWN_S = 3.0


def _is_loopback(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


class BridgeServer:
    """Runs uvicorn in a daemon thread bound to a loopback socket.

    Started lazily: ``ensure_started`` is idempotent and ``mcp_url`` starts the
    listener on first access, so callers never see a URL for a closed port.
    """

    def __init__(self, app: FastAPI, *, host: str = "127.0.0.1", port: int = 0) -> None:
        if not _is_loopback(host):
            raise ValueError(f"bridge must bind a loopback address, got '{host}'")
        self._app = app
        self._host = host
        self._requested_port = port
        self._lock = threading.Lock()
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @property
    def started(self) -> bool:
        return self._server is not None and self._server.started

    @property
    def port(self) -> int:
        self.ensure_started()
        if self._socket is None:
            raise RuntimeError("agent MCP bridge is not running")
        return int(self._socket.getsockname()[1])

    @property
    def base_url(self) -> str:
        host = f"[{self._host}]" if ":" in self._host else self._host
        return f"http://{host}:{self.port}"

    @property
    def mcp_url(self) -> str:
        return f"{self.base_url}{MCP_PATH}"

    def ensure_started(self) -> None:
        with self._lock:
            if self._server is not None:
                return

            family = socket.AF_INET6 if ":" in self._host else socket.AF_INET
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._host, self._requested_port))

            config = uvicorn.Config(
                self._app,
                log_level="info",
                access_log=False,
                log_config=None,
                lifespan="on",
                timeout_graceful_shutdown=_GRACEFUL_SHUTDOWN_S,
            )
            server = uvicorn.Server(config)
            thread = threading.Thread(
                target=server.run,
                kwargs={"sockets": [sock]},
                name="sqlgate-bridge",
                daemon=True,
            )
            thread.start()

            deadline = time.monotonic() + _STARTUP_TIMEOUT_S
            while not server.started:
                if not thread.is_alive() or time.monotonic() >= deadline:
                    server.should_exit = True
                    sock.close()
                    raise RuntimeError("agent MCP bridge failed to start")
                time.sleep(0.01)

            self._socket = sock
            self._server = server
            self._thread = thread

        logger.info("agent MCP bridge listening on %s", self.mcp_url)

    def stop(self, timeout: float = 5.0) -> None:
        """Revoke every run, then shut the listener down.

        Revoking first rejects approvals that suspended ``tools/call`` requests
        are waiting on, so those requests can answer before uvicorn drains.
        """
        with self._lock:
            server, thread, sock = self._server, self._thread, self._socket
            self._server = self._thread = self._socket = None

        if server is None:
            return
        self._revoke_runs()
        server.should_exit = True
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("agent MCP bridge did not stop within %.1fs", timeout)
        if sock is not None:
            sock.close()
        logger.info("agent MCP bridge stopped")

    def _revoke_runs(self) -> None:
        lifecycle = getattr(self._app.state, "lifecycle", None)
        if lifecycle is not None:
            lifecycle.cancel_all_runs()
        bridge = getattr(self._app.state, "bridge", None)
        if bridge is not None:
            revoked = bridge.revoke_all_runs()
            if revoked:
                logger.info("Revoked %d agent run(s) on shutdown", revoked)

    def __enter__(self) -> BridgeServer:
        self.ensure_started()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()
