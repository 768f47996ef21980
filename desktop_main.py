"""Desktop launcher for the production test dashboard using pywebview."""

from __future__ import annotations

import os
import socket
import threading
import time
from contextlib import suppress

from dotenv import load_dotenv
from werkzeug.serving import make_server

import webview

from dashboard import create_app

WINDOW_TITLE = "Production Test Dashboard"
WINDOW_SIZE = (1300, 800)
LOOPBACK = "127.0.0.1"


class LocalServer:
    """Serves the Flask app on a loopback port from a daemon thread."""

    def __init__(self, app, host: str = LOOPBACK) -> None:
        self.host = host
        self.port = self._free_port(host)
        # One request at a time: every query shares the same context.
        self._server = make_server(host, self.port, app, threaded=False)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._stopped = threading.Event()

    @staticmethod
    def _free_port(host: str) -> int:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            probe.bind((host, 0))
            return probe.getsockname()[1]

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def start(self, timeout: float = 10.0) -> None:
        self._thread.start()
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            try:
                with socket.create_connection((self.host, self.port), timeout=0.5):
                    return
            except OSError:
                time.sleep(0.1)
        self.stop()
        raise RuntimeError(f"Dashboard server did not answer within {timeout} seconds")

    def stop(self) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()
        self._server.shutdown()
        with suppress(OSError):
            self._server.server_close()
        if self._thread.is_alive():
            self._thread.join(timeout=2.0)


def run_desktop() -> None:
    load_dotenv()
    app = create_app()

    if not app.config["DASHBOARD_CONTEXT"].connection_config.is_configured:
        app.logger.warning("Database not configured; open the settings page after logging in.")

    server = LocalServer(app)
    server.start()

    width, height = WINDOW_SIZE
    window = webview.create_window(WINDOW_TITLE, server.url, width=width, height=height)
    window.events.closed += server.stop

    try:
        webview.start(debug=os.environ.get("DASHBOARD_DEBUG") == "1")
    finally:
        server.stop()


if __name__ == "__main__":
    run_desktop()
