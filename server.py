# SPDX-License-Identifier: LicenseRef-TVArgenta-NC-Attribution-Consult-First
# Proyecto: MovieLocal — Servidor de medios
# Autor: Ricardo Sappia contact:rsflightronics@gmail.com
# © 2025 Ricardo Sappia. Todos los derechos reservados.
# Licencia: No comercial, atribución y consulta previa. Se distribuye TAL CUAL, sin garantías.
# Ver LICENSE para términos completos.

"""
MovieLocal media server.

Wires the catalog, stream transport, channel scheduler and client registry
behind one Flask app, and runs it on a restartable threaded werkzeug server.

Usage:
    python3 server.py

Configuration comes from environment variables (see settings.py).
"""

import errno
import logging
import signal
import socket
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.serving import make_server

import settings
from api import FilesystemPathConverter, api
from channel_streamer import ChannelStreamer
from clients import ConnectedClientsManager
from errors import ChannelResolutionEmpty, PortInUseError, ServerBindError
from storage import ChannelDatabase, JsonStore, MemoryStore, ProgressDatabase
from streaming import is_within_roots

logger = logging.getLogger("movielocal")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "3600",
}


# --- LOGGING ---------------------------------------------------------------

def setup_logging(log_dir=None, level=logging.INFO) -> logging.Logger:
    """Rotating file under log_dir plus stdout. Safe to call more than once."""
    logging.getLogger("werkzeug").setLevel(logging.ERROR)  # solo errores visibles
    logger.setLevel(level)

    if not logger.handlers:
        fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )
        log_dir = Path(log_dir or settings.LOG_DIR)
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            fh = RotatingFileHandler(str(log_dir / "movielocal.log"), maxBytes=3_000_000, backupCount=5)
            fh.setFormatter(fmt)
            logger.addHandler(fh)
        except OSError as e:
            print(f"[LOG] File logging disabled ({log_dir}): {e}")

        sh = logging.StreamHandler()
        sh.setFormatter(fmt)
        logger.addHandler(sh)
    return logger
# --------------------------------------------------------------------------


def detect_lan_ip() -> str:
    """Best-effort LAN address of this machine; 'localhost' when offline."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # UDP connect sends nothing, it only picks the outgoing interface
        s.connect(("10.255.255.255", 1))
        ip = s.getsockname()[0]
    except OSError:
        ip = "localhost"
    finally:
        s.close()
    return ip if ip and not ip.startswith("0.") else "localhost"


def default_config() -> dict:
    return {
        "MOVIES_DIR": settings.MOVIES_DIR,
        "SERIES_DIR": settings.SERIES_DIR,
        "CHANNELS_DIR": settings.CHANNELS_DIR,
        "DATA_DIR": settings.DATA_DIR,
        "HOST": settings.HOST,
        "PORT": settings.PORT,
        "SERVER_IP": settings.SERVER_IP,
        "API_VERSION": settings.API_VERSION,
        "TICK_INTERVAL_SEC": settings.TICK_INTERVAL_SEC,
        "CLIENT_STALE_SEC": settings.CLIENT_STALE_SEC,
        "STRICT_STREAM_PATHS": settings.STRICT_STREAM_PATHS,
        # False keeps channels/progress/clients in memory only
        "PERSIST": True,
    }


class MediaServices:
    """Everything the routes need, shared by every request thread."""

    def __init__(self, config: dict, streamer: Optional[ChannelStreamer] = None,
                 clients: Optional[ConnectedClientsManager] = None):
        self.config = config
        data_dir = Path(config["DATA_DIR"])

        if config.get("PERSIST", True):
            channels_store = JsonStore(data_dir / settings.CHANNELS_FILE.name)
            progress_store = JsonStore(data_dir / settings.PROGRESS_FILE.name)
            clients_store = JsonStore(data_dir / settings.CLIENTS_FILE.name)
            self.metadata_store = JsonStore(data_dir / settings.METADATA_FILE.name)
        else:
            channels_store = MemoryStore()
            progress_store = MemoryStore()
            clients_store = None
            self.metadata_store = MemoryStore()

        self.channels = ChannelDatabase(channels_store)
        self.progress = ProgressDatabase(progress_store)
        self.streamer = streamer or ChannelStreamer(tick_interval=config["TICK_INTERVAL_SEC"])
        self.clients = clients or ConnectedClientsManager(
            stale_after_sec=config["CLIENT_STALE_SEC"], store=clients_store
        )
        self._detected_ip = None

    def server_ip(self) -> str:
        if self.config.get("SERVER_IP"):
            return self.config["SERVER_IP"]
        if self._detected_ip is None:
            self._detected_ip = detect_lan_ip()
        return self._detected_ip

    def base_url(self) -> str:
        return f"http://{self.server_ip()}:{self.config['PORT']}"

    def load_metadata(self) -> dict:
        return self.metadata_store.snapshot()

    def library_roots(self) -> list:
        return [self.config["MOVIES_DIR"], self.config["SERIES_DIR"],
                self.config["CHANNELS_DIR"], self.config["DATA_DIR"]]

    def allowed_roots(self):
        """
        What a stream path may resolve to, or None when containment is off.

        The library roots plus the exact files queued on running channels.
        Channel folders are never roots themselves.
        """
        if not self.config.get("STRICT_STREAM_PATHS", True):
            return None
        return self.library_roots() + self.streamer.playlist_paths()

    def paths_outside_library(self, paths) -> list:
        if not self.config.get("STRICT_STREAM_PATHS", True):
            return []
        roots = self.library_roots()
        return [p for p in paths if p and not is_within_roots(p, roots)]

    def resume_active_channels(self) -> int:
        """Restart channels that were running when the server last stopped."""
        started = 0
        for channel in self.channels.get_active_channels():
            try:
                if self.streamer.start_channel(channel):
                    started += 1
            except ChannelResolutionEmpty:
                self.channels.set_active(channel["id"], False)
        if started:
            logger.info(f"[SERVER] Resumed {started} channel(s)")
        return started

    def shutdown(self) -> None:
        self.streamer.shutdown()


def create_app(overrides: Optional[dict] = None, streamer: Optional[ChannelStreamer] = None,
               clients: Optional[ConnectedClientsManager] = None) -> Flask:
    app = Flask(__name__)
    app.config.update(default_config())
    if overrides:
        app.config.update(overrides)

    # stream URLs carry absolute paths: /api/stream//home/...
    app.url_map.merge_slashes = False
    app.url_map.converters["fspath"] = FilesystemPathConverter
    app.extensions["movielocal"] = MediaServices(app.config, streamer=streamer, clients=clients)
    app.register_blueprint(api)

    @app.before_request
    def _log_and_preflight():
        logger.debug(f"[HTTP] {request.method} {request.path} ip={request.remote_addr}")
        if request.method == "OPTIONS":
            return Response("", status=200, mimetype="text/plain")

    @app.after_request
    def _add_cors_headers(response):
        for name, value in CORS_HEADERS.items():
            response.headers[name] = value
        return response

    @app.errorhandler(HTTPException)
    def _http_error(e):
        return Response(e.name, status=e.code, mimetype="text/plain")

    @app.errorhandler(Exception)
    def _unexpected_error(e):
        logger.error(f"[HTTP] {request.method} {request.path} failed: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500

    return app


class MovieServer:
    """
    Restartable HTTP server.

    start() binds the socket itself so a busy port surfaces as PortInUseError
    (any other bind failure as ServerBindError) with the server left stopped.
    stop() stops every channel and releases the socket, after which start()
    may bind the same port again.
    """

    def __init__(self, overrides: Optional[dict] = None, app: Optional[Flask] = None):
        self.app = app or create_app(overrides)
        self.services: MediaServices = self.app.extensions["movielocal"]
        self._lock = threading.Lock()
        self._httpd = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._httpd is not None

    @property
    def host(self) -> str:
        return self.app.config["HOST"]

    @property
    def port(self) -> int:
        return self.app.config["PORT"]

    def _bind(self, host: str, port: int) -> socket.socket:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(128)
        except OSError as e:
            sock.close()
            if e.errno == errno.EADDRINUSE:
                raise PortInUseError(host, port, f"({e.strerror or e})") from e
            raise ServerBindError(host, port, f"({e.strerror or e})") from e
        return sock

    def start(self) -> None:
        with self._lock:
            if self._httpd is not None:
                return

            sock = self._bind(self.host, self.port)
            try:
                httpd = make_server(self.host, sock.getsockname()[1], self.app,
                                    threaded=True, fd=sock.fileno())
            finally:
                # make_server dups the descriptor
                sock.close()

            # port 0 -> real port, so advertised URLs are right
            self.app.config["PORT"] = httpd.server_address[1]
            self._httpd = httpd
            self._thread = threading.Thread(target=httpd.serve_forever, name="movielocal-http", daemon=True)
            self._thread.start()

        logger.info(f"[SERVER] Listening on {self.host}:{self.port}")
        logger.info(f"[SERVER] Accessible at {self.services.base_url()}")
        self.services.resume_active_channels()

    def stop(self) -> None:
        with self._lock:
            httpd, self._httpd = self._httpd, None
            thread, self._thread = self._thread, None

        self.services.shutdown()
        if httpd is None:
            return
        httpd.shutdown()
        httpd.server_close()
        if thread is not None:
            thread.join(timeout=5)
        logger.info("[SERVER] Stopped")


def main():
    """Entry point."""
    setup_logging()
    server = MovieServer()
    stop_requested = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"[SERVER] Signal {signum} received, shutting down")
        stop_requested.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        server.start()
    except ServerBindError as e:
        logger.error(f"[SERVER] Could not start: {e}")
        return 1

    stop_requested.wait()
    server.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
