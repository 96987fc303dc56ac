"""HTTP delivery for the video library.

Serves thumbnails and byte ranges of the source videos, plus small JSON
views over the index. Uses stdlib http.server + socketserver only.

Endpoints:
- /api/thumb?path=   cached JPEG thumbnail
- /api/stream?path=  video bytes, honoring ``Range: bytes=start-end``
- /api/videos?folder=&sort=&order=, /api/video?path=, /api/folders?folder=

A client dropping the connection mid-stream (seeking, closing the tab) is
routine for video players; it ends the read loop quietly and is logged at
DEBUG only.
"""
from __future__ import annotations

import json
import logging
import re
import socketserver
import sys
import threading
from http.server import BaseHTTPRequestHandler
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

from vidx.domain.errors import InvalidPath, NotFound, RangeUnsatisfiable

if TYPE_CHECKING:
    from vidx.pipeline.library import VideoLibrary

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8765
DEFAULT_CHUNK_SIZE = 64 * 1024

VIDEO_MIME = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".avi": "video/x-msvideo",
}

_RANGE_RE = re.compile(r"^\s*bytes=(\d+)-(\d*)\s*$")
_CLIENT_GONE = (BrokenPipeError, ConnectionResetError, ConnectionAbortedError)


# ---------------------------------------------------------------------------
# Range helpers (pure functions)
# ---------------------------------------------------------------------------

def parse_range_header(header: str, size: int) -> Tuple[int, int]:
    """Parse a single ``bytes=start-end`` range into inclusive offsets.

    ``end`` defaults to the last byte and is clamped to it. Suffix ranges
    (``bytes=-N``), multi-range requests, ``start >= size`` and
    ``end < start`` raise RangeUnsatisfiable.
    """
    match = _RANGE_RE.match(header or "")
    if not match:
        raise RangeUnsatisfiable(size, header)
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else size - 1
    if start >= size or end < start:
        raise RangeUnsatisfiable(size, header)
    return start, min(end, size - 1)


def copy_range(src: BinaryIO, dst, start: int, length: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> bool:
    """Copy ``length`` bytes from ``src`` at ``start`` into ``dst``.

    Returns False when the client went away mid-copy; True otherwise.
    """
    src.seek(start)
    remaining = length
    try:
        while remaining > 0:
            data = src.read(min(chunk_size, remaining))
            if not data:
                break
            dst.write(data)
            remaining -= len(data)
    except _CLIENT_GONE:
        return False
    if remaining > 0:
        logger.warning("Source shrank while streaming: %d bytes short", remaining)
    return True


# ---------------------------------------------------------------------------
# HTTP server
# ---------------------------------------------------------------------------

class VideoRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the video library.

    ``library`` and the tuning attributes are bound per server by
    VideoWebServer, which subclasses this handler.
    """

    protocol_version = "HTTP/1.1"

    library: "VideoLibrary"
    thumb_cache_max_age: int = 3600
    chunk_size: int = DEFAULT_CHUNK_SIZE
    _headers_sent = False

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        """Route the access log through logging instead of stderr."""
        logger.debug("%s - %s", self.address_string(), format % args)

    # -- response helpers ---------------------------------------------------

    def _send_text(self, body: str, status: int, headers: Optional[Dict[str, str]] = None) -> None:
        encoded = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        for key, value in (headers or {}).items():
            self.send_header(key, value)
        self.end_headers()
        self.wfile.write(encoded)

    def _send_json(self, payload: object, status: int = 200) -> None:
        encoded = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        self.wfile.write(encoded)

    def _send_file(self, path: Path, status: int, headers: Dict[str, str], start: int, length: int) -> None:
        # Open before sending headers so a vanished file still yields a 404
        with open(path, "rb") as src:
            self.send_response(status)
            for key, value in headers.items():
                self.send_header(key, value)
            self.send_header("Content-Length", str(length))
            self.end_headers()
            self._headers_sent = True
            if not copy_range(src, self.wfile, start, length, self.chunk_size):
                self.close_connection = True
                logger.debug("Client disconnected while streaming %s", path.name)

    def _send_error_for(self, exc: Exception, route: str) -> None:
        if isinstance(exc, InvalidPath):
            self._send_text("Invalid path", 400)
        elif isinstance(exc, (NotFound, FileNotFoundError)):
            self._send_text("Not found", 404)
        elif isinstance(exc, RangeUnsatisfiable):
            self.send_response(416)
            self.send_header("Content-Range", f"bytes */{exc.size}")
            self.send_header("Content-Length", "0")
            self.end_headers()
        elif isinstance(exc, ValueError):
            self._send_text(f"Bad request: {exc}", 400)
        else:
            logger.exception("Request failed for %s", route)
            self._send_text(f"Internal error: {exc}", 500)

    # -- routing --------------------------------------------------------------

    def do_GET(self) -> None:
        parts = urlsplit(self.path)
        params = parse_qs(parts.query, keep_blank_values=True)
        route = parts.path
        self._headers_sent = False
        try:
            if route == "/api/thumb":
                self._handle_thumb(params)
            elif route == "/api/stream":
                self._handle_stream(params)
            elif route == "/api/videos":
                self._handle_videos(params)
            elif route == "/api/video":
                self._handle_video(params)
            elif route == "/api/folders":
                self._handle_folders(params)
            else:
                self._send_text("Not found", 404)
        except _CLIENT_GONE:
            self.close_connection = True
            logger.debug("Client disconnected during %s", route)
        except Exception as exc:
            if self._headers_sent:
                # Status line already went out; the body is truncated
                self.close_connection = True
                logger.exception("Request failed mid-body for %s", route)
                return
            try:
                self._send_error_for(exc, route)
            except _CLIENT_GONE:
                self.close_connection = True

    @staticmethod
    def _param(params: Dict[str, list], name: str, default: Optional[str] = None) -> Optional[str]:
        values = params.get(name)
        if not values:
            return default
        return values[0]

    def _required_path(self, params: Dict[str, list]) -> Optional[str]:
        rel_path = self._param(params, "path")
        if not rel_path:
            self._send_text("Missing path", 400)
            return None
        return rel_path

    # -- handlers -----------------------------------------------------------

    def _handle_thumb(self, params: Dict[str, list]) -> None:
        rel_path = self._required_path(params)
        if rel_path is None:
            return
        self.library.resolve(rel_path)
        thumb_path = self.library.get_thumb_path(rel_path)
        if thumb_path is None or not thumb_path.is_file():
            raise NotFound(f"No thumbnail for {rel_path!r}")
        size = thumb_path.stat().st_size
        self._send_file(thumb_path, 200, {
            "Content-Type": "image/jpeg",
            "Cache-Control": f"public, max-age={self.thumb_cache_max_age}",
        }, 0, size)

    def _handle_stream(self, params: Dict[str, list]) -> None:
        rel_path = self._required_path(params)
        if rel_path is None:
            return
        abs_path = self.library.resolve_video_path(rel_path)
        size = abs_path.stat().st_size
        content_type = VIDEO_MIME.get(abs_path.suffix.lower(), "video/mp4")
        range_header = self.headers.get("Range")

        if range_header:
            start, end = parse_range_header(range_header, size)
            self._send_file(abs_path, 206, {
                "Content-Type": content_type,
                "Accept-Ranges": "bytes",
                "Content-Range": f"bytes {start}-{end}/{size}",
            }, start, end - start + 1)
            return

        self._send_file(abs_path, 200, {
            "Content-Type": content_type,
            "Accept-Ranges": "bytes",
        }, 0, size)

    def _handle_videos(self, params: Dict[str, list]) -> None:
        folder = self._param(params, "folder", "") or ""
        sort = self._param(params, "sort", "createdAt") or "createdAt"
        order = self._param(params, "order", "desc") or "desc"
        records = self.library.list_videos(folder, sort, order)
        self._send_json([record.model_dump(by_alias=True) for record in records])

    def _handle_video(self, params: Dict[str, list]) -> None:
        rel_path = self._required_path(params)
        if rel_path is None:
            return
        record = self.library.get_video(rel_path)
        if record is None:
            raise NotFound(f"No record for {rel_path!r}")
        self._send_json(record.model_dump(by_alias=True))

    def _handle_folders(self, params: Dict[str, list]) -> None:
        folder = self._param(params, "folder", "") or ""
        self._send_json(self.library.list_folders(folder))


class _ThreadingHTTPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """Thread-per-request HTTP server with address reuse and daemon threads."""

    allow_reuse_address = True
    daemon_threads = True  # request threads die when main thread exits

    def handle_error(self, request, client_address) -> None:
        exc = sys.exc_info()[1]
        if isinstance(exc, _CLIENT_GONE):
            logger.debug("Client %s went away: %s", client_address, exc)
            return
        logger.exception("Unhandled error serving %s", client_address)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class VideoWebServer:
    """Video and thumbnail server.

    Usage::

        server = VideoWebServer(library, port=8765)
        server.serve_forever()   # blocking (CLI)
        # or
        server.start()           # daemon thread (tests, embedding)
        server.stop()
    """

    def __init__(
        self,
        library: "VideoLibrary",
        port: int = DEFAULT_PORT,
        host: str = "127.0.0.1",
        thumb_cache_max_age: int = 3600,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.library = library
        self.port = port
        self.host = host
        self.handler_class = type("BoundVideoRequestHandler", (VideoRequestHandler,), {
            "library": library,
            "thumb_cache_max_age": thumb_cache_max_age,
            "chunk_size": chunk_size,
        })
        self._server: Optional[_ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); differs from the requested port when it was 0."""
        if self._server is None:
            return self.host, self.port
        host, port = self._server.server_address[:2]
        return host, port

    def _bind(self) -> _ThreadingHTTPServer:
        if self._server is None:
            self._server = _ThreadingHTTPServer((self.host, self.port), self.handler_class)
            display_host = "localhost" if self.host in ("0.0.0.0", "::") else self.host
            logger.info("Video server: http://%s:%d/", display_host, self.address[1])
        return self._server

    def start(self) -> None:
        """Start the server in a daemon background thread."""
        server = self._bind()
        self._thread = threading.Thread(
            target=server.serve_forever,
            name="vidx-web-server",
            daemon=True,
        )
        self._thread.start()

    def serve_forever(self) -> None:
        """Serve in the calling thread until stop() or KeyboardInterrupt."""
        server = self._bind()
        try:
            server.serve_forever()
        finally:
            server.server_close()
            self._server = None

    def stop(self) -> None:
        """Gracefully stop the web server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
