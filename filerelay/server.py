"""HTTP server that provides file download, multi-file download and upload."""

from __future__ import annotations

import argparse
import logging
import os
import time
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import BinaryIO, Iterable, Iterator, Optional, Union

from .hasher import calculate_sha256
from .protocol import FileSegmentHeader, base_name, parse_query_parameter, progress_bar

log = logging.getLogger(__name__)

RATE_LIMIT_BYTES_PER_SEC = 900 * 1024
ENABLE_LIMIT = True
CHUNK_SIZE = 64 * 1024
UPLOAD_READ_SIZE = 1024 * 1024

PathLike = Union[str, "os.PathLike[str]"]


class UploadError(Exception):
    """An uploaded file failed its integrity check."""


class RateLimiter:
    """Delays a sender whose measured rate exceeds a byte-per-second limit."""

    def __init__(self, bytes_per_sec: int, enabled: bool) -> None:
        if bytes_per_sec <= 0:
            raise ValueError("bytes_per_sec must be positive")
        self.bytes_per_sec = bytes_per_sec
        self.enabled = enabled
        self._sent = 0
        self._last = time.monotonic()

    def record(self, nbytes: int) -> float:
        """Account for ``nbytes`` just sent; sleep if needed and return the delay in seconds."""
        self._sent += nbytes
        duration_ms = int((time.monotonic() - self._last) * 1000)
        if not self.enabled or duration_ms <= 0:
            return 0.0
        delay = 0.0
        actual_rate = self._sent * 1000 // duration_ms
        if actual_rate > self.bytes_per_sec:
            expected_ms = self._sent * 1000 // self.bytes_per_sec
            extra_ms = max(expected_ms - duration_ms, 0)
            delay = extra_ms / 1000.0
            time.sleep(delay)
        self._last = time.monotonic()
        self._sent = 0
        return delay


class FileStorageHandler:
    """Serves one download file and stores uploads at one destination path."""

    def __init__(
        self,
        upload_dst_path: PathLike = "upload_dst.bin",
        download_src_path: PathLike = "download_src.bin",
    ) -> None:
        self.upload_dst_path = upload_dst_path
        self.download_src_path = download_src_path
        self.rate_limiter = RateLimiter(RATE_LIMIT_BYTES_PER_SEC, ENABLE_LIMIT)

    def download_headers(self) -> dict[str, str]:
        """Return the length and SHA-256 headers of the download file.

        Raises OSError when the file cannot be opened.
        """
        with open(self.download_src_path, "rb") as handle:
            size = handle.seek(0, os.SEEK_END)
        digest = calculate_sha256(self.download_src_path)
        log.info("[Download Request] Calculated SHA256 of downloaded file: %s", digest)
        return {"X-File-Length": str(size), "X-File-SHA256": digest}

    def iter_download(self) -> Iterator[bytes]:
        """Yield the download file in chunks, honouring the rate limit."""
        nwrite = 0
        with open(self.download_src_path, "rb") as handle:
            for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
                yield chunk
                nwrite += len(chunk)
                self.rate_limiter.record(len(chunk))
        log.info("[Download Request] finish providing file, write size: %d", nwrite)

    def iter_multi_download(self, url: str) -> Iterator[bytes]:
        """Yield a header and the content of each file named in the ``files`` query."""
        files = [item for item in parse_query_parameter(url, "files").split(",") if item]
        for path in files:
            try:
                handle = open(path, "rb")
            except OSError:
                log.error("[Multi-File Download] failed to open file: %s", path)
                continue
            with handle:
                size = handle.seek(0, os.SEEK_END)
                handle.seek(0)
                digest = calculate_sha256(path)
                header = FileSegmentHeader(base_name(path), size, digest)
                yield header.pack()
                for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
                    yield chunk
            log.info("Sent %s, size: %d, hash: %s", header.filename, size, digest)

    def receive_upload(
        self,
        chunks: Iterable[bytes],
        total_size: Optional[int] = None,
        expected_hash: Optional[str] = None,
    ) -> int:
        """Write uploaded chunks to the destination and verify the hash.

        Returns the number of bytes received; raises UploadError on a hash mismatch.
        """
        nread = 0
        start = time.monotonic()
        with open(self.upload_dst_path, "wb") as out:
            for count, chunk in enumerate(chunks, start=1):
                out.write(chunk)
                nread += len(chunk)
                if count % 100 == 1:
                    log.info("Uploaded %d bytes so far", nread)
                if total_size:
                    log.info("%s", progress_bar("[Upload Request]", nread, total_size))
        elapsed = time.monotonic() - start
        if elapsed > 0:
            log.info(
                "[Upload Request] Upload complete: %d bytes in %d ms, avg speed: %.2f MB/s",
                nread, int(elapsed * 1000), nread / 1024 / 1024 / elapsed,
            )
        actual = calculate_sha256(self.upload_dst_path)
        log.info("[Upload Request] Calculated SHA256 of uploaded file: %s", actual)
        if expected_hash and actual != expected_hash:
            raise UploadError(
                f"file hash mismatch: expected {expected_hash}, got {actual}"
            )
        return nread


def _iter_chunked_body(rfile: BinaryIO) -> Iterator[bytes]:
    while True:
        line = rfile.readline()
        if not line:
            raise ConnectionError("connection closed inside chunked body")
        try:
            size = int(line.split(b";", 1)[0].strip(), 16)
        except ValueError as exc:
            raise ConnectionError(f"bad chunk size line: {line!r}") from exc
        if size == 0:
            while rfile.readline() not in (b"\r\n", b"\n", b""):
                pass
            return
        data = rfile.read(size)
        if len(data) != size:
            raise ConnectionError("connection closed inside chunk")
        rfile.readline()
        yield data


def _iter_sized_body(rfile: BinaryIO, length: int) -> Iterator[bytes]:
    remaining = length
    while remaining > 0:
        data = rfile.read(min(UPLOAD_READ_SIZE, remaining))
        if not data:
            raise ConnectionError("connection closed before end of body")
        remaining -= len(data)
        yield data


class _RequestHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    @property
    def storage(self) -> FileStorageHandler:
        return self.server.storage_handler  # type: ignore[attr-defined]

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        log.debug("%s - " + format, self.address_string(), *args)

    def _send_empty(self, status: HTTPStatus) -> None:
        self.send_response(status)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _send_chunked(self, chunks: Iterable[bytes], headers: dict[str, str]) -> None:
        self.send_response(HTTPStatus.OK)
        for name, value in headers.items():
            self.send_header(name, value)
        self.send_header("Transfer-Encoding", "chunked")
        self.end_headers()
        try:
            for chunk in chunks:
                if chunk:
                    self.wfile.write(f"{len(chunk):x}\r\n".encode("ascii") + chunk + b"\r\n")
            self.wfile.write(b"0\r\n\r\n")
        except OSError as exc:
            log.error("failed to write response content: %s", exc)
            self.close_connection = True

    def do_GET(self) -> None:
        path_only = self.path.split("?", 1)[0]
        if path_only == "/multi-download":
            log.info("[Multi-File Download] Start processing")
            self._send_chunked(self.storage.iter_multi_download(self.path), {})
        elif path_only == "/download":
            log.info("[Download Request] Received download signal")
            try:
                headers = self.storage.download_headers()
            except OSError as exc:
                log.error("[Download Request] failed to open file: %s", exc)
                self._send_empty(HTTPStatus.INTERNAL_SERVER_ERROR)
                return
            self._send_chunked(self.storage.iter_download(), headers)
        else:
            self._send_empty(HTTPStatus.NOT_FOUND)

    def do_POST(self) -> None:
        if self.path.split("?", 1)[0] != "/upload":
            self._send_empty(HTTPStatus.NOT_FOUND)
            return
        total_size: Optional[int] = None
        if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
            body = _iter_chunked_body(self.rfile)
        else:
            try:
                total_size = int(self.headers.get("Content-Length", "0"))
            except ValueError:
                self._send_empty(HTTPStatus.BAD_REQUEST)
                self.close_connection = True
                return
            body = _iter_sized_body(self.rfile, total_size)
        expected = self.headers.get("X-File-Hash")
        try:
            nread = self.storage.receive_upload(body, total_size, expected)
        except UploadError as exc:
            log.error("[Upload Request] %s", exc)
            self._send_empty(HTTPStatus.BAD_REQUEST)
            return
        except ConnectionError as exc:
            log.error("[Upload Request] failed to read request content: %s", exc)
            self.close_connection = True
            return
        except OSError as exc:
            log.error("[Upload Request] failed to open file: %s", exc)
            self.close_connection = True
            self._send_empty(HTTPStatus.INTERNAL_SERVER_ERROR)
            return
        log.info("[Upload Request] File upload and hash verification complete, read size: %d", nread)
        self._send_empty(HTTPStatus.OK)


def create_server(host: str, port: int, handler: FileStorageHandler) -> ThreadingHTTPServer:
    """Create (but do not start) an HTTP server routing to ``handler``."""
    server = ThreadingHTTPServer((host, port), _RequestHandler)
    server.daemon_threads = True
    server.storage_handler = handler  # type: ignore[attr-defined]
    return server


def main(argv: Optional[list[str]] = None) -> int:
    """Run the file relay server until interrupted."""
    parser = argparse.ArgumentParser(description="Serve file downloads and uploads over HTTP.")
    parser.add_argument("--download_src_path", default="download_src.bin",
                        help="file that clients download")
    parser.add_argument("--upload_dst_path", default="upload_dst.bin",
                        help="where uploaded files are saved")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=24858)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    handler = FileStorageHandler(args.upload_dst_path, args.download_src_path)
    with create_server(args.host, args.port, handler) as server:
        log.info("listening on %s:%d", args.host, server.server_address[1])
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            pass
    return 0