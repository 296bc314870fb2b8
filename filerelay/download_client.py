"""Client that downloads one file, or several files in one stream, from the relay server."""

from __future__ import annotations

import argparse
import logging
import os
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from .hasher import calculate_sha256
from .protocol import FileSegmentHeader, base_name, progress_bar

log = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 50.0
MULTI_DOWNLOAD_TIMEOUT = 10.0
READ_RETRY_TIMEOUT = 3.0
BUFFER_SIZE = 1024 * 1024
_RECV_SIZE = 64 * 1024

PathLike = Union[str, "os.PathLike[str]"]


class DownloadError(Exception):
    """A download could not be completed or failed verification."""


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not host:
        raise DownloadError(f"address must be host:port, got {addr!r}")
    try:
        return host, int(port)
    except ValueError as exc:
        raise DownloadError(f"bad port in address {addr!r}") from exc


class _HttpConnection:
    """A single GET exchange over a socket with a retry-safe read buffer."""

    def __init__(self, addr: str, timeout: float, retry_on_timeout: bool) -> None:
        self._addr = addr
        host, port = _split_addr(addr)
        self._deadline = time.monotonic() + timeout
        self._retry = retry_on_timeout
        self._buf = bytearray()
        try:
            self._sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as exc:
            raise DownloadError(f"failed to connect to {addr}: {exc}") from exc
        self._sock.settimeout(READ_RETRY_TIMEOUT if retry_on_timeout else timeout)

    def __enter__(self) -> "_HttpConnection":
        return self

    def __exit__(self, *exc_info) -> None:
        self._sock.close()

    def send_get(self, path: str) -> None:
        request = (
            f"GET {path} HTTP/1.1\r\n"
            f"Host: {self._addr}\r\n"
            "Connection: close\r\n\r\n"
        )
        try:
            self._sock.sendall(request.encode("ascii"))
        except OSError as exc:
            raise DownloadError(f"failed to send request: {exc}") from exc

    def _fill(self) -> bool:
        while True:
            if time.monotonic() > self._deadline:
                raise DownloadError("request timed out")
            try:
                data = self._sock.recv(_RECV_SIZE)
            except TimeoutError as exc:
                if not self._retry:
                    raise DownloadError("read timed out") from exc
                log.warning("[Download Request] Read timed out, retrying...")
                continue
            except OSError as exc:
                raise DownloadError(f"failed to read response: {exc}") from exc
            if not data:
                return False
            self._buf += data
            return True

    def _readline(self) -> bytes:
        while b"\n" not in self._buf:
            if not self._fill():
                raise DownloadError("connection closed inside response head")
        line, _, rest = bytes(self._buf).partition(b"\n")
        self._buf = bytearray(rest)
        return line.rstrip(b"\r")

    def _read_some(self, limit: int) -> bytes:
        if not self._buf and not self._fill():
            return b""
        data = bytes(self._buf[:limit])
        del self._buf[:limit]
        return data

    def read_headers(self) -> tuple[int, dict[str, str]]:
        status_line = self._readline().decode("latin-1")
        parts = status_line.split(" ", 2)
        if len(parts) < 2 or not parts[0].startswith("HTTP/"):
            raise DownloadError(f"bad status line: {status_line!r}")
        try:
            status = int(parts[1])
        except ValueError as exc:
            raise DownloadError(f"bad status line: {status_line!r}") from exc
        headers: dict[str, str] = {}
        while line := self._readline():
            name, sep, value = line.decode("latin-1").partition(":")
            if sep:
                headers[name.strip().lower()] = value.strip()
        return status, headers

    def _iter_sized(self, remaining: int) -> Iterator[bytes]:
        while remaining > 0:
            data = self._read_some(min(remaining, BUFFER_SIZE))
            if not data:
                raise DownloadError("connection closed before end of body")
            remaining -= len(data)
            yield data

    def iter_body(self, headers: dict[str, str]) -> Iterator[bytes]:
        if "chunked" in headers.get("transfer-encoding", "").lower():
            while True:
                size_line = self._readline()
                try:
                    size = int(size_line.split(b";", 1)[0].strip(), 16)
                except ValueError as exc:
                    raise DownloadError(f"bad chunk size line: {size_line!r}") from exc
                if size == 0:
                    while self._readline():
                        pass
                    return
                yield from self._iter_sized(size)
                self._readline()
        elif "content-length" in headers:
            try:
                length = int(headers["content-length"])
            except ValueError as exc:
                raise DownloadError("bad Content-Length header") from exc
            yield from self._iter_sized(length)
        else:
            while data := self._read_some(BUFFER_SIZE):
                yield data


class _ByteStream:
    """Reads exact-sized pieces out of an iterator of byte chunks."""

    def __init__(self, chunks: Iterator[bytes]) -> None:
        self._chunks = chunks
        self._pending = b""

    def read(self, n: int) -> bytes:
        """Return up to ``n`` bytes; fewer only at the end of the stream."""
        parts = []
        wanted = n
        while wanted > 0:
            if not self._pending:
                self._pending = next(self._chunks, b"")
                if not self._pending:
                    break
            piece, self._pending = self._pending[:wanted], self._pending[wanted:]
            parts.append(piece)
            wanted -= len(piece)
        return b"".join(parts)


def download(
    addr: str,
    path: str,
    dst_path: PathLike,
    enable_hash: bool = True,
    enable_limit: bool = True,
) -> int:
    """Download ``path`` from the server at ``addr`` into ``dst_path``.

    Returns the number of bytes received. Raises DownloadError on any
    failure, including a SHA-256 mismatch when ``enable_hash`` is set.
    """
    try:
        out = open(dst_path, "wb")
    except OSError as exc:
        raise DownloadError(f"failed to open file {dst_path}: {exc}") from exc

    with out, _HttpConnection(addr, DOWNLOAD_TIMEOUT, enable_limit) as conn:
        conn.send_get(path)
        status, headers = conn.read_headers()
        if status != 200:
            raise DownloadError(f"http response status: {status}")

        total_size = 0
        if "x-file-length" in headers:
            try:
                total_size = int(headers["x-file-length"])
            except ValueError as exc:
                raise DownloadError("bad X-File-Length header") from exc
            log.info("[Download Request] Content-Length: %d bytes", total_size)
        else:
            log.warning("[Download Request] No Content-Length found, can't compute progress")

        nread = 0
        start = time.monotonic()
        for chunk in conn.iter_body(headers):
            nread += len(chunk)
            if total_size > 0:
                log.info("%s", progress_bar("[Download Request]", nread, total_size))
            out.write(chunk)
        elapsed = time.monotonic() - start
        if elapsed > 0:
            log.info(
                "[Download Request] Download complete: %d bytes in %d ms, avg speed: %.2f MB/s",
                nread, int(elapsed * 1000), nread / (1024 * 1024) / elapsed,
            )

    log.info("[Download Request] finish downloading, read size: %d", nread)

    expected = headers.get("x-file-sha256")
    if enable_hash and expected is not None:
        actual = calculate_sha256(dst_path)
        log.info("downloaded client: %s", actual)
        if actual != expected:
            raise DownloadError("SHA256 mismatch, file may be corrupted")
        log.info("[Download Request] SHA256 verified successfully")
    else:
        log.warning("[Download Request] No SHA256 header received from server, skipping verification...")
    return nread


def download_multiple_files(
    addr: str,
    path: str,
    out_dir: PathLike = "./downloads",
    enable_hash: bool = True,
) -> list[Path]:
    """Download a multi-file stream from ``path`` and save each file in ``out_dir``.

    Returns the paths of the saved files in the order they arrived.
    """
    target_dir = Path(out_dir)
    saved: list[Path] = []
    with _HttpConnection(addr, MULTI_DOWNLOAD_TIMEOUT, False) as conn:
        conn.send_get(path)
        _, headers = conn.read_headers()
        stream = _ByteStream(conn.iter_body(headers))
        while True:
            raw = stream.read(FileSegmentHeader.SIZE)
            if not raw:
                log.info("[Multi-File Download] Finished reading %d file(s).", len(saved))
                break
            try:
                header = FileSegmentHeader.unpack(raw)
            except ValueError as exc:
                raise DownloadError(f"incomplete header received, size = {len(raw)}") from exc

            name = base_name(header.filename)
            if not name or name in (".", ".."):
                raise DownloadError(f"bad file name in header: {header.filename!r}")
            full_path = target_dir / name
            try:
                target_dir.mkdir(parents=True, exist_ok=True)
                out = open(full_path, "wb")
            except OSError as exc:
                raise DownloadError(f"cannot open file {full_path}: {exc}") from exc

            with out:
                received = 0
                while received < header.file_size:
                    data = stream.read(min(BUFFER_SIZE, header.file_size - received))
                    if not data:
                        raise DownloadError(f"stream ended inside file {name}")
                    out.write(data)
                    received += len(data)
            log.info("[Multi-File Download] File saved: %s, size: %d", name, header.file_size)

            if enable_hash:
                actual = calculate_sha256(full_path)
                log.info(
                    "[Multi-File Download] Verifying %s, expected=%s, actual=%s",
                    name, header.hash_hex, actual,
                )
                if actual != header.hash_hex:
                    raise DownloadError(f"hash mismatch for {name}")
                log.info("[Multi-File Download] Verified %s", name)
            saved.append(full_path)
    return saved


@dataclass
class _Calling:
    name: str
    executor: Callable[[], object]
    ok: bool = False


def _attempt(calling: _Calling) -> bool:
    try:
        calling.executor()
    except (DownloadError, OSError) as exc:
        log.error("%s failed: %s", calling.name, exc)
        return False
    return True


def run(
    addr: str = "127.0.0.1:24858",
    dst_path: PathLike = "download_dst.bin",
    multi_download_dir: PathLike = "./downloads",
    enable_hash: bool = True,
    enable_limit: bool = True,
) -> int:
    """Run the single and multi-file downloads concurrently; return 0 if both succeed."""
    callings = [
        _Calling(
            "download a file from the server",
            lambda: download(addr, "/download", dst_path, enable_hash, enable_limit),
        ),
        _Calling(
            "download multiple files from the server",
            lambda: download_multiple_files(
                addr,
                "/multi-download?files=download_src.bin,download_dst.bin",
                multi_download_dir,
                enable_hash,
            ),
        ),
    ]
    with ThreadPoolExecutor(max_workers=len(callings)) as pool:
        for calling, ok in zip(callings, pool.map(_attempt, callings)):
            calling.ok = ok

    final_ok = all(c.ok for c in callings)
    for calling in callings:
        print(f"name: {calling.name}, ok: {int(calling.ok)}")
    print(f"final result of http calling: {int(final_ok)}")
    return 0 if final_ok else 1


def _flag(value: str) -> bool:
    lowered = value.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected a boolean, got {value!r}")


def main(argv: Optional[list[str]] = None) -> int:
    """Command-line entry point of the download client."""
    parser = argparse.ArgumentParser(description="Download files from the file relay server.")
    parser.add_argument("--service_name", default="http_upload_download_client")
    parser.add_argument("--addr", default="127.0.0.1:24858", help="ip:port")
    parser.add_argument("--dst_path", default="download_dst.bin",
                        help="where the downloaded file is stored")
    parser.add_argument("--enable_download_hash", type=_flag, default=True,
                        help="verify SHA-256 of downloaded files")
    parser.add_argument("--enable_download_limit", type=_flag, default=True,
                        help="retry reads that time out")
    parser.add_argument("--multi_download_dir", default="./downloads",
                        help="directory for files of a multi-file download")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    print(f"FLAGS_service_name: {args.service_name}")
    print(f"FLAGS_addr: {args.addr}")
    print(f"FLAGS_dst_path: {args.dst_path}")
    return run(
        args.addr,
        args.dst_path,
        args.multi_download_dir,
        args.enable_download_hash,
        args.enable_download_limit,
    )