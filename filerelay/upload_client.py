"""Client that uploads one file to the relay server."""

from __future__ import annotations

import argparse
import http.client
import logging
import os
from typing import Iterator, Optional, Union

from .hasher import calculate_sha256

log = logging.getLogger(__name__)

UPLOAD_TIMEOUT = 5.0
CHUNK_SIZE = 64 * 1024

PathLike = Union[str, "os.PathLike[str]"]


class UploadFailed(Exception):
    """An upload could not be completed or was rejected by the server."""


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not host:
        raise UploadFailed(f"address must be host:port, got {addr!r}")
    try:
        return host, int(port)
    except ValueError as exc:
        raise UploadFailed(f"bad port in address {addr!r}") from exc


class _CountingReader:
    """Yields a file in chunks and counts the bytes handed out."""

    def __init__(self, handle) -> None:
        self._handle = handle
        self.count = 0

    def __iter__(self) -> Iterator[bytes]:
        for chunk in iter(lambda: self._handle.read(CHUNK_SIZE), b""):
            self.count += len(chunk)
            yield chunk


def _post(
    addr: str,
    path: str,
    handle,
    headers: dict[str, str],
    chunked: bool,
) -> int:
    host, port = _split_addr(addr)
    reader = _CountingReader(handle)
    conn = http.client.HTTPConnection(host, port, timeout=UPLOAD_TIMEOUT)
    try:
        conn.request("POST", path, body=iter(reader), headers=headers, encode_chunked=chunked)
        response = conn.getresponse()
        response.read()
        status = response.status
    except (OSError, http.client.HTTPException) as exc:
        raise UploadFailed(f"failed to upload request content: {exc}") from exc
    finally:
        conn.close()
    if status != 200:
        raise UploadFailed(f"http response status: {status}")
    log.info("[Upload Request] finish uploading, write size: %d", reader.count)
    return reader.count


def _open(src_path: PathLike):
    try:
        return open(src_path, "rb")
    except OSError as exc:
        raise UploadFailed(f"failed to open file, file_path: {src_path}") from exc


def upload_with_chunked(
    addr: str,
    path: str,
    src_path: PathLike,
    enable_hash: bool = True,
) -> int:
    """Upload ``src_path`` with chunked transfer encoding; return the bytes sent."""
    log.info("[Upload Request] upload a file with chunked")
    with _open(src_path) as handle:
        headers = {"Transfer-Encoding": "chunked"}
        if enable_hash:
            headers["X-File-Hash"] = calculate_sha256(src_path)
        return _post(addr, path, handle, headers, chunked=True)


def upload_with_content_length(
    addr: str,
    path: str,
    src_path: PathLike,
    enable_hash: bool = True,
) -> int:
    """Upload ``src_path`` with a Content-Length header; return the bytes sent.

    An empty file is refused, as its size cannot be sent.
    """
    log.info("[Upload Request] upload a file with content-length")
    with _open(src_path) as handle:
        size = handle.seek(0, os.SEEK_END)
        handle.seek(0)
        if size <= 0:
            raise UploadFailed(f"failed to read file size, file_path: {src_path}")
        headers = {"Content-Length": str(size)}
        if enable_hash:
            headers["X-File-Hash"] = calculate_sha256(src_path)
        return _post(addr, path, handle, headers, chunked=False)


def run(
    addr: str = "127.0.0.1:24858",
    src_path: PathLike = "upload_src.bin",
    use_chunked: bool = True,
    enable_hash: bool = True,
) -> int:
    """Upload the file once; print the outcome and return 0 on success, 1 otherwise."""
    name = "upload a file to server"
    upload = upload_with_chunked if use_chunked else upload_with_content_length
    try:
        upload(addr, "/upload", src_path, enable_hash)
        ok = True
    except UploadFailed as exc:
        log.error("%s failed: %s", name, exc)
        ok = False
    print(f"name: {name}, ok: {int(ok)}")
    print(f"final result of http calling: {int(ok)}")
    return 0 if ok else 1


def _flag(value: str) -> bool:
    lowered = value.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected a boolean, got {value!r}")


def main(argv: Optional[list[str]] = None) -> int:
    """Command-line entry point of the upload client."""
    parser = argparse.ArgumentParser(description="Upload a file to the file relay server.")
    parser.add_argument("--service_name", default="http_upload_download_client")
    parser.add_argument("--addr", default="127.0.0.1:24858", help="ip:port")
    parser.add_argument("--src_path", default="upload_src.bin", help="file to upload")
    parser.add_argument("--use_chunked", type=_flag, default=True,
                        help="send request content in chunked")
    parser.add_argument("--enable_upload_hash", type=_flag, default=True,
                        help="send the SHA-256 of the file for verification")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    print(f"FLAGS_service_name: {args.service_name}")
    print(f"FLAGS_addr: {args.addr}")
    print(f"FLAGS_src_path: {args.src_path}")
    print(f"FLAGS_use_chunked: {int(args.use_chunked)}")
    return run(args.addr, args.src_path, args.use_chunked, args.enable_upload_hash)