import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from filerelay.download_client import (
    DownloadError,
    download,
    download_multiple_files,
    main,
    run,
)
from filerelay.hasher import sha256_hex
from filerelay.protocol import FileSegmentHeader
from filerelay.server import FileStorageHandler, create_server


def _serve(server):
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return thread


@pytest.fixture
def relay(tmp_path, monkeypatch):
    srv_dir = tmp_path / "srv"
    srv_dir.mkdir()
    monkeypatch.chdir(srv_dir)
    handler = FileStorageHandler(str(srv_dir / "upload_dst.bin"), str(srv_dir / "download_src.bin"))
    server = create_server("127.0.0.1", 0, handler)
    _serve(server)
    try:
        yield srv_dir, f"127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


def _fake_server(body, headers):
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            self.send_response(200)
            for name, value in headers.items():
                self.send_header(name, value)
            self.send_header("Content-Length", str(len(body)))
            self.send_header("Connection", "close")
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    _serve(server)
    return server, f"127.0.0.1:{server.server_address[1]}"


def test_download_round_trip(relay, tmp_path):
    srv_dir, addr = relay
    content = bytes(range(256)) * 20
    (srv_dir / "download_src.bin").write_bytes(content)
    dst = tmp_path / "got.bin"
    nread = download(addr, "/download", dst)
    assert nread == len(content)
    assert dst.read_bytes() == content


def test_download_without_limit(relay, tmp_path):
    srv_dir, addr = relay
    (srv_dir / "download_src.bin").write_bytes(b"abc" * 100)
    dst = tmp_path / "got.bin"
    assert download(addr, "/download", dst, True, False) == 300
    assert dst.read_bytes() == b"abc" * 100


def test_download_missing_source_is_error(relay, tmp_path):
    _, addr = relay
    with pytest.raises(DownloadError):
        download(addr, "/download", tmp_path / "got.bin")


def test_download_unknown_path_is_error(relay, tmp_path):
    _, addr = relay
    with pytest.raises(DownloadError):
        download(addr, "/nowhere", tmp_path / "got.bin")


def test_download_unwritable_destination(relay, tmp_path):
    _, addr = relay
    with pytest.raises(DownloadError):
        download(addr, "/download", tmp_path / "missing_dir" / "got.bin")


def test_download_hash_mismatch():
    body = b"payload bytes"
    server, addr = _fake_server(body, {"X-File-SHA256": sha256_hex(b"other")})
    try:
        with pytest.raises(DownloadError):
            download(addr, "/download", _tmp_file("mismatch"))
    finally:
        server.shutdown()
        server.server_close()


def test_download_hash_mismatch_ignored_when_disabled(tmp_path):
    body = b"payload bytes"
    server, addr = _fake_server(body, {"X-File-SHA256": sha256_hex(b"other")})
    try:
        dst = tmp_path / "got.bin"
        assert download(addr, "/download", dst, False, True) == len(body)
        assert dst.read_bytes() == body
    finally:
        server.shutdown()
        server.server_close()


def _tmp_file(name):
    import tempfile
    from pathlib import Path

    return Path(tempfile.mkdtemp()) / name


def test_download_bad_address(tmp_path):
    with pytest.raises(DownloadError):
        download("no-port-here", "/download", tmp_path / "got.bin")


def test_multi_download_saves_files(relay, tmp_path):
    srv_dir, addr = relay
    (srv_dir / "a.bin").write_bytes(b"first file")
    (srv_dir / "b.bin").write_bytes(b"\x00\x01" * 500)
    out = tmp_path / "out"
    saved = download_multiple_files(addr, "/multi-download?files=a.bin,missing.bin,b.bin", out)
    assert [p.name for p in saved] == ["a.bin", "b.bin"]
    assert (out / "a.bin").read_bytes() == b"first file"
    assert (out / "b.bin").read_bytes() == b"\x00\x01" * 500


def test_multi_download_no_files(relay, tmp_path):
    _, addr = relay
    assert download_multiple_files(addr, "/multi-download", tmp_path / "out") == []


def test_multi_download_incomplete_header(tmp_path):
    server, addr = _fake_server(b"0123456789", {})
    try:
        with pytest.raises(DownloadError):
            download_multiple_files(addr, "/multi-download", tmp_path / "out")
    finally:
        server.shutdown()
        server.server_close()


def test_multi_download_hash_mismatch(tmp_path):
    content = b"segment data"
    header = FileSegmentHeader("x.bin", len(content), sha256_hex(b"different"))
    server, addr = _fake_server(header.pack() + content, {})
    try:
        with pytest.raises(DownloadError):
            download_multiple_files(addr, "/multi-download", tmp_path / "out")
        assert (tmp_path / "out" / "x.bin").read_bytes() == content
    finally:
        server.shutdown()
        server.server_close()


def test_multi_download_truncated_file(tmp_path):
    header = FileSegmentHeader("x.bin", 100, sha256_hex(b""))
    server, addr = _fake_server(header.pack() + b"short", {})
    try:
        with pytest.raises(DownloadError):
            download_multiple_files(addr, "/multi-download", tmp_path / "out", False)
    finally:
        server.shutdown()
        server.server_close()


def test_run_reports_success(relay, tmp_path, capsys):
    srv_dir, addr = relay
    (srv_dir / "download_src.bin").write_bytes(b"source" * 50)
    (srv_dir / "download_dst.bin").write_bytes(b"dest" * 30)
    code = run(addr, tmp_path / "dl.bin", tmp_path / "multi", True, True)
    out = capsys.readouterr().out
    assert code == 0
    assert "final result of http calling: 1" in out
    assert (tmp_path / "multi" / "download_dst.bin").read_bytes() == b"dest" * 30


def test_main_reports_failure(relay, tmp_path, capsys):
    _, addr = relay
    code = main([
        "--addr", addr,
        "--dst_path", str(tmp_path / "dl.bin"),
        "--multi_download_dir", str(tmp_path / "multi"),
        "--enable_download_limit=false",
    ])
    out = capsys.readouterr().out
    assert code == 1
    assert "final result of http calling: 0" in out