import socket
import threading

import pytest

from filerelay.server import FileStorageHandler, create_server
from filerelay.upload_client import (
    UploadFailed,
    main,
    run,
    upload_with_chunked,
    upload_with_content_length,
)


def _start(dst):
    handler = FileStorageHandler(str(dst), "unused_download_src.bin")
    server = create_server("127.0.0.1", 0, handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server, thread


@pytest.fixture
def served(tmp_path):
    dst = tmp_path / "upload_dst.bin"
    server, thread = _start(dst)
    yield f"127.0.0.1:{server.server_address[1]}", dst
    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


@pytest.fixture
def source(tmp_path):
    src = tmp_path / "upload_src.bin"
    data = bytes(range(256)) * 700
    src.write_bytes(data)
    return src, data


def _free_addr():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"127.0.0.1:{port}"


def test_chunked_upload_round_trip(served, source):
    addr, dst = served
    src, data = source
    sent = upload_with_chunked(addr, "/upload", src)
    assert sent == len(data)
    assert dst.read_bytes() == data


def test_content_length_upload_round_trip(served, source):
    addr, dst = served
    src, data = source
    sent = upload_with_content_length(addr, "/upload", src)
    assert sent == len(data)
    assert dst.read_bytes() == data


def test_upload_without_hash(served, source):
    addr, dst = served
    src, data = source
    assert upload_with_chunked(addr, "/upload", src, enable_hash=False) == len(data)
    assert dst.read_bytes() == data


def test_content_length_rejects_empty_file(served, tmp_path):
    addr, _ = served
    empty = tmp_path / "empty.bin"
    empty.write_bytes(b"")
    with pytest.raises(UploadFailed):
        upload_with_content_length(addr, "/upload", empty)


def test_missing_source_file(served, tmp_path):
    addr, _ = served
    with pytest.raises(UploadFailed):
        upload_with_chunked(addr, "/upload", tmp_path / "missing.bin")


def test_unknown_path_is_rejected(served, source):
    addr, dst = served
    src, _ = source
    with pytest.raises(UploadFailed):
        upload_with_chunked(addr, "/nowhere", src)
    assert not dst.exists()


def test_connection_refused(source):
    src, _ = source
    with pytest.raises(UploadFailed):
        upload_with_content_length(_free_addr(), "/upload", src)


def test_bad_address(source):
    src, _ = source
    with pytest.raises(UploadFailed):
        upload_with_chunked("no-port-here", "/upload", src)


def test_server_cannot_store_upload(tmp_path, source):
    src, _ = source
    server, thread = _start(tmp_path / "no_such_dir" / "dst.bin")
    try:
        with pytest.raises(UploadFailed):
            upload_with_content_length(
                f"127.0.0.1:{server.server_address[1]}", "/upload", src
            )
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


def test_run_success(served, source, capsys):
    addr, dst = served
    src, data = source
    assert run(addr, src, use_chunked=False) == 0
    out = capsys.readouterr().out
    assert "name: upload a file to server, ok: 1" in out
    assert "final result of http calling: 1" in out
    assert dst.read_bytes() == data


def test_run_failure(served, tmp_path, capsys):
    addr, _ = served
    assert run(addr, tmp_path / "missing.bin") == 1
    assert "final result of http calling: 0" in capsys.readouterr().out


def test_main_uploads(served, source):
    addr, dst = served
    src, data = source
    code = main(["--addr", addr, "--src_path", str(src), "--use_chunked", "false"])
    assert code == 0
    assert dst.read_bytes() == data


def test_main_rejects_bad_flag(source):
    src, _ = source
    with pytest.raises(SystemExit):
        main(["--src_path", str(src), "--use_chunked", "maybe"])