# filerelay

A small HTTP file service and its clients, built on the standard library
alone. The server streams one file to clients, stores uploads, and can send
several files in a single response. Transfers are checked with SHA-256.
Single-file downloads are rate limited, and uploads and downloads log their
progress as a text bar.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Commands

### `filerelay-server`

Serves `GET /download`, `GET /multi-download` and `POST /upload` until
interrupted.

| Option                | Default            | Meaning                           |
|-----------------------|--------------------|-----------------------------------|
| `--download_src_path` | `download_src.bin` | file that clients download        |
| `--upload_dst_path`   | `upload_dst.bin`   | where an uploaded file is saved   |
| `--host`              | `127.0.0.1`        | address to listen on              |
| `--port`              | `24858`            | port to listen on                 |

### `filerelay-download`

Runs two downloads at the same time: the single file from `/download`, saved
to `--dst_path`, and the files `download_src.bin` and `download_dst.bin` from
`/multi-download`, saved in `--multi_download_dir`.

| Option                    | Default                        | Meaning                                     |
|---------------------------|--------------------------------|---------------------------------------------|
| `--addr`                  | `127.0.0.1:24858`              | server address as `host:port`               |
| `--dst_path`              | `download_dst.bin`             | where the single download is stored         |
| `--multi_download_dir`    | `./downloads`                  | directory for the multi-file download       |
| `--enable_download_hash`  | `true`                         | verify the SHA-256 of downloaded files      |
| `--enable_download_limit` | `true`                         | retry reads that time out after 3 seconds   |
| `--service_name`          | `http_upload_download_client`  | a name that is printed at start-up          |

### `filerelay-upload`

Uploads one file to `/upload`.

| Option                 | Default                        | Meaning                                         |
|------------------------|--------------------------------|-------------------------------------------------|
| `--addr`               | `127.0.0.1:24858`              | server address as `host:port`                   |
| `--src_path`           | `upload_src.bin`               | file to upload                                  |
| `--use_chunked`        | `true`                         | chunked encoding instead of a Content-Length    |
| `--enable_upload_hash` | `true`                         | send the file's SHA-256 for the server to check |
| `--service_name`       | `http_upload_download_client`  | a name that is printed at start-up              |

Boolean options take `true`/`false`, `1`/`0`, `yes`/`no` or `on`/`off`.
Each command lists its options with `--help`:

```
filerelay-server --help
filerelay-download --help
filerelay-upload --help
```

Both clients print a `name: ..., ok: 1|0` line for each transfer and a
`final result of http calling: 1|0` line, and exit with 0 when every transfer
succeeded and 1 otherwise.

## HTTP interface

| Request                             | Behaviour |
|-------------------------------------|-----------|
| `GET /download`                     | Streams the download file in chunked encoding, with `X-File-Length` and `X-File-SHA256` headers. Sending is held to about 900 KiB/s. If the file cannot be opened the reply is `500`. |
| `GET /multi-download?files=a,b,...` | Sends, for each listed path, a segment header followed by the file's bytes. Paths that cannot be opened are skipped. |
| `POST /upload`                      | Accepts a chunked or Content-Length body and writes it to the upload file. If an `X-File-Hash` header is sent and does not match the stored file, the reply is `400`; otherwise `200`. |
| anything else                       | `404` |

A segment header is 200 bytes: the file's base name (128 bytes, UTF-8,
NUL-padded), its size as a little-endian unsigned 64-bit integer, and its
SHA-256 as 64 hexadecimal characters. `FileSegmentHeader` in
`filerelay.protocol` packs and unpacks it; `unpack` raises `ValueError` on
fewer than 200 bytes.

## Using it from Python

Hashing (`filerelay.hasher`):

```python
from filerelay.hasher import sha256_hex, calculate_sha256

sha256_hex(b"abc")
# 'ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad'

calculate_sha256("download_src.bin")  # hex digest, or "" if the file cannot be opened
```

Serving (`filerelay.server`):

```python
from filerelay.server import FileStorageHandler, create_server

handler = FileStorageHandler("upload_dst.bin", "download_src.bin")
with create_server("127.0.0.1", 24858, handler) as server:
    server.serve_forever()
```

`FileStorageHandler` can also be used without HTTP: `download_headers()`,
`iter_download()`, `iter_multi_download(url)` and
`receive_upload(chunks, total_size, expected_hash)`, which returns the number
of bytes stored and raises `UploadError` on a hash mismatch. `RateLimiter`
holds a sender to a byte-per-second limit; its `record(nbytes)` sleeps when
needed and returns the delay in seconds.

Downloading (`filerelay.download_client`):

```python
from filerelay.download_client import download, download_multiple_files, DownloadError

try:
    nbytes = download("127.0.0.1:24858", "/download", "download_dst.bin", True, True)
    saved = download_multiple_files(
        "127.0.0.1:24858",
        "/multi-download?files=download_src.bin,download_dst.bin",
        "downloads",
        True,
    )
except DownloadError as exc:
    print("download failed:", exc)
```

`download` returns the bytes received; `download_multiple_files` returns the
paths of the saved files in arrival order.

Uploading (`filerelay.upload_client`):

```python
from filerelay.upload_client import upload_with_chunked, upload_with_content_length, UploadFailed

try:
    upload_with_chunked("127.0.0.1:24858", "/upload", "upload_src.bin", True)
    upload_with_content_length("127.0.0.1:24858", "/upload", "upload_src.bin", True)
except UploadFailed as exc:
    print("upload failed:", exc)
```

Both return the bytes sent. `upload_with_content_length` refuses an empty file.

`filerelay.protocol` also has `parse_query_parameter`, `base_name`,
`progress_bar` and `byte_dump` for building other clients of the service.

## What it does not do

- There is no TLS and no authentication.
- The server has one upload file: each upload overwrites it.
- `/multi-download` reads whatever paths the query names, relative to the
  server's working directory; run it only where that is acceptable.
- Interrupted transfers cannot be resumed.
- `--service_name` is only printed; there is no service registry or
  configuration file.