[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "filerelay"
version = "0.1.0"
description = "HTTP file upload and download service with SHA-256 verification, progress reporting and rate limiting"
requires-python = ">=3.10"
dependencies = []
keywords = ["http", "upload", "download", "sha256", "file-transfer", "streaming"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Communications :: File Sharing",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
filerelay-server = "filerelay.server:main"
filerelay-download = "filerelay.download_client:main"
filerelay-upload = "filerelay.upload_client:main"

[tool.hatch.build.targets.wheel]
packages = ["filerelay"]

[tool.pytest.ini_options]
addopts = "-ra"
