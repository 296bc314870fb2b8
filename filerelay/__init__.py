"""HTTP file service: a server for downloads and uploads, its clients, and SHA-256 checks."""

__version__ = "0.1.0"