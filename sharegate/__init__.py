"""sharegate - Delta Sharing credential and protocol-proxy service."""

__version__ = "0.1.0"
