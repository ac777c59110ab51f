"""certsight: look inside certificates, CSRs, keys and TLS endpoints."""

__version__ = "0.1.0"
