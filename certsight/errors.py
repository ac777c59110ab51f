"""Exception hierarchy shared by the parse and connect paths."""

from typing import Optional, Tuple


class CertsightError(Exception):
    """Base class for every error the CLI reports to the operator."""


class ReadError(CertsightError):
    """File or stdin could not be read (fatal)."""


class DecodeError(CertsightError):
    """A single PEM block (or raw DER buffer) could not be decoded.

    Scoped to one block: the batch keeps going and the failure is logged.
    """

    def __init__(self, message: str, span: Optional[Tuple[int, int]] = None, label: Optional[str] = None):
        super().__init__(message)
        self.span = span
        self.label = label

    def describe(self) -> str:
        where = f" at bytes {self.span[0]}-{self.span[1]}" if self.span else ""
        what = f" ({self.label})" if self.label else ""
        return f"{self}{what}{where}"


class UnknownLabelError(DecodeError):
    """PEM label is not one we know how to decode."""


class NetworkError(CertsightError):
    """Any failure in the connection diagnostic; fatal, never retried."""


class ResolveError(NetworkError):
    pass


class DialError(NetworkError):
    pass


class HandshakeError(NetworkError):
    pass


class TlsConfigError(NetworkError):
    """The TLS library refused the requested configuration (e.g. groups)."""


class SerializationError(CertsightError):
    pass
