"""Live TLS probe: resolve, dial, handshake, then describe what the peer sent.

Every stage is timed on its own and any stage failure aborts the whole probe
(no retries, no partial results). Transport verification is switched off so
that the handshake completes for broken chains too; the verdict (chain and
host name) is worked out afterwards against the certifi trust store and
recorded on the leaf.
"""

import logging
import select
import socket
import time
from dataclasses import dataclass, field
from enum import Enum
from ipaddress import ip_address
from typing import List, Optional, Tuple
from urllib.parse import urlsplit

import certifi
from cryptography import x509
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError
from OpenSSL import SSL

from .errors import DialError, HandshakeError, ResolveError, TlsConfigError
from .model import SimpleCert, apply_verify_result, build_cert
from .settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_PORT = 443

# substrings that mark a hybrid post-quantum key exchange group
PQC_MARKERS = ("kyber", "mlkem", "ml-kem")


class Transport(Enum):
    TCP  = "tcp"
    QUIC = "quic"


@dataclass
class ResolvedHost:
    hostname:   str
    address:    str
    port:       int

    @property
    def is_ip(self) -> bool:
        try:
            ip_address(self.hostname)
        except ValueError:
            return False
        return True

    def __str__(self) -> str:
        if ":" in self.address:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"


@dataclass
class Timings:
    """Per-stage wall clock, in milliseconds."""
    dns:            float = 0.0
    connect:        float = 0.0
    tls_handshake:  float = 0.0


@dataclass
class Connection:
    hostname:           str
    address:            str
    transport:          Transport = Transport.TCP
    time:               Timings = field(default_factory=Timings)
    negotiated_curve:   str = ""
    is_pqc:             bool = False
    protocol_version:   str = ""
    cipher:             str = ""


@dataclass
class ConnectionReport:
    tls:    Connection
    certs:  List[SimpleCert] = field(default_factory=list)


#
# host resolution
#

def _socket_address(target: str) -> Optional[Tuple[str, int]]:
    """'1.2.3.4:443' or '[::1]:443' -> (ip, port); anything else -> None."""
    if target.startswith("["):
        host, sep, port = target[1:].partition("]:")
        if not sep:
            return None
    else:
        host, sep, port = target.rpartition(":")
        if not sep or ":" in host:
            return None

    try:
        address = ip_address(host)
        number = int(port)
    except ValueError:
        return None
    if not 0 <= number <= 65535:
        return None
    return str(address), number


def _lookup(host: str, port: int) -> str:
    try:
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as e:
        raise ResolveError(f"could not resolve '{host}': {e}") from e
    if not infos:
        raise ResolveError(f"no addresses found for '{host}'")
    return infos[0][4][0]


def resolve_host(target: str) -> ResolvedHost:
    """Turn the operator's host string into a hostname and one address.

    Tried in order: a literal ip:port, a URL with a host (port defaults to
    443), then host[:port] split on the first colon.
    """
    target = target.strip()
    if not target:
        raise ResolveError("empty host")

    literal = _socket_address(target)
    if literal is not None:
        address, port = literal
        logger.debug(f"'{target}' is a socket address, skipping DNS")
        return ResolvedHost(hostname=address, address=address, port=port)

    parsed = urlsplit(target)
    if parsed.scheme and parsed.hostname:
        try:
            port = parsed.port or DEFAULT_PORT
        except ValueError as e:
            raise ResolveError(f"invalid port in '{target}'") from e
        host = parsed.hostname
    else:
        # a bare or bracketed IPv6 literal without a port is not special-cased here
        host, sep, port_text = target.partition(":")
        try:
            port = int(port_text) if sep else DEFAULT_PORT
        except ValueError as e:
            raise ResolveError(f"invalid port '{port_text}' in '{target}'") from e
        if not host:
            raise ResolveError(f"no host in '{target}'")

    address = _lookup(host, port)
    logger.debug(f"Resolved {host} to {address}")
    return ResolvedHost(hostname=host, address=address, port=port)


def is_pqc_group(name: Optional[str]) -> bool:
    """Heuristic: does the group name look like a hybrid PQC group?"""
    if not name:
        return False
    lowered = name.lower()
    return any(marker in lowered for marker in PQC_MARKERS)


#
# TLS
#

def _context(settings: Settings) -> SSL.Context:
    ctx = SSL.Context(SSL.TLS_CLIENT_METHOD)
    # verification happens after the handshake, see _verify
    ctx.set_verify(SSL.VERIFY_NONE, lambda *args: True)

    groups = settings.groups()
    if groups:
        if not hasattr(ctx, "set_groups"):
            raise TlsConfigError("installed pyOpenSSL cannot select key exchange groups")
        try:
            ctx.set_groups(groups)
        except (SSL.Error, ValueError) as e:
            raise TlsConfigError(f"TLS library rejected groups {':'.join(groups)}: {e}") from e
        logger.info(f"Offering groups {':'.join(groups)}")
    return ctx


def _handshake(conn: SSL.Connection, sock: socket.socket, timeout: Optional[float]) -> None:
    deadline = None if timeout is None else time.monotonic() + timeout

    while True:
        try:
            conn.do_handshake()
            return
        except (SSL.WantReadError, SSL.WantWriteError) as e:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                raise HandshakeError("TLS handshake timed out") from e
            if isinstance(e, SSL.WantReadError):
                ready = select.select([sock], [], [], remaining)[0]
            else:
                ready = select.select([], [sock], [], remaining)[1]
            if not ready:
                raise HandshakeError("TLS handshake timed out") from e


def _verify(leaf: x509.Certificate, intermediates: List[x509.Certificate],
            resolved: ResolvedHost) -> Optional[str]:
    """WebPKI verdict for ``resolved`` against the certifi bundle.

    Checks the chain and that the leaf names the host (an IP SAN for
    literal addresses). Returns None if valid, else the reason.
    """
    with open(certifi.where(), "rb") as f:
        store = Store(x509.load_pem_x509_certificates(f.read()))

    if resolved.is_ip:
        subject = x509.IPAddress(ip_address(resolved.hostname))
    else:
        subject = x509.DNSName(resolved.hostname)

    verifier = PolicyBuilder().store(store).build_server_verifier(subject)
    try:
        verifier.verify(leaf, intermediates)
    except VerificationError as e:
        return str(e) or "certificate verification failed"
    return None


def _negotiated_group(conn: SSL.Connection) -> str:
    getter = getattr(conn, "get_group_name", None)
    if getter is None:
        logger.debug("pyOpenSSL cannot report the negotiated group")
        return ""
    name = getter()
    if isinstance(name, bytes):
        name = name.decode("ascii", errors="replace")
    return name or ""


def _extract_certs(conn: SSL.Connection, chain: bool, resolved: ResolvedHost) -> List[SimpleCert]:
    presented = [c.to_cryptography() for c in conn.get_peer_cert_chain() or []]
    peer = conn.get_peer_certificate()
    if peer is None:
        raise HandshakeError("peer presented no certificate")
    leaf = peer.to_cryptography()

    # peer presentation order, leaf first
    selected = presented if chain and presented else [leaf]
    certs = [build_cert(c) for c in selected]

    reason = _verify(leaf, presented[1:], resolved)
    if reason:
        logger.info(f"Chain did not verify: {reason}")
    apply_verify_result(certs[0], reason)
    return certs


def probe(target: str, settings: Settings) -> ConnectionReport:
    """Resolve, connect and handshake with ``target``, then describe the session."""
    timings = Timings()

    started = time.perf_counter()
    resolved = resolve_host(target)
    timings.dns = (time.perf_counter() - started) * 1000
    logger.info(f"DNS: {resolved.hostname} -> {resolved.address} in {timings.dns:.1f}ms")

    ctx = _context(settings)

    started = time.perf_counter()
    try:
        sock = socket.create_connection((resolved.address, resolved.port), timeout=settings.timeout)
    except OSError as e:
        raise DialError(f"unable to connect to {resolved}: {e}") from e
    timings.connect = (time.perf_counter() - started) * 1000
    logger.info(f"TCP: connected to {resolved} in {timings.connect:.1f}ms")

    try:
        conn = SSL.Connection(ctx, sock)
        # IP addresses are not permitted in SNI
        if not resolved.is_ip:
            conn.set_tlsext_host_name(resolved.hostname.encode("idna"))
        conn.set_connect_state()

        started = time.perf_counter()
        try:
            _handshake(conn, sock, settings.timeout)
        except (SSL.Error, OSError) as e:
            raise HandshakeError(f"TLS handshake with {resolved} failed: {e}") from e
        timings.tls_handshake = (time.perf_counter() - started) * 1000
        logger.info(f"TLS: handshake done in {timings.tls_handshake:.1f}ms")

        group = _negotiated_group(conn)
        tls = Connection(
            hostname=resolved.hostname,
            address=str(resolved),
            time=timings,
            negotiated_curve=group,
            is_pqc=is_pqc_group(group),
            protocol_version=conn.get_protocol_version_name(),
            cipher=conn.get_cipher_name() or "",
        )

        if settings.rpk:
            # pyOpenSSL has no raw public key negotiation; report the session only
            logger.warning("Raw public key mode: no certificate data is extracted")
            certs = []
        else:
            certs = _extract_certs(conn, settings.chain, resolved)
    finally:
        sock.close()

    return ConnectionReport(tls=tls, certs=certs)
