#
# human readable summaries... colour only when we were handed a theme that wants it
#

from typing import List, TextIO, Union

from .connection import ConnectionReport
from .model import (DsaPrivateKind, DsaPublicKind, EcPrivateKind, EcPublicKind, Ed448PrivateKind,
                    Ed448PublicKind, Ed25519PrivateKind, Ed25519PublicKind, ParseReport, RsaPrivateKind,
                    RsaPublicKind, Sans, SimpleCert, SimpleCsr, SimpleKeyUsage, SimplePrivateKey,
                    SimplePublicKey)
from .settings import Theme

_UNITS = (
    ("year",   365 * 24 * 3600),
    ("month",  30 * 24 * 3600),
    ("day",    24 * 3600),
    ("hour",   3600),
    ("minute", 60),
    ("second", 1),
)


def humanize(seconds: int) -> str:
    """Coarse duration: 'in 3 months' for the future, '2 days ago' for the past."""
    amount = abs(seconds)
    for unit, size in _UNITS:
        if amount >= size or unit == "second":
            count = amount // size
            text = f"{count} {unit}{'' if count == 1 else 's'}"
            break
    return f"in {text}" if seconds >= 0 else f"{text} ago"


def describe_key(key: Union[SimplePublicKey, SimplePrivateKey]) -> str:
    kind = key.kind
    if isinstance(kind, (RsaPublicKind, RsaPrivateKind)):
        return f"RSA {kind.size_bits} bits (e={kind.exponent_decimal})"
    if isinstance(kind, (DsaPublicKind, DsaPrivateKind)):
        return f"DSA {kind.size_bits} bits"
    if isinstance(kind, (EcPublicKind, EcPrivateKind)):
        return f"EC {kind.curve_name or 'unnamed curve'} ({key.bits} bits)"
    if isinstance(kind, (Ed25519PublicKind, Ed25519PrivateKind)):
        return "Ed25519"
    if isinstance(kind, (Ed448PublicKind, Ed448PrivateKind)):
        return "Ed448"
    raise TypeError(f"unknown key kind {type(kind).__name__}")


def _usages(usage: SimpleKeyUsage) -> List[str]:
    names = [name for name in ("digital_signature", "content_commitment", "key_encipherment",
                               "data_encipherment", "key_agreement", "key_cert_sign", "crl_sign",
                               "encipher_only", "decipher_only")
             if getattr(usage, name)]
    names += [name for name in ("server_auth", "client_auth", "code_signing", "email_protection",
                                "time_stamping", "ocsp_signing")
              if getattr(usage.extended, name)]
    return names + usage.extended.custom


def _sans(sans: Sans) -> List[str]:
    return ([f"DNS:{v}" for v in sans.dns] + [f"IP:{v}" for v in sans.ip]
            + [f"email:{v}" for v in sans.email] + [f"URI:{v}" for v in sans.uri])


def _cert(index: int, cert: SimpleCert, theme: Theme, stream: TextIO) -> None:
    p = theme.paint
    print(f"{p(f'[{index}]', theme.index)} {p(cert.subject.name, theme.highlight)}", file=stream)
    print(f"  Issuer: {cert.issuer.name}", file=stream)
    print(f"  Serial: {cert.serial}", file=stream)

    validity = cert.validity
    if validity.valid_in_seconds > 0:
        starts = p(f"not yet valid, starts {humanize(validity.valid_in_seconds)}", theme.bad)
    else:
        starts = humanize(validity.valid_in_seconds)
    print(f"  Not Before: {validity.not_before.isoformat()} ({starts})", file=stream)

    if validity.expires_in_seconds < 0:
        ends = p(f"expired {humanize(validity.expires_in_seconds)}", theme.bad)
    else:
        ends = p(f"expires {humanize(validity.expires_in_seconds)}", theme.good)
    print(f"  Not After:  {validity.not_after.isoformat()} ({ends})", file=stream)

    if validity.valid is not None:
        verdict = p("valid", theme.good) if validity.valid else p(
            f"invalid: {validity.verify_failure_reason}", theme.bad)
        print(f"  Verification: {verdict}", file=stream)

    sans = _sans(cert.subject.subject_alt_names)
    if sans:
        print(f"  SANs: {', '.join(sans)}", file=stream)
    print(f"  Public Key: {describe_key(cert.public_key)}", file=stream)

    usages = _usages(cert.key_usage)
    if usages:
        print(f"  Key Usage: {', '.join(usages)}", file=stream)
    if cert.basic_constraints is not None:
        bc = cert.basic_constraints
        pathlen = f", path length {bc.path_length}" if bc.path_length is not None else ""
        print(f"  CA: {bc.ca}{pathlen}", file=stream)
    if cert.self_signed:
        print("  Self-signed", file=stream)
    print(f"  Signature: {cert.signature.algorithm}", file=stream)
    print(f"  SHA256 Fingerprint: {cert.fingerprints.sha256}", file=stream)


def _csr(index: int, csr: SimpleCsr, theme: Theme, stream: TextIO) -> None:
    p = theme.paint
    print(f"{p(f'[{index}]', theme.index)} {p(csr.subject.name, theme.highlight)}", file=stream)
    sans = _sans(csr.subject.subject_alt_names)
    if sans:
        print(f"  SANs: {', '.join(sans)}", file=stream)
    print(f"  Public Key: {describe_key(csr.public_key)}", file=stream)
    print(f"  Signature: {csr.signature.algorithm}", file=stream)


def _key(index: int, key: Union[SimplePublicKey, SimplePrivateKey], theme: Theme, stream: TextIO) -> None:
    print(f"{theme.paint(f'[{index}]', theme.index)} {describe_key(key)}", file=stream)
    for fingerprint in key.matching_certs:
        print(f"  Matches certificate {fingerprint}", file=stream)


def render_parse_report(report: ParseReport, theme: Theme, stream: TextIO) -> None:
    if report.is_empty():
        print("Nothing found", file=stream)
        return

    sections = (
        ("Certificates", report.certs, _cert),
        ("Certificate Requests", report.csrs, _csr),
        ("Public Keys", report.public_keys, _key),
        ("Private Keys", report.private_keys, _key),
    )
    first = True
    for title, items, show in sections:
        if not items:
            continue
        if not first:
            print(file=stream)
        first = False
        print(theme.paint(f"{title}: {len(items)}", theme.top_level), file=stream)
        for index, item in enumerate(items):
            show(index, item, theme, stream)


def render_connection_report(report: ConnectionReport, theme: Theme, stream: TextIO) -> None:
    p = theme.paint
    tls = report.tls

    print(p(f"Connection to {tls.hostname} ({tls.address})", theme.top_level), file=stream)
    print(f"  Transport: {tls.transport.value.upper()}", file=stream)
    print(f"  Protocol: {tls.protocol_version}", file=stream)
    print(f"  Cipher: {tls.cipher}", file=stream)
    curve = tls.negotiated_curve or "unknown"
    pqc = p("yes", theme.good) if tls.is_pqc else "no"
    print(f"  Key Exchange: {curve} (post-quantum: {pqc})", file=stream)
    print(f"  Timings: dns {tls.time.dns:.1f}ms, connect {tls.time.connect:.1f}ms, "
          f"handshake {tls.time.tls_handshake:.1f}ms", file=stream)

    if report.certs:
        print(file=stream)
        print(p(f"Certificates: {len(report.certs)}", theme.top_level), file=stream)
        for index, cert in enumerate(report.certs):
            _cert(index, cert, theme, stream)
