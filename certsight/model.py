"""Semantic model of certificates, CSRs and keys, plus the builders for it.

The dataclasses here are what gets serialized (JSON) and rendered (text);
they carry no library objects, only plain values. Every hex value is
lower-case with no separators. Fingerprints are digests of the full DER.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import ExtendedKeyUsageOID

from .entities import Cert, CertRequest, DecodedEntity, KeyAlgorithm, PrivateKey, PublicKey, key_algorithm

logger = logging.getLogger(__name__)

# cryptography reports no size for Edwards keys; these are OpenSSL's EVP_PKEY_bits values
_EDWARDS_BITS = {KeyAlgorithm.ED25519: 253, KeyAlgorithm.ED448: 456}

_FAMILY = {
    KeyAlgorithm.RSA:     "rsaEncryption",
    KeyAlgorithm.DSA:     "dsaEncryption",
    KeyAlgorithm.ED25519: "ED25519",
    KeyAlgorithm.ED448:   "ED448",
}


def _hex(value: int) -> str:
    return f"{value:x}"


def serial_hex(value: int) -> str:
    """Serial number as lower-case hex; negative ones as their DER two's complement."""
    if value >= 0:
        return _hex(value)
    size = ((-value - 1).bit_length() + 8) // 8
    return value.to_bytes(size, "big", signed=True).hex()


#
# names & SANs
#

@dataclass
class Sans:
    dns:    List[str] = field(default_factory=list)
    ip:     List[str] = field(default_factory=list)
    email:  List[str] = field(default_factory=list)
    uri:    List[str] = field(default_factory=list)


@dataclass
class Subject:
    name:               str
    subject_alt_names:  Sans = field(default_factory=Sans)


@dataclass
class Issuer:
    name:               str
    subject_alt_names:  Sans = field(default_factory=Sans)


@dataclass
class Validity:
    not_before:             datetime
    not_after:              datetime
    expires_in_seconds:     int
    valid_in_seconds:       int
    # only set after a live verification pass
    valid:                  Optional[bool] = None
    verify_failure_reason:  Optional[str] = None


#
# key kinds: one variant per algorithm, public and private
#

@dataclass(frozen=True)
class RsaPublicKind:
    type:               str = field(default="rsa", init=False)
    size_bits:          int
    modulus_hex:        str
    exponent_decimal:   str


@dataclass(frozen=True)
class DsaPublicKind:
    type:               str = field(default="dsa", init=False)
    size_bits:          int
    p_hex:              str
    q_hex:              str
    g_hex:              str
    public_value_hex:   str


@dataclass(frozen=True)
class EcPublicKind:
    type:                   str = field(default="ec", init=False)
    curve_name:             Optional[str]
    compressed_point_hex:   str


@dataclass(frozen=True)
class Ed25519PublicKind:
    type:               str = field(default="ed25519", init=False)
    public_value_hex:   str


@dataclass(frozen=True)
class Ed448PublicKind:
    type:               str = field(default="ed448", init=False)
    public_value_hex:   str


@dataclass(frozen=True)
class RsaPrivateKind:
    type:                   str = field(default="rsa", init=False)
    size_bits:              int
    modulus_hex:            str
    exponent_decimal:       str
    p_hex:                  str
    q_hex:                  str
    private_exponent_hex:   str


@dataclass(frozen=True)
class DsaPrivateKind:
    type:               str = field(default="dsa", init=False)
    size_bits:          int
    p_hex:              str
    q_hex:              str
    g_hex:              str
    public_value_hex:   str
    private_value_hex:  str


@dataclass(frozen=True)
class EcPrivateKind:
    type:                   str = field(default="ec", init=False)
    curve_name:             Optional[str]
    compressed_point_hex:   str
    private_scalar_hex:     str


@dataclass(frozen=True)
class Ed25519PrivateKind:
    type:               str = field(default="ed25519", init=False)
    public_value_hex:   str
    private_value_hex:  str


@dataclass(frozen=True)
class Ed448PrivateKind:
    type:               str = field(default="ed448", init=False)
    public_value_hex:   str
    private_value_hex:  str


PublicKeyKind = Union[RsaPublicKind, DsaPublicKind, EcPublicKind, Ed25519PublicKind, Ed448PublicKind]
PrivateKeyKind = Union[RsaPrivateKind, DsaPrivateKind, EcPrivateKind, Ed25519PrivateKind, Ed448PrivateKind]


@dataclass
class SimplePublicKey:
    bits:               int
    curve_or_family:    str
    kind:               PublicKeyKind
    pem:                Optional[str] = None
    matching_certs:     List[str] = field(default_factory=list)


@dataclass
class SimplePrivateKey:
    bits:               int
    curve_or_family:    str
    kind:               PrivateKeyKind
    pem:                Optional[str] = None
    matching_certs:     List[str] = field(default_factory=list)


#
# usage, signature, fingerprints
#

@dataclass
class ExtendedKeyUsage:
    critical:           bool = False
    server_auth:        bool = False
    client_auth:        bool = False
    code_signing:       bool = False
    email_protection:   bool = False
    time_stamping:      bool = False
    ocsp_signing:       bool = False
    custom:             List[str] = field(default_factory=list)


@dataclass
class SimpleKeyUsage:
    critical:           bool = False
    digital_signature:  bool = False
    content_commitment: bool = False
    key_encipherment:   bool = False
    data_encipherment:  bool = False
    key_agreement:      bool = False
    key_cert_sign:      bool = False
    crl_sign:           bool = False
    encipher_only:      bool = False
    decipher_only:      bool = False
    extended:           ExtendedKeyUsage = field(default_factory=ExtendedKeyUsage)


@dataclass
class BasicConstraints:
    ca:             bool
    path_length:    Optional[int] = None


@dataclass
class Signature:
    algorithm:  str
    value:      str


@dataclass
class Fingerprints:
    sha256: str
    sha1:   str
    md5:    str


@dataclass
class SimpleCert:
    subject:            Subject
    issuer:             Issuer
    serial:             str
    validity:           Validity
    subject_key_id:     Optional[str]
    authority_key_id:   Optional[str]
    public_key:         SimplePublicKey
    key_usage:          SimpleKeyUsage
    basic_constraints:  Optional[BasicConstraints]
    signature:          Signature
    fingerprints:       Fingerprints
    self_signed:        bool
    raw_pem:            str


@dataclass
class SimpleCsr:
    subject:    Subject
    public_key: SimplePublicKey
    signature:  Signature
    raw_pem:    str


#
# builders
#

def _extension(extensions: x509.Extensions, ext_type: type) -> Optional[x509.Extension]:
    try:
        return extensions.get_extension_for_class(ext_type)
    except x509.ExtensionNotFound:
        return None


def partition_sans(names: Optional[x509.GeneralNames]) -> Sans:
    """Split a general-name list into dns/ip/email/uri, keeping source order."""
    sans = Sans()
    if names is None:
        return sans

    for name in names:
        if isinstance(name, x509.DNSName):
            sans.dns.append(name.value)
        elif isinstance(name, x509.IPAddress):
            sans.ip.append(str(name.value))
        elif isinstance(name, x509.RFC822Name):
            sans.email.append(name.value)
        elif isinstance(name, x509.UniformResourceIdentifier):
            sans.uri.append(name.value)
        else:
            logger.debug(f"Ignoring {type(name).__name__} alt name")
    return sans


def _alt_names(extensions: x509.Extensions, ext_type: type) -> Sans:
    ext = _extension(extensions, ext_type)
    return partition_sans(ext.value if ext else None)


def _oid_name(oid: x509.ObjectIdentifier) -> str:
    return oid._name if oid._name and oid._name != "Unknown OID" else oid.dotted_string


def build_validity(cert: x509.Certificate, now: Optional[datetime] = None) -> Validity:
    now = now or datetime.now(timezone.utc)
    not_before = cert.not_valid_before_utc
    not_after = cert.not_valid_after_utc
    return Validity(
        not_before=not_before,
        not_after=not_after,
        expires_in_seconds=int((not_after - now).total_seconds()),
        valid_in_seconds=int((not_before - now).total_seconds()),
    )


def build_key_usage(extensions: x509.Extensions) -> SimpleKeyUsage:
    usage = SimpleKeyUsage()

    ext = _extension(extensions, x509.KeyUsage)
    if ext is not None:
        ku = ext.value
        usage.critical = ext.critical
        usage.digital_signature = ku.digital_signature
        usage.content_commitment = ku.content_commitment
        usage.key_encipherment = ku.key_encipherment
        usage.data_encipherment = ku.data_encipherment
        usage.key_agreement = ku.key_agreement
        usage.key_cert_sign = ku.key_cert_sign
        usage.crl_sign = ku.crl_sign
        # only defined when key_agreement is set
        if ku.key_agreement:
            usage.encipher_only = ku.encipher_only
            usage.decipher_only = ku.decipher_only

    ext = _extension(extensions, x509.ExtendedKeyUsage)
    if ext is not None:
        eku = usage.extended
        eku.critical = ext.critical
        for oid in ext.value:
            if oid == ExtendedKeyUsageOID.SERVER_AUTH:
                eku.server_auth = True
            elif oid == ExtendedKeyUsageOID.CLIENT_AUTH:
                eku.client_auth = True
            elif oid == ExtendedKeyUsageOID.CODE_SIGNING:
                eku.code_signing = True
            elif oid == ExtendedKeyUsageOID.EMAIL_PROTECTION:
                eku.email_protection = True
            elif oid == ExtendedKeyUsageOID.TIME_STAMPING:
                eku.time_stamping = True
            elif oid == ExtendedKeyUsageOID.OCSP_SIGNING:
                eku.ocsp_signing = True
            else:
                eku.custom.append(oid.dotted_string)

    return usage


def build_public_key(key: Any, pem: Optional[str] = None) -> SimplePublicKey:
    """Project a cryptography public key onto its KeyKind variant."""
    algorithm = key_algorithm(key)

    if algorithm is KeyAlgorithm.RSA:
        numbers = key.public_numbers()
        kind = RsaPublicKind(
            size_bits=key.key_size,
            modulus_hex=_hex(numbers.n),
            exponent_decimal=str(numbers.e),
        )
        bits = key.key_size
    elif algorithm is KeyAlgorithm.DSA:
        params = key.parameters().parameter_numbers()
        kind = DsaPublicKind(
            size_bits=key.key_size,
            p_hex=_hex(params.p),
            q_hex=_hex(params.q),
            g_hex=_hex(params.g),
            public_value_hex=_hex(key.public_numbers().y),
        )
        bits = key.key_size
    elif algorithm is KeyAlgorithm.EC:
        kind = EcPublicKind(
            curve_name=key.curve.name,
            compressed_point_hex=key.public_bytes(
                serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint
            ).hex(),
        )
        bits = key.curve.key_size
    elif algorithm in (KeyAlgorithm.ED25519, KeyAlgorithm.ED448):
        raw = key.public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw).hex()
        if algorithm is KeyAlgorithm.ED25519:
            kind = Ed25519PublicKind(public_value_hex=raw)
        else:
            kind = Ed448PublicKind(public_value_hex=raw)
        bits = _EDWARDS_BITS[algorithm]
    else:
        # the decoder only lets the five algorithms above through
        raise TypeError(f"unsupported public key type {type(key).__name__}")

    family = key.curve.name if algorithm is KeyAlgorithm.EC else _FAMILY[algorithm]
    if pem is None:
        pem = key.public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode("ascii")

    return SimplePublicKey(bits=bits, curve_or_family=family, kind=kind, pem=pem)


def build_private_key(key: Any, pem: Optional[str] = None) -> SimplePrivateKey:
    """Project a cryptography private key onto its KeyKind variant."""
    algorithm = key_algorithm(key)

    if algorithm is KeyAlgorithm.RSA:
        numbers = key.private_numbers()
        kind = RsaPrivateKind(
            size_bits=key.key_size,
            modulus_hex=_hex(numbers.public_numbers.n),
            exponent_decimal=str(numbers.public_numbers.e),
            p_hex=_hex(numbers.p),
            q_hex=_hex(numbers.q),
            private_exponent_hex=_hex(numbers.d),
        )
        bits = key.key_size
    elif algorithm is KeyAlgorithm.DSA:
        numbers = key.private_numbers()
        params = numbers.public_numbers.parameter_numbers
        kind = DsaPrivateKind(
            size_bits=key.key_size,
            p_hex=_hex(params.p),
            q_hex=_hex(params.q),
            g_hex=_hex(params.g),
            public_value_hex=_hex(numbers.public_numbers.y),
            private_value_hex=_hex(numbers.x),
        )
        bits = key.key_size
    elif algorithm is KeyAlgorithm.EC:
        kind = EcPrivateKind(
            curve_name=key.curve.name,
            compressed_point_hex=key.public_key().public_bytes(
                serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint
            ).hex(),
            private_scalar_hex=_hex(key.private_numbers().private_value),
        )
        bits = key.curve.key_size
    elif algorithm in (KeyAlgorithm.ED25519, KeyAlgorithm.ED448):
        public_raw = key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        ).hex()
        private_raw = key.private_bytes(
            serialization.Encoding.Raw, serialization.PrivateFormat.Raw, serialization.NoEncryption()
        ).hex()
        if algorithm is KeyAlgorithm.ED25519:
            kind = Ed25519PrivateKind(public_value_hex=public_raw, private_value_hex=private_raw)
        else:
            kind = Ed448PrivateKind(public_value_hex=public_raw, private_value_hex=private_raw)
        bits = _EDWARDS_BITS[algorithm]
    else:
        raise TypeError(f"unsupported private key type {type(key).__name__}")

    family = key.curve.name if algorithm is KeyAlgorithm.EC else _FAMILY[algorithm]
    return SimplePrivateKey(bits=bits, curve_or_family=family, kind=kind, pem=pem)


def _is_self_signed(cert: x509.Certificate) -> bool:
    if cert.subject != cert.issuer:
        return False
    try:
        cert.verify_directly_issued_by(cert)
    except (ValueError, TypeError, InvalidSignature, UnsupportedAlgorithm):
        return False
    return True


def build_cert(cert: x509.Certificate, pem: Optional[str] = None, now: Optional[datetime] = None) -> SimpleCert:
    extensions = cert.extensions

    ski = _extension(extensions, x509.SubjectKeyIdentifier)
    aki = _extension(extensions, x509.AuthorityKeyIdentifier)
    bc = _extension(extensions, x509.BasicConstraints)

    if pem is None:
        pem = cert.public_bytes(serialization.Encoding.PEM).decode("ascii")

    return SimpleCert(
        subject=Subject(
            name=cert.subject.rfc4514_string(),
            subject_alt_names=_alt_names(extensions, x509.SubjectAlternativeName),
        ),
        issuer=Issuer(
            name=cert.issuer.rfc4514_string(),
            subject_alt_names=_alt_names(extensions, x509.IssuerAlternativeName),
        ),
        serial=serial_hex(cert.serial_number),
        validity=build_validity(cert, now),
        subject_key_id=ski.value.digest.hex() if ski else None,
        authority_key_id=(aki.value.key_identifier.hex()
                          if aki and aki.value.key_identifier is not None else None),
        public_key=build_public_key(cert.public_key()),
        key_usage=build_key_usage(extensions),
        basic_constraints=BasicConstraints(ca=bc.value.ca, path_length=bc.value.path_length) if bc else None,
        signature=Signature(
            algorithm=_oid_name(cert.signature_algorithm_oid),
            value=cert.signature.hex(),
        ),
        fingerprints=Fingerprints(
            sha256=cert.fingerprint(hashes.SHA256()).hex(),
            sha1=cert.fingerprint(hashes.SHA1()).hex(),
            md5=cert.fingerprint(hashes.MD5()).hex(),
        ),
        self_signed=_is_self_signed(cert),
        raw_pem=pem,
    )


def build_csr(csr: x509.CertificateSigningRequest, pem: Optional[str] = None) -> SimpleCsr:
    if pem is None:
        pem = csr.public_bytes(serialization.Encoding.PEM).decode("ascii")

    return SimpleCsr(
        subject=Subject(
            name=csr.subject.rfc4514_string(),
            subject_alt_names=_alt_names(csr.extensions, x509.SubjectAlternativeName),
        ),
        public_key=build_public_key(csr.public_key()),
        signature=Signature(
            algorithm=_oid_name(csr.signature_algorithm_oid),
            value=csr.signature.hex(),
        ),
        raw_pem=pem,
    )


ModelItem = Union[SimpleCert, SimpleCsr, SimplePublicKey, SimplePrivateKey]


def build(entity: DecodedEntity, now: Optional[datetime] = None) -> ModelItem:
    if isinstance(entity, Cert):
        return build_cert(entity.obj, entity.pem, now)
    if isinstance(entity, CertRequest):
        return build_csr(entity.obj, entity.pem)
    if isinstance(entity, PublicKey):
        return build_public_key(entity.obj, entity.pem)
    if isinstance(entity, PrivateKey):
        return build_private_key(entity.obj, entity.pem)
    raise TypeError(f"not a decoded entity: {type(entity).__name__}")


def apply_verify_result(cert: SimpleCert, reason: Optional[str]) -> None:
    """Record a live verification outcome (None means it verified)."""
    cert.validity.valid = reason is None
    cert.validity.verify_failure_reason = reason


def _spki(key: Any) -> bytes:
    return key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)


@dataclass
class ParseReport:
    certs:          List[SimpleCert] = field(default_factory=list)
    csrs:           List[SimpleCsr] = field(default_factory=list)
    public_keys:    List[SimplePublicKey] = field(default_factory=list)
    private_keys:   List[SimplePrivateKey] = field(default_factory=list)

    @classmethod
    def from_entities(cls, entities: List[DecodedEntity], now: Optional[datetime] = None) -> "ParseReport":
        """Build every entity, in source order, and pair keys with certs."""
        report = cls()
        cert_keys: Dict[bytes, List[str]] = {}
        keys = []

        for entity in entities:
            item = build(entity, now)
            if isinstance(item, SimpleCert):
                report.certs.append(item)
                cert_keys.setdefault(_spki(entity.obj.public_key()), []).append(item.fingerprints.sha256)
            elif isinstance(item, SimpleCsr):
                report.csrs.append(item)
            elif isinstance(item, SimplePublicKey):
                report.public_keys.append(item)
                keys.append((entity.obj, item))
            else:
                report.private_keys.append(item)
                keys.append((entity.obj.public_key(), item))

        for public, item in keys:
            matches = cert_keys.get(_spki(public), [])
            if matches:
                item.matching_certs.extend(matches)
                logger.info(f"{item.curve_or_family} key matches {len(matches)} certificate(s)")

        return report

    def kinds(self) -> Dict[str, list]:
        return {
            "certs": self.certs,
            "csrs": self.csrs,
            "public_keys": self.public_keys,
            "private_keys": self.private_keys,
        }

    def is_empty(self) -> bool:
        return not any(self.kinds().values())
