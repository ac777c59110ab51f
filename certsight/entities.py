"""Classify PEM blocks by label and decode them with ``cryptography``.

Every recognized label maps to one decode entry point; whatever comes back is
wrapped in one of four immutable entity types (Cert, CertRequest, PublicKey,
PrivateKey). Keys are additionally checked against the closed set of
algorithms the model knows how to describe (RSA, DSA, EC, Ed25519, Ed448), so
anything outside it is rejected here as a per-block DecodeError.
"""

import logging
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa

from .errors import DecodeError, UnknownLabelError
from .pem import RawPemBlock, armor, has_pem_markers, scan_pem_blocks

logger = logging.getLogger(__name__)


class Label(Enum):
    """PEM labels we know how to decode (matched verbatim)."""
    CERTIFICATE         = "CERTIFICATE"
    CERTIFICATE_REQUEST = "CERTIFICATE REQUEST"
    PUBLIC_KEY          = "PUBLIC KEY"
    RSA_PUBLIC_KEY      = "RSA PUBLIC KEY"
    RSA_PRIVATE_KEY     = "RSA PRIVATE KEY"
    PRIVATE_KEY         = "PRIVATE KEY"
    EC_PRIVATE_KEY      = "EC PRIVATE KEY"


class KeyAlgorithm(Enum):
    RSA     = "rsa"
    DSA     = "dsa"
    EC      = "ec"
    ED25519 = "ed25519"
    ED448   = "ed448"


_KEY_TYPES = (
    (KeyAlgorithm.RSA,     rsa.RSAPublicKey,               rsa.RSAPrivateKey),
    (KeyAlgorithm.DSA,     dsa.DSAPublicKey,               dsa.DSAPrivateKey),
    (KeyAlgorithm.EC,      ec.EllipticCurvePublicKey,      ec.EllipticCurvePrivateKey),
    (KeyAlgorithm.ED25519, ed25519.Ed25519PublicKey,       ed25519.Ed25519PrivateKey),
    (KeyAlgorithm.ED448,   ed448.Ed448PublicKey,           ed448.Ed448PrivateKey),
)


def key_algorithm(key: Any) -> Optional[KeyAlgorithm]:
    """Algorithm of a public or private key object, or None if unsupported."""
    for algorithm, public_type, private_type in _KEY_TYPES:
        if isinstance(key, (public_type, private_type)):
            return algorithm
    return None


@dataclass(frozen=True)
class _Entity:
    obj:    Any
    der:    bytes
    label:  str
    span:   Optional[Tuple[int, int]] = None

    @property
    def pem(self) -> str:
        """PEM text for the exact DER bytes we decoded, under the source label."""
        return armor(self.label, self.der)


@dataclass(frozen=True)
class Cert(_Entity):
    obj: x509.Certificate


@dataclass(frozen=True)
class CertRequest(_Entity):
    obj: x509.CertificateSigningRequest


@dataclass(frozen=True)
class PublicKey(_Entity):
    pass


@dataclass(frozen=True)
class PrivateKey(_Entity):
    pass


DecodedEntity = Union[Cert, CertRequest, PublicKey, PrivateKey]


@dataclass
class DecodeResult:
    entities: List[DecodedEntity] = field(default_factory=list)
    failures: List[DecodeError] = field(default_factory=list)


def classify(label: str) -> Label:
    try:
        return Label(label)
    except ValueError:
        raise UnknownLabelError(f"unknown PEM label '{label}'", label=label) from None


def _check_key(key: Any, expected: Optional[KeyAlgorithm]) -> None:
    algorithm = key_algorithm(key)
    if algorithm is None:
        raise ValueError(f"unsupported key type {type(key).__name__}")
    if expected is not None and algorithm is not expected:
        raise ValueError(f"expected {expected.name} key, found {algorithm.name}")


def _load_certificate(der: bytes) -> x509.Certificate:
    # Suppress warnings (negative serials and friends)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        cert = x509.load_der_x509_certificate(der)
        # malformed extensions surface here, not halfway through the model
        cert.extensions
        _check_key(cert.public_key(), None)
    return cert


def _load_csr(der: bytes) -> x509.CertificateSigningRequest:
    csr = x509.load_der_x509_csr(der)
    csr.extensions
    _check_key(csr.public_key(), None)
    return csr


def _public_loader(expected: Optional[KeyAlgorithm]) -> Callable[[bytes], Any]:
    def load(der: bytes) -> Any:
        # also accepts bare PKCS#1 RSAPublicKey structures
        key = serialization.load_der_public_key(der)
        _check_key(key, expected)
        return key
    return load


def _private_loader(expected: Optional[KeyAlgorithm]) -> Callable[[bytes], Any]:
    def load(der: bytes) -> Any:
        key = serialization.load_der_private_key(der, password=None)
        _check_key(key, expected)
        return key
    return load


_DECODERS: Dict[Label, Tuple[type, Callable[[bytes], Any]]] = {
    Label.CERTIFICATE:          (Cert,        _load_certificate),
    Label.CERTIFICATE_REQUEST:  (CertRequest, _load_csr),
    Label.PUBLIC_KEY:           (PublicKey,   _public_loader(None)),
    Label.RSA_PUBLIC_KEY:       (PublicKey,   _public_loader(KeyAlgorithm.RSA)),
    Label.RSA_PRIVATE_KEY:      (PrivateKey,  _private_loader(KeyAlgorithm.RSA)),
    Label.PRIVATE_KEY:          (PrivateKey,  _private_loader(None)),
    Label.EC_PRIVATE_KEY:       (PrivateKey,  _private_loader(KeyAlgorithm.EC)),
}


def decode_block(block: RawPemBlock) -> DecodedEntity:
    """Decode one PEM block; raises UnknownLabelError or DecodeError."""
    try:
        label = classify(block.label)
    except UnknownLabelError as e:
        e.span = block.span
        raise

    kind, load = _DECODERS[label]
    try:
        obj = load(block.payload)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise DecodeError(f"could not decode {block.label}: {e}", span=block.span, label=block.label) from e
    return kind(obj=obj, der=block.payload, label=block.label, span=block.span)


def decode_der_certificate(data: bytes) -> Cert:
    """Auto-detect path: treat the whole buffer as one DER certificate."""
    span = (0, len(data))
    try:
        cert = _load_certificate(data)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise DecodeError(f"no PEM blocks found and input is not a DER certificate: {e}",
                          span=span, label=Label.CERTIFICATE.value) from e
    return Cert(obj=cert, der=data, label=Label.CERTIFICATE.value, span=span)


def decode_buffer(data: bytes) -> DecodeResult:
    """Scan, classify and decode everything in ``data``.

    Failures are collected and logged, never raised: one broken block does
    not stop the rest of the buffer from being decoded.
    """
    result = DecodeResult()

    if not has_pem_markers(data):
        if not data.strip():
            logger.warning("Input is empty")
            return result
        logger.info("No PEM markers found, trying input as a DER certificate")
        try:
            result.entities.append(decode_der_certificate(data))
        except DecodeError as e:
            logger.warning(f"Skipping input: {e.describe()}")
            result.failures.append(e)
        return result

    for item in scan_pem_blocks(data):
        if isinstance(item, DecodeError):
            logger.warning(f"Skipping block: {item.describe()}")
            result.failures.append(item)
            continue

        try:
            entity = decode_block(item)
        except DecodeError as e:
            logger.warning(f"Skipping block: {e.describe()}")
            result.failures.append(e)
            continue

        logger.debug(f"Decoded {type(entity).__name__} from '{item.label}' at {item.span}")
        result.entities.append(entity)

    logger.info(f"Decoded {len(result.entities)} block(s), skipped {len(result.failures)}")
    return result
