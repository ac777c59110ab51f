import pytest
from cryptography import x509

from certsight.entities import (Cert, CertRequest, KeyAlgorithm, Label, PrivateKey, PublicKey, classify,
                                decode_block, decode_buffer, decode_der_certificate, key_algorithm)
from certsight.errors import DecodeError, UnknownLabelError
from certsight.pem import RawPemBlock, scan_pem_blocks


def first_block(data):
    return next(scan_pem_blocks(data))


def test_classify_known_labels():
    assert classify("CERTIFICATE") is Label.CERTIFICATE
    assert classify("RSA PUBLIC KEY") is Label.RSA_PUBLIC_KEY
    assert classify("EC PRIVATE KEY") is Label.EC_PRIVATE_KEY


def test_classify_is_verbatim():
    with pytest.raises(UnknownLabelError):
        classify("certificate")
    with pytest.raises(UnknownLabelError):
        classify("X509 CRL")


@pytest.mark.parametrize("name, kind, algorithm", [
    ("leaf.pem",             Cert,        None),
    ("request.csr",          CertRequest, None),
    ("rsa_public.pem",       PublicKey,   KeyAlgorithm.RSA),
    ("rsa_public_pkcs1.pem", PublicKey,   KeyAlgorithm.RSA),
    ("rsa_traditional.pem",  PrivateKey,  KeyAlgorithm.RSA),
    ("ec_private.pem",       PrivateKey,  KeyAlgorithm.EC),
    ("ec_public.pem",        PublicKey,   KeyAlgorithm.EC),
    ("dsa_private.pem",      PrivateKey,  KeyAlgorithm.DSA),
    ("dsa_public.pem",       PublicKey,   KeyAlgorithm.DSA),
    ("ed25519_private.pem",  PrivateKey,  KeyAlgorithm.ED25519),
    ("ed25519_public.pem",   PublicKey,   KeyAlgorithm.ED25519),
    ("ed448_private.pem",    PrivateKey,  KeyAlgorithm.ED448),
])
def test_decode_block(read_data, name, kind, algorithm):
    entity = decode_block(first_block(read_data(name)))

    assert isinstance(entity, kind)
    if algorithm is not None:
        assert key_algorithm(entity.obj) is algorithm


def test_unsupported_key_algorithm_is_a_decode_error(read_data):
    block = first_block(read_data("x25519_public.pem"))
    with pytest.raises(DecodeError) as e:
        decode_block(block)
    assert e.value.span == block.span


def test_label_must_match_key_algorithm(read_data):
    block = first_block(read_data("ec_public.pem"))
    mislabelled = RawPemBlock(span=block.span, label="RSA PUBLIC KEY", payload=block.payload)
    with pytest.raises(DecodeError):
        decode_block(mislabelled)


def test_unknown_label_carries_span():
    block = RawPemBlock(span=(3, 40), label="X509 CRL", payload=b"\x30\x00")
    with pytest.raises(UnknownLabelError) as e:
        decode_block(block)
    assert e.value.span == (3, 40)
    assert "X509 CRL" in e.value.describe()


def test_bad_der_under_known_label():
    block = RawPemBlock(span=(0, 10), label="CERTIFICATE", payload=b"not der at all")
    with pytest.raises(DecodeError):
        decode_block(block)


def test_mixed_bundle_skips_failures(read_data):
    result = decode_buffer(read_data("mixed.pem"))

    assert [type(e) for e in result.entities] == [Cert, CertRequest, PrivateKey, PublicKey]
    assert len(result.failures) == 2
    assert any(isinstance(f, UnknownLabelError) and f.label == "X509 CRL" for f in result.failures)


def test_entity_pem_preserves_der(read_data):
    result = decode_buffer(read_data("mixed.pem"))
    for entity in result.entities:
        assert first_block(entity.pem.encode()).payload == entity.der


def test_raw_der_fallback(read_data):
    result = decode_buffer(read_data("leaf.der"))

    assert len(result.entities) == 1
    cert = result.entities[0]
    assert isinstance(cert, Cert)
    assert isinstance(cert.obj, x509.Certificate)
    assert cert.label == "CERTIFICATE"


def test_raw_garbage_is_one_failure():
    result = decode_buffer(b"\x01\x02\x03 definitely not a certificate")

    assert result.entities == []
    assert len(result.failures) == 1


def test_empty_input():
    result = decode_buffer(b"  \n")
    assert result.entities == []
    assert result.failures == []


def test_decode_der_certificate_rejects_garbage():
    with pytest.raises(DecodeError):
        decode_der_certificate(b"\x30\x03\x02\x01\x00")


def test_escaped_json_bundle(read_data):
    result = decode_buffer(read_data("escaped.json"))

    assert len(result.entities) == 2
    assert result.entities[0].der == read_data("leaf.der")
