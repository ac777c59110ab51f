from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from conftest import INTER_SHA256, LEAF_SHA256, ROOT_SHA256
from certsight.entities import decode_buffer
from certsight.model import (DsaPrivateKind, EcPrivateKind, EcPublicKind, Ed448PrivateKind, Ed25519PrivateKind,
                             Ed25519PublicKind, ParseReport, RsaPrivateKind, RsaPublicKind, SimpleCert, SimpleCsr,
                             SimplePrivateKey, SimplePublicKey, apply_verify_result, build, build_cert,
                             serial_hex)

NOW = datetime(2026, 10, 18, 19, 7, 49, tzinfo=timezone.utc)

ED25519_PUBLIC = "a0497f8cb1febd39013baf78d7e58f7fb3c8f2f5c8a476d12a67ca069e8451e1"


def load_one(read_data, name):
    result = decode_buffer(read_data(name))
    assert len(result.entities) == 1
    return build(result.entities[0], NOW)


@pytest.fixture
def leaf(read_data):
    return load_one(read_data, "leaf.pem")


def test_leaf_names_and_serial(leaf):
    assert isinstance(leaf, SimpleCert)
    assert leaf.subject.name == "CN=localhost,O=Certsight Test,C=US"
    assert leaf.issuer.name == "CN=Certsight Test Intermediate,O=Certsight Test,C=US"
    assert leaf.serial == "a1b2c3d"


@pytest.mark.parametrize("value, expected", [
    (0,         "0"),
    (0xa1b2c3d, "a1b2c3d"),
    (-1,        "ff"),
    (-128,      "80"),
    (-129,      "ff7f"),
    (-0x1a2b,   "e5d5"),
])
def test_serial_hex_never_signed(value, expected):
    assert serial_hex(value) == expected


def test_leaf_sans_partitioned_in_source_order(leaf):
    sans = leaf.subject.subject_alt_names
    assert sans.dns == ["localhost", "www.certsight.test"]
    assert sans.ip == ["127.0.0.1", "::1"]
    assert sans.email == ["ops@certsight.test"]
    assert sans.uri == ["https://certsight.test/leaf"]
    assert leaf.issuer.subject_alt_names.dns == []


def test_fingerprints_are_over_full_der(leaf):
    assert leaf.fingerprints.sha256 == LEAF_SHA256
    assert leaf.fingerprints.sha1 == "a79bc0eebfee3a7f03b91808d704841b30dac2c1"
    assert leaf.fingerprints.md5 == "d90cbb67f1f6ca5860dc61d2a470c3cd"


def test_validity_relative_to_build_time(leaf):
    validity = leaf.validity
    assert validity.not_before == datetime(2026, 10, 17, 19, 7, 49, tzinfo=timezone.utc)
    assert validity.valid_in_seconds == -86400
    assert validity.expires_in_seconds == int((validity.not_after - NOW).total_seconds())
    # only a live verification pass sets these
    assert validity.valid is None
    assert validity.verify_failure_reason is None


def test_key_identifiers(leaf):
    assert leaf.subject_key_id == "2f49c9505d5fc4abdb0a85d1619215cc33caaef8"
    assert leaf.authority_key_id == "5eefb1aa8470eac19db9f3ce8cf10924846b9bec"


def test_key_usage_and_eku(leaf):
    usage = leaf.key_usage
    assert usage.critical
    assert usage.digital_signature and usage.key_encipherment
    assert not usage.key_cert_sign
    assert usage.extended.server_auth and usage.extended.client_auth
    assert not usage.extended.code_signing
    assert usage.extended.custom == ["1.3.6.1.4.1.55555.7.1"]


def test_leaf_public_key_and_signature(leaf):
    key = leaf.public_key
    assert key.bits == 2048
    assert key.curve_or_family == "rsaEncryption"
    assert isinstance(key.kind, RsaPublicKind)
    assert key.kind.type == "rsa"
    assert key.kind.exponent_decimal == "65537"
    assert key.kind.modulus_hex == key.kind.modulus_hex.lower()
    assert leaf.signature.algorithm == "ecdsa-with-SHA256"
    assert leaf.signature.value == leaf.signature.value.lower()


def test_basic_constraints_and_self_signed(read_data, leaf):
    root = load_one(read_data, "root.pem")
    inter = load_one(read_data, "inter.pem")

    assert leaf.basic_constraints.ca is False
    assert root.basic_constraints.ca is True
    assert inter.basic_constraints.path_length == 0
    assert root.self_signed
    assert not inter.self_signed
    assert not leaf.self_signed
    assert root.fingerprints.sha256 == ROOT_SHA256
    assert inter.fingerprints.sha256 == INTER_SHA256
    assert inter.public_key.curve_or_family == "secp256r1"


def test_optional_extensions_stay_unset():
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "bare")])
    cert = (x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(1)
            .not_valid_before(NOW - timedelta(days=1))
            .not_valid_after(NOW + timedelta(days=1))
            .sign(key, hashes.SHA256()))

    simple = build_cert(cert, now=NOW)
    assert simple.subject_key_id is None
    assert simple.authority_key_id is None
    assert simple.basic_constraints is None
    assert simple.key_usage.critical is False
    assert simple.self_signed
    assert simple.validity.expires_in_seconds == 86400
    assert simple.raw_pem.startswith("-----BEGIN CERTIFICATE-----")


def test_csr(read_data):
    csr = load_one(read_data, "request.csr")

    assert isinstance(csr, SimpleCsr)
    assert csr.subject.name == "CN=csr.certsight.test,O=Certsight Test,C=US"
    assert csr.subject.subject_alt_names.dns == ["csr.certsight.test", "alt.certsight.test"]
    assert csr.subject.subject_alt_names.email == ["csr@certsight.test"]
    assert isinstance(csr.public_key.kind, EcPublicKind)
    assert csr.public_key.kind.curve_name == "secp384r1"
    assert not hasattr(csr, "validity")


@pytest.mark.parametrize("name, kind, bits", [
    ("rsa_traditional.pem",  RsaPrivateKind,     2048),
    ("ec_private.pem",       EcPrivateKind,      384),
    ("dsa_private.pem",      DsaPrivateKind,     2048),
    ("ed25519_private.pem",  Ed25519PrivateKind, 253),
    ("ed448_private.pem",    Ed448PrivateKind,   456),
])
def test_private_key_kinds(read_data, name, kind, bits):
    key = load_one(read_data, name)

    assert isinstance(key, SimplePrivateKey)
    assert isinstance(key.kind, kind)
    assert key.bits == bits
    assert key.pem.startswith("-----BEGIN ")


def test_ec_point_is_compressed(read_data):
    key = load_one(read_data, "ec_public.pem")

    assert isinstance(key, SimplePublicKey)
    assert key.kind.compressed_point_hex[:2] in ("02", "03")
    assert len(key.kind.compressed_point_hex) == 2 * (1 + 48)
    assert key.curve_or_family == "secp384r1"


def test_ed25519_public_value(read_data):
    key = load_one(read_data, "ed25519_public.pem")

    assert isinstance(key.kind, Ed25519PublicKind)
    assert key.kind.public_value_hex == ED25519_PUBLIC
    assert key.curve_or_family == "ED25519"


def test_rsa_private_fields(read_data):
    key = load_one(read_data, "rsa_traditional.pem")

    assert key.kind.exponent_decimal == "65537"
    p, q = int(key.kind.p_hex, 16), int(key.kind.q_hex, 16)
    assert p * q == int(key.kind.modulus_hex, 16)


def test_report_preserves_kinds_and_order(read_data):
    report = ParseReport.from_entities(decode_buffer(read_data("chain.pem")).entities, NOW)

    assert [c.fingerprints.sha256 for c in report.certs] == [LEAF_SHA256, INTER_SHA256, ROOT_SHA256]
    assert report.csrs == [] and report.public_keys == [] and report.private_keys == []


def test_private_key_matches_its_certificate(read_data):
    data = read_data("leaf.pem") + read_data("leaf.key") + read_data("ec_private.pem")
    report = ParseReport.from_entities(decode_buffer(data).entities, NOW)

    assert report.private_keys[0].matching_certs == [LEAF_SHA256]
    assert report.private_keys[1].matching_certs == []


def test_apply_verify_result(leaf):
    apply_verify_result(leaf, None)
    assert leaf.validity.valid is True
    assert leaf.validity.verify_failure_reason is None

    apply_verify_result(leaf, "unable to get local issuer certificate")
    assert leaf.validity.valid is False
    assert leaf.validity.verify_failure_reason == "unable to get local issuer certificate"


def test_build_rejects_non_entities():
    with pytest.raises(TypeError):
        build(object())

