"""
Unit tests for RequestSigner.
"""

import base64
import hashlib
import re
from datetime import timedelta

import pytest
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding
from cryptography.hazmat.primitives import serialization

from service_docgate.app.signing.request import RequestDescriptor
from service_docgate.app.signing.signer import RequestSigner
from shared.errors import MalformedCredential, SigningFailed, UnsupportedHeader
from shared.test_helpers import (
    FIXED_TIME,
    create_test_credential,
    fixed_clock,
    generate_private_key,
    private_key_pem,
)


AUTH_PATTERN = re.compile(
    r'^Signature version="1",keyId="(?P<key_id>[^"]+)",algorithm="rsa-sha256",'
    r'headers="(?P<headers>[^"]+)",signature="(?P<signature>[^"]+)"$'
)

OBJECT_URL = "https://objectstorage.eu-amsterdam-1.oraclecloud.com/n/testns/b/pdfstore/o/report.pdf"


def parse_authorization(value):
    match = AUTH_PATTERN.match(value)
    assert match is not None, value
    return match.groupdict()


class TestRequestSigner:
    """Test cases for RequestSigner."""

    @pytest.fixture
    def credential(self):
        return create_test_credential()

    @pytest.fixture
    def signer(self):
        return RequestSigner(clock=fixed_clock())

    def test_get_signs_default_headers(self, signer, credential):
        signed = signer.sign(RequestDescriptor("GET", OBJECT_URL), credential)

        auth = parse_authorization(signed.headers["authorization"])
        assert auth["headers"] == "date (request-target) host"
        assert auth["key_id"] == credential.key_id
        assert signed.headers["date"] == "Mon, 15 Jan 2024 12:00:00 GMT"
        assert signed.headers["host"] == "objectstorage.eu-amsterdam-1.oraclecloud.com"
        assert "(request-target)" not in signed.headers

    def test_signature_verifies_with_public_key(self, signer, credential):
        signed = signer.sign(RequestDescriptor("GET", OBJECT_URL + "?fields=name"), credential)

        auth = parse_authorization(signed.headers["authorization"])
        signing_string = (
            f"date: {signed.headers['date']}\n"
            "(request-target): get /n/testns/b/pdfstore/o/report.pdf?fields=name\n"
            "host: objectstorage.eu-amsterdam-1.oraclecloud.com"
        )
        public_key = generate_private_key().public_key()
        public_key.verify(
            base64.b64decode(auth["signature"]),
            signing_string.encode("ascii"),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )

    def test_signature_is_deterministic(self, signer, credential):
        descriptor = RequestDescriptor("GET", OBJECT_URL)

        first = signer.sign(descriptor, credential)
        second = signer.sign(descriptor, credential)

        assert first.headers["authorization"] == second.headers["authorization"]

    def test_different_timestamps_give_different_signatures(self, credential):
        descriptor = RequestDescriptor("GET", OBJECT_URL)
        later = RequestSigner(clock=fixed_clock(FIXED_TIME + timedelta(seconds=1)))

        first = RequestSigner(clock=fixed_clock()).sign(descriptor, credential)
        second = later.sign(descriptor, credential)

        assert first.headers["date"] != second.headers["date"]
        assert first.headers["authorization"] != second.headers["authorization"]

    def test_post_signs_body_headers(self, signer, credential):
        body = b'{"name": "par"}'
        descriptor = RequestDescriptor(
            "POST",
            "https://objectstorage.eu-amsterdam-1.oraclecloud.com/n/testns/b/pdfstore/p/",
            body=body,
        )

        signed = signer.sign(descriptor, credential)

        auth = parse_authorization(signed.headers["authorization"])
        assert auth["headers"] == "date (request-target) host content-length content-type x-content-sha256"
        assert signed.headers["content-length"] == str(len(body))
        assert signed.headers["content-type"] == "application/json"
        assert signed.headers["x-content-sha256"] == base64.b64encode(hashlib.sha256(body).digest()).decode()

    def test_post_without_body_hashes_empty_string(self, signer, credential):
        signed = signer.sign(RequestDescriptor("PUT", OBJECT_URL), credential)

        assert signed.headers["content-length"] == "0"
        assert signed.headers["x-content-sha256"] == "47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU="

    def test_descriptor_content_type_is_kept(self, signer, credential):
        descriptor = RequestDescriptor("POST", OBJECT_URL, headers={"Content-Type": "text/plain"}, body=b"x")

        signed = signer.sign(descriptor, credential)

        assert signed.headers["content-type"] == "text/plain"

    def test_descriptor_is_not_mutated(self, signer, credential):
        descriptor = RequestDescriptor("get", OBJECT_URL, headers={"Accept": "application/json"})

        signed = signer.sign(descriptor, credential)

        assert dict(descriptor.headers) == {"accept": "application/json"}
        assert signed.descriptor is descriptor
        assert signed.method == "GET"
        assert signed.headers["accept"] == "application/json"

    def test_custom_header_set(self, credential):
        signer = RequestSigner(get_headers=("date", "(request-target)", "host", "x-custom"), clock=fixed_clock())
        descriptor = RequestDescriptor("GET", OBJECT_URL, headers={"X-Custom": "value"})

        signed = signer.sign(descriptor, credential)

        assert parse_authorization(signed.headers["authorization"])["headers"].endswith("x-custom")

    def test_missing_custom_header_is_unsupported(self, credential):
        signer = RequestSigner(get_headers=("date", "x-custom"), clock=fixed_clock())

        with pytest.raises(UnsupportedHeader):
            signer.sign(RequestDescriptor("GET", OBJECT_URL), credential)

    def test_header_with_newline_is_unsupported(self, credential):
        signer = RequestSigner(get_headers=("date", "x-custom"), clock=fixed_clock())
        descriptor = RequestDescriptor("GET", OBJECT_URL, headers={"x-custom": "a\r\nb"})

        with pytest.raises(UnsupportedHeader) as exc_info:
            signer.sign(descriptor, credential)

        assert isinstance(exc_info.value, SigningFailed)
        assert exc_info.value.status_code == 502

    def test_latin1_header_value_is_unsupported(self, credential):
        signer = RequestSigner(get_headers=("date", "x-custom"), clock=fixed_clock())
        descriptor = RequestDescriptor("GET", OBJECT_URL, headers={"x-custom": "café"})

        with pytest.raises(UnsupportedHeader):
            signer.sign(descriptor, credential)

    def test_garbage_key_is_malformed(self, signer):
        credential = create_test_credential(private_key="not a pem")

        with pytest.raises(MalformedCredential):
            signer.sign(RequestDescriptor("GET", OBJECT_URL), credential)

    def test_wrong_passphrase_is_malformed(self, signer):
        credential = create_test_credential(
            private_key=private_key_pem(passphrase="right"),
            passphrase="wrong",
        )

        with pytest.raises(MalformedCredential):
            signer.sign(RequestDescriptor("GET", OBJECT_URL), credential)

    def test_encrypted_key_with_passphrase(self, signer):
        credential = create_test_credential(
            private_key=private_key_pem(passphrase="secret"),
            passphrase="secret",
        )

        signed = signer.sign(RequestDescriptor("GET", OBJECT_URL), credential)

        assert signed.headers["authorization"].startswith("Signature ")

    def test_non_rsa_key_is_malformed(self, signer):
        ec_pem = ec.generate_private_key(ec.SECP256R1()).private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode()

        with pytest.raises(MalformedCredential):
            signer.sign(RequestDescriptor("GET", OBJECT_URL), create_test_credential(private_key=ec_pem))

    def test_tampered_signing_string_fails_verification(self, signer, credential):
        signed = signer.sign(RequestDescriptor("GET", OBJECT_URL), credential)
        auth = parse_authorization(signed.headers["authorization"])

        with pytest.raises(InvalidSignature):
            generate_private_key().public_key().verify(
                base64.b64decode(auth["signature"]),
                b"date: tampered",
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
