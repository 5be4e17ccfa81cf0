"""
HTTP request signing for Oracle Cloud Infrastructure APIs.

Implements the draft-cavage HTTP signature scheme OCI uses: a signing string
built from an ordered list of headers (including the pseudo-header
`(request-target)`) is signed with the caller's RSA key, and the result is
sent in an `authorization` header whose keyId names tenancy, user and key
fingerprint.
"""

from __future__ import annotations

import base64
import functools
import hashlib
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Callable, Dict, Optional, Sequence

import httpx
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from shared.errors import MalformedCredential, UnsupportedHeader
from shared.logging import get_logger

from ..credentials.models import Credential
from .request import RequestDescriptor, SignedRequest


REQUEST_TARGET = "(request-target)"
DEFAULT_GET_HEADERS = ("date", REQUEST_TARGET, "host")
DEFAULT_BODY_HEADERS = ("content-length", "content-type", "x-content-sha256")
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@functools.lru_cache(maxsize=16)
def load_private_key(pem: str, passphrase: Optional[str] = None) -> rsa.RSAPrivateKey:
    """Load an RSA private key from PEM text."""
    password = passphrase.encode("utf-8") if passphrase else None
    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise MalformedCredential("Private key could not be loaded", details={"error": str(exc)}) from exc

    if not isinstance(key, rsa.RSAPrivateKey):
        raise MalformedCredential(
            "Private key is not an RSA key", details={"key_type": type(key).__name__}
        )
    return key


class RequestSigner:
    """Sign request descriptors with a credential's RSA key."""

    algorithm = "rsa-sha256"
    version = "1"

    def __init__(
        self,
        get_headers: Sequence[str] = DEFAULT_GET_HEADERS,
        body_headers: Sequence[str] = DEFAULT_BODY_HEADERS,
        clock: Optional[Callable[[], datetime]] = None,
        default_content_type: str = "application/json",
    ):
        self.get_headers = tuple(name.lower() for name in get_headers)
        self.body_headers = tuple(name.lower() for name in body_headers)
        self.default_content_type = default_content_type
        self._clock = clock or utc_now
        self.logger = get_logger("docgate.signer")

    def headers_for(self, method: str) -> Sequence[str]:
        """Return the ordered header names signed for a method."""
        if method.upper() in BODY_METHODS:
            return self.get_headers + self.body_headers
        return self.get_headers

    def sign(self, descriptor: RequestDescriptor, credential: Credential) -> SignedRequest:
        """Produce a SignedRequest; raises SigningFailed subclasses on error."""
        private_key = load_private_key(credential.private_key, credential.passphrase)
        timestamp = self._clock()

        signed_names = self.headers_for(descriptor.method)
        values = self._header_values(descriptor, signed_names, timestamp)
        signing_string = self.signing_string(signed_names, values)

        signature = private_key.sign(
            signing_string.encode("ascii"),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        authorization = (
            f'Signature version="{self.version}",'
            f'keyId="{credential.key_id}",'
            f'algorithm="{self.algorithm}",'
            f'headers="{" ".join(signed_names)}",'
            f'signature="{base64.b64encode(signature).decode("ascii")}"'
        )

        signature_headers = {
            name: value for name, value in values.items() if name != REQUEST_TARGET
        }
        signature_headers["authorization"] = authorization

        self.logger.debug(
            "Request signed",
            method=descriptor.method,
            url=descriptor.url,
            headers=list(signed_names),
            key_fingerprint=credential.fingerprint,
        )
        return SignedRequest(descriptor=descriptor, signature_headers=signature_headers)

    @staticmethod
    def signing_string(names: Sequence[str], values: Dict[str, str]) -> str:
        return "\n".join(f"{name}: {values[name]}" for name in names)

    def _header_values(
        self,
        descriptor: RequestDescriptor,
        names: Sequence[str],
        timestamp: datetime,
    ) -> Dict[str, str]:
        url = httpx.URL(descriptor.url)
        body = descriptor.body or b""
        derived = {
            "date": format_datetime(timestamp.astimezone(timezone.utc), usegmt=True),
            REQUEST_TARGET: f"{descriptor.method.lower()} {url.raw_path.decode('ascii')}",
            "host": url.netloc.decode("ascii"),
        }
        if descriptor.method in BODY_METHODS:
            derived["content-length"] = str(len(body))
            derived["content-type"] = descriptor.headers.get("content-type", self.default_content_type)
            derived["x-content-sha256"] = base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")

        values: Dict[str, str] = {}
        for name in names:
            value = derived.get(name, descriptor.headers.get(name))
            if value is None:
                raise UnsupportedHeader(
                    "Signed header has no value", details={"header": name}
                )
            self._check_value(name, value)
            values[name] = value
        return values

    @staticmethod
    def _check_value(name: str, value: str) -> None:
        if not isinstance(value, str) or not value.isascii() or "\r" in value or "\n" in value:
            raise UnsupportedHeader(
                "Header value cannot be encoded for signing", details={"header": name}
            )
