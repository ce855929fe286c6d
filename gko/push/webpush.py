"""Web Push payload encryption, ``aesgcm`` content encoding.

The payload is encrypted for one subscription with an ephemeral P-256 key:
ECDH with the subscriber's public key, HKDF over the auth secret, then
AES-128-GCM (``http_ece`` does the record layer). The receiver needs the salt
(``Encryption`` header) and the ephemeral public key (``Crypto-Key`` header).
"""

from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass

import http_ece
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from gko.push.errors import WebPushEncryptionError

CONTENT_ENCODING = "aesgcm"

# Largest plaintext a push service accepts in one record
MAX_PAYLOAD_LENGTH = 4078

SALT_LENGTH = 16
AUTH_LENGTH = 16

_CURVE = ec.SECP256R1()


@dataclass(frozen=True)
class EncryptedPayload:
    ciphertext: bytes
    salt: bytes
    public_key: bytes


def b64url_decode(value: str | bytes) -> bytes:
    """Decode base64url, tolerating missing padding but not stray characters."""
    if isinstance(value, str):
        value = value.encode("ascii", errors="strict")
    value = value.rstrip(b"=")
    value += b"=" * (-len(value) % 4)
    return base64.b64decode(value, altchars=b"-_", validate=True)


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii")


def _public_bytes(key: ec.EllipticCurvePublicKey) -> bytes:
    return key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )


def _load_subscription_keys(p256dh: str, auth: str) -> tuple[bytes, bytes]:
    try:
        receiver_raw = b64url_decode(p256dh)
        auth_secret = b64url_decode(auth)
    except (binascii.Error, ValueError) as e:
        raise WebPushEncryptionError(f"subscription keys are not valid base64url: {e}") from e

    if len(auth_secret) != AUTH_LENGTH:
        raise WebPushEncryptionError(
            f"auth secret must be {AUTH_LENGTH} bytes, got {len(auth_secret)}"
        )
    try:
        ec.EllipticCurvePublicKey.from_encoded_point(_CURVE, receiver_raw)
    except ValueError as e:
        raise WebPushEncryptionError(f"p256dh is not a P-256 public key: {e}") from e
    return receiver_raw, auth_secret


def encrypt(
    p256dh: str,
    auth: str,
    payload: bytes,
    *,
    salt: bytes | None = None,
    private_key: ec.EllipticCurvePrivateKey | None = None,
) -> EncryptedPayload:
    """Encrypt ``payload`` for the subscription identified by ``p256dh``/``auth``.

    ``salt`` and ``private_key`` are generated fresh unless given; pass them
    only to reproduce a known ciphertext.
    """
    if len(payload) > MAX_PAYLOAD_LENGTH:
        raise WebPushEncryptionError(
            f"payload of {len(payload)} bytes exceeds {MAX_PAYLOAD_LENGTH} bytes"
        )

    receiver_raw, auth_secret = _load_subscription_keys(p256dh, auth)
    if salt is None:
        salt = os.urandom(SALT_LENGTH)
    if private_key is None:
        private_key = ec.generate_private_key(_CURVE)

    try:
        ciphertext = http_ece.encrypt(
            payload,
            salt=salt,
            private_key=private_key,
            dh=receiver_raw,
            auth_secret=auth_secret,
            version=CONTENT_ENCODING,
        )
    except http_ece.ECEException as e:
        raise WebPushEncryptionError(f"encryption failed: {e.message}") from e
    return EncryptedPayload(
        ciphertext=ciphertext,
        salt=salt,
        public_key=_public_bytes(private_key.public_key()),
    )


def decrypt(
    ciphertext: bytes,
    salt: bytes,
    sender_public_key: bytes,
    receiver_private_key: ec.EllipticCurvePrivateKey,
    auth: str,
) -> bytes:
    """Decrypt an ``aesgcm`` payload as the subscriber would."""
    try:
        auth_secret = b64url_decode(auth)
        ec.EllipticCurvePublicKey.from_encoded_point(_CURVE, sender_public_key)
    except (binascii.Error, ValueError) as e:
        raise WebPushEncryptionError(f"invalid decryption key material: {e}") from e

    try:
        return http_ece.decrypt(
            ciphertext,
            salt=salt,
            private_key=receiver_private_key,
            dh=sender_public_key,
            auth_secret=auth_secret,
            version=CONTENT_ENCODING,
        )
    except InvalidTag as e:
        raise WebPushEncryptionError("ciphertext failed authentication") from e
    except http_ece.ECEException as e:
        raise WebPushEncryptionError(f"decryption failed: {e.message}") from e
