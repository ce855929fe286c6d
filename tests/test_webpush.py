"""Tests for aesgcm Web Push payload encryption."""

from __future__ import annotations

import os
import struct

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from gko.push.errors import WebPushEncryptionError
from gko.push.webpush import (
    MAX_PAYLOAD_LENGTH,
    b64url_decode,
    b64url_encode,
    decrypt,
    encrypt,
)
from tests.conftest import make_subscription


def _hkdf(salt: bytes, ikm: bytes, info: bytes, length: int) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(ikm)


class TestBase64Url:
    def test_decodes_without_padding(self):
        assert b64url_decode("AQID") == b"\x01\x02\x03"
        assert b64url_decode("AQI") == b"\x01\x02"

    def test_decodes_url_alphabet(self):
        assert b64url_decode("-_8") == b"\xfb\xff"

    def test_rejects_stray_characters(self):
        with pytest.raises(ValueError):
            b64url_decode("!!not base64!!")

    def test_encode_keeps_padding(self):
        assert b64url_encode(b"\x01\x02") == "AQI="


class TestEncrypt:
    def test_round_trip(self, subscription):
        sub, receiver_key = subscription
        payload = b'{"title": "hello", "body": "world"}'

        encrypted = encrypt(sub.key, sub.auth, payload)

        assert decrypt(
            encrypted.ciphertext, encrypted.salt, encrypted.public_key, receiver_key, sub.auth
        ) == payload

    def test_record_matches_independent_key_derivation(self, subscription):
        sub, receiver_key = subscription
        payload = b"cross-checked"

        encrypted = encrypt(sub.key, sub.auth, payload)

        # Rebuild the content key and nonce from the aesgcm key schedule
        sender = ec.EllipticCurvePublicKey.from_encoded_point(
            ec.SECP256R1(), encrypted.public_key
        )
        shared = receiver_key.exchange(ec.ECDH(), sender)
        receiver_public = b64url_decode(sub.key)
        context = (
            b"P-256\x00"
            + struct.pack("!H", len(receiver_public))
            + receiver_public
            + struct.pack("!H", len(encrypted.public_key))
            + encrypted.public_key
        )
        ikm = _hkdf(b64url_decode(sub.auth), shared, b"Content-Encoding: auth\x00", 32)
        key = _hkdf(encrypted.salt, ikm, b"Content-Encoding: aesgcm\x00" + context, 16)
        nonce = _hkdf(encrypted.salt, ikm, b"Content-Encoding: nonce\x00" + context, 12)

        record = AESGCM(key).decrypt(nonce, encrypted.ciphertext, None)

        assert record == b"\x00\x00" + payload
        assert len(encrypted.ciphertext) == 2 + len(payload) + 16

    def test_empty_payload_round_trips(self, subscription):
        sub, receiver_key = subscription

        encrypted = encrypt(sub.key, sub.auth, b"")

        assert decrypt(
            encrypted.ciphertext, encrypted.salt, encrypted.public_key, receiver_key, sub.auth
        ) == b""

    def test_fresh_salt_and_key_per_call(self, subscription):
        sub, _ = subscription

        first = encrypt(sub.key, sub.auth, b"x")
        second = encrypt(sub.key, sub.auth, b"x")

        assert len(first.salt) == 16
        assert len(first.public_key) == 65
        assert first.public_key[0] == 0x04
        assert first.salt != second.salt
        assert first.public_key != second.public_key

    def test_deterministic_with_fixed_salt_and_key(self, subscription):
        sub, _ = subscription
        salt = os.urandom(16)
        sender = ec.generate_private_key(ec.SECP256R1())

        first = encrypt(sub.key, sub.auth, b"same", salt=salt, private_key=sender)
        second = encrypt(sub.key, sub.auth, b"same", salt=salt, private_key=sender)

        assert first == second

    def test_wrong_auth_fails_decryption(self, subscription):
        sub, receiver_key = subscription
        encrypted = encrypt(sub.key, sub.auth, b"secret")
        other_auth = b64url_encode(os.urandom(16))

        with pytest.raises(WebPushEncryptionError):
            decrypt(
                encrypted.ciphertext, encrypted.salt, encrypted.public_key, receiver_key, other_auth
            )

    def test_malformed_auth_secret(self, subscription):
        sub, _ = subscription

        with pytest.raises(WebPushEncryptionError, match="base64url"):
            encrypt(sub.key, "%%%bad%%%", b"x")

    def test_short_auth_secret(self, subscription):
        sub, _ = subscription

        with pytest.raises(WebPushEncryptionError, match="16 bytes"):
            encrypt(sub.key, b64url_encode(b"short"), b"x")

    def test_key_not_on_curve(self, subscription):
        sub, _ = subscription
        bogus = b64url_encode(b"\x04" + b"\x01" * 64)

        with pytest.raises(WebPushEncryptionError, match="P-256"):
            encrypt(bogus, sub.auth, b"x")

    def test_payload_too_large(self, subscription):
        sub, _ = subscription

        with pytest.raises(WebPushEncryptionError, match="exceeds"):
            encrypt(sub.key, sub.auth, b"x" * (MAX_PAYLOAD_LENGTH + 1))

    def test_max_payload_accepted(self):
        sub, receiver_key = make_subscription()
        payload = b"y" * MAX_PAYLOAD_LENGTH

        encrypted = encrypt(sub.key, sub.auth, payload)

        assert decrypt(
            encrypted.ciphertext, encrypted.salt, encrypted.public_key, receiver_key, sub.auth
        ) == payload
