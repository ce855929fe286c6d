"""Shared fixtures: subscriber keys and APNs client certificates."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from gko.push.fcm import FcmSubscription
from gko.push.webpush import b64url_encode


def make_subscription(endpoint: str = "https://fcm.googleapis.com/fcm/send/abc"):
    """Generate a subscriber key pair; returns (subscription, private key)."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    public = private_key.public_key().public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )
    sub = FcmSubscription(
        endpoint=endpoint,
        key=b64url_encode(public).rstrip("="),
        auth=b64url_encode(os.urandom(16)).rstrip("="),
    )
    return sub, private_key


def write_certificate(
    directory: Path,
    *,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
    name: str = "apns.pem",
) -> Path:
    """Write a self-signed certificate and its key into one PEM file."""
    now = datetime.now(timezone.utc)
    not_before = not_before or now - timedelta(days=1)
    not_after = not_after or now + timedelta(days=30)

    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Apple Push Services: test")])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    path = directory / name
    path.write_bytes(
        cert.public_bytes(serialization.Encoding.PEM)
        + key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return path


@pytest.fixture
def subscription():
    return make_subscription()


@pytest.fixture
def cert_file(tmp_path: Path) -> Path:
    return write_certificate(tmp_path)


@pytest.fixture
def expired_cert_file(tmp_path: Path) -> Path:
    now = datetime.now(timezone.utc)
    return write_certificate(
        tmp_path,
        not_before=now - timedelta(days=400),
        not_after=now - timedelta(days=10),
        name="expired.pem",
    )
