"""APNs delivery — legacy binary protocol over TLS, and the HTTP/2 provider API.

Legacy: one TLS connection per device on port 2195, the client certificate as
identity, a single binary frame written, then a short wait for an
error-response packet. HTTP/2: one shared client, one POST per device token.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import secrets
import ssl
import struct
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from gko.config import ApnsConfig, RetryConfig
from gko.push.backoff import backoff_factory
from gko.push.errors import (
    ApnsFrameError,
    ApnsRejectedError,
    CertificateError,
    PushDeliveryError,
)
from gko.push.workers import DeliveryResult, DeliveryStatus, Worker, run_workers

logger = logging.getLogger(__name__)

APNS_GATEWAY = "gateway.push.apple.com"
APNS_SANDBOX_GATEWAY = "gateway.sandbox.push.apple.com"
APNS_PORT = 2195

APNS2_URL = "https://api.push.apple.com"
APNS2_SANDBOX_URL = "https://api.sandbox.push.apple.com"

# Binary frame layout
PUSH_COMMAND = 2
ERROR_RESPONSE_COMMAND = 8
ERROR_RESPONSE_LENGTH = 6
DEVICE_TOKEN_ITEM = 1
PAYLOAD_ITEM = 2
IDENTIFIER_ITEM = 3
EXPIRY_ITEM = 4
PRIORITY_ITEM = 5
DEVICE_TOKEN_LENGTH = 32
MAX_PAYLOAD_SIZE = 2048

ERROR_RESPONSE_STATUSES = {
    1: "Processing error",
    2: "Missing device token",
    3: "Missing topic",
    4: "Missing payload",
    5: "Invalid token size",
    6: "Invalid topic size",
    7: "Invalid payload size",
    8: "Invalid token",
    10: "Shutdown",
    255: "None (unknown)",
}
# Statuses a resend can get past
_RETRYABLE_ERROR_STATUSES = {1, 10, 255}


# -- Certificates --------------------------------------------------------------


@dataclass
class ApnsCertificate:
    certificate: x509.Certificate
    private_key: Any

    def ssl_context(self) -> ssl.SSLContext:
        """Client TLS context presenting this certificate."""
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
        # ssl only loads identities from files; the key never touches disk in clear
        passphrase = secrets.token_bytes(32)
        cert_pem = self.certificate.public_bytes(serialization.Encoding.PEM)
        key_pem = self.private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.BestAvailableEncryption(passphrase),
        )
        with tempfile.TemporaryDirectory() as tmp:
            chain = Path(tmp) / "identity.pem"
            chain.write_bytes(cert_pem + key_pem)
            context.load_cert_chain(chain, password=passphrase)
        return context


class ApnsTlsContext:
    """Builds the client TLS context once and shares it across a batch.

    A failed load is not cached, so each attempt retries it until one
    succeeds.
    """

    def __init__(self, config: ApnsConfig):
        self.config = config
        self._context: ssl.SSLContext | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> ssl.SSLContext:
        async with self._lock:
            if self._context is None:
                self._context = _load_configured_certificate(self.config).ssl_context()
            return self._context


def load_certificate(
    cert_file: Path | str,
    password: str = "",
    key_file: Path | str | None = None,
) -> ApnsCertificate:
    """Load a client identity from PKCS#12 (.p12/.pfx) or PEM.

    Raises:
        CertificateError: unreadable or undecodable file, no private key, or a
            certificate outside its validity window.
    """
    cert_file = Path(cert_file)
    secret = password.encode() if password else None
    try:
        data = cert_file.read_bytes()
        if cert_file.suffix.lower() in (".p12", ".pfx"):
            private_key, certificate, _ = pkcs12.load_key_and_certificates(data, secret)
        else:
            certificate = x509.load_pem_x509_certificate(data)
            key_data = Path(key_file).read_bytes() if key_file else data
            private_key = serialization.load_pem_private_key(key_data, secret)
    except (OSError, ValueError, TypeError) as e:
        raise CertificateError(f"cannot load APNs certificate {cert_file}: {e}") from e

    if certificate is None or private_key is None:
        raise CertificateError(f"{cert_file} does not contain both a certificate and a key")

    now = datetime.now(timezone.utc)
    if now < certificate.not_valid_before_utc:
        raise CertificateError(
            f"APNs certificate {cert_file} is not valid before {certificate.not_valid_before_utc}"
        )
    if now > certificate.not_valid_after_utc:
        raise CertificateError(
            f"APNs certificate {cert_file} expired at {certificate.not_valid_after_utc}"
        )
    return ApnsCertificate(certificate=certificate, private_key=private_key)


def _load_configured_certificate(config: ApnsConfig) -> ApnsCertificate:
    if config.cert_file is None:
        raise CertificateError("no APNs certificate configured")
    return load_certificate(config.cert_file, config.password, config.key_file)


# -- Notification --------------------------------------------------------------


@dataclass
class ApnsNotification:
    """An APNs notification: the ``aps`` dictionary plus custom keys."""

    alert: str | dict[str, Any] | None = None
    badge: int | None = None
    sound: str | None = None
    content_available: bool = False
    category: str | None = None
    custom: dict[str, Any] = field(default_factory=dict)
    identifier: int = field(default_factory=lambda: random.getrandbits(32))
    expiry: int = 0
    priority: int = 10

    def payload(self) -> bytes:
        aps: dict[str, Any] = {}
        if self.alert is not None:
            aps["alert"] = self.alert
        if self.badge is not None:
            aps["badge"] = self.badge
        if self.sound is not None:
            aps["sound"] = self.sound
        if self.content_available:
            aps["content-available"] = 1
        if self.category is not None:
            aps["category"] = self.category
        body = {**self.custom, "aps": aps}
        return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    def to_bytes(self, device_token: str) -> bytes:
        """Encode a command-2 frame for ``device_token`` (64 hex characters)."""
        try:
            token = bytes.fromhex(device_token)
        except ValueError as e:
            raise ApnsFrameError(f"device token is not hex: {device_token!r}") from e
        if len(token) != DEVICE_TOKEN_LENGTH:
            raise ApnsFrameError(
                f"device token must be {DEVICE_TOKEN_LENGTH} bytes, got {len(token)}"
            )

        payload = self.payload()
        if len(payload) > MAX_PAYLOAD_SIZE:
            raise ApnsFrameError(
                f"payload is {len(payload)} bytes, APNs accepts at most {MAX_PAYLOAD_SIZE}"
            )

        for name, value, limit in (
            ("identifier", self.identifier, 2**32),
            ("expiry", self.expiry, 2**32),
            ("priority", self.priority, 2**8),
        ):
            if not 0 <= value < limit:
                raise ApnsFrameError(f"{name} {value} does not fit the APNs frame")

        items = b"".join(
            [
                struct.pack("!BH", DEVICE_TOKEN_ITEM, len(token)) + token,
                struct.pack("!BH", PAYLOAD_ITEM, len(payload)) + payload,
                struct.pack("!BHI", IDENTIFIER_ITEM, 4, self.identifier),
                struct.pack("!BHI", EXPIRY_ITEM, 4, self.expiry),
                struct.pack("!BHB", PRIORITY_ITEM, 1, self.priority),
            ]
        )
        return struct.pack("!BI", PUSH_COMMAND, len(items)) + items


def parse_error_response(packet: bytes) -> tuple[int, int] | None:
    """Return ``(status, identifier)`` from a 6-byte error-response packet."""
    if len(packet) != ERROR_RESPONSE_LENGTH or packet[0] != ERROR_RESPONSE_COMMAND:
        return None
    _, status, identifier = struct.unpack("!BBI", packet)
    return status, identifier


# -- Legacy binary transport ---------------------------------------------------


class ApnsWorker(Worker):
    """Writes one binary frame to the APNs gateway over a fresh TLS connection."""

    def __init__(
        self,
        config: ApnsConfig,
        device_token: str,
        frame: bytes,
        tls: ApnsTlsContext | None = None,
    ):
        super().__init__(device_token)
        self.config = config
        self.frame = frame
        self.tls = tls or ApnsTlsContext(config)

    @property
    def gateway(self) -> str:
        return APNS_GATEWAY if self.config.use_production_gateway else APNS_SANDBOX_GATEWAY

    async def attempt(self) -> None:
        # Certificate problems fail the attempt before any network I/O
        context = await self.tls.get()

        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(
                self.gateway, APNS_PORT, ssl=context, server_hostname=self.gateway
            ),
            timeout=self.config.timeout,
        )
        try:
            writer.write(self.frame)
            await writer.drain()
            await self._check_error_response(reader)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug("Closing APNs connection for %s: %s", self.target, e)

    async def _check_error_response(self, reader: asyncio.StreamReader) -> None:
        if self.config.error_response_timeout <= 0:
            return
        try:
            packet = await asyncio.wait_for(
                reader.readexactly(ERROR_RESPONSE_LENGTH),
                timeout=self.config.error_response_timeout,
            )
        except asyncio.TimeoutError:
            return
        except asyncio.IncompleteReadError as e:
            if not e.partial:
                return
            if e.partial[0] == ERROR_RESPONSE_COMMAND and len(e.partial) >= 2:
                # Status arrived, identifier was cut off
                packet = e.partial[:2] + b"\x00" * (ERROR_RESPONSE_LENGTH - 2)
            else:
                logger.warning(
                    "Truncated APNs response for %s: %s", self.target, e.partial.hex()
                )
                raise PushDeliveryError(
                    f"truncated APNs response {e.partial.hex()} for {self.target}"
                ) from e

        response = parse_error_response(packet)
        if response is None:
            logger.warning("Unexpected APNs response for %s: %s", self.target, packet.hex())
            return
        status, identifier = response
        if status == 0:
            return
        description = ERROR_RESPONSE_STATUSES.get(status, "Unknown")
        message = f"APNs error {status} ({description}) for notification {identifier}"
        if status in _RETRYABLE_ERROR_STATUSES:
            raise PushDeliveryError(message)
        raise ApnsRejectedError(message, status=status, reason=description)


async def send_apns_notification(
    device_tokens: Iterable[str],
    notification: ApnsNotification,
    config: ApnsConfig,
    *,
    retry_config: RetryConfig | None = None,
) -> list[DeliveryResult]:
    """Send ``notification`` to every device over the legacy binary protocol.

    Tokens that cannot be framed are logged and skipped, so they have no
    entry in the returned results.
    """
    retry_config = retry_config or RetryConfig()
    tls = ApnsTlsContext(config)

    def produce() -> Iterator[ApnsWorker]:
        for token in device_tokens:
            try:
                frame = notification.to_bytes(token)
            except ApnsFrameError as e:
                logger.error("Skipping APNs device %s: %s", token, e)
                continue
            yield ApnsWorker(config, token, frame, tls)

    return await run_workers(
        produce(),
        backoff_factory=backoff_factory(retry_config),
        concurrency=retry_config.concurrency,
    )


# -- HTTP/2 provider API -------------------------------------------------------


class Apns2Worker(Worker):
    """POSTs one notification to the APNs provider API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        device_token: str,
        payload: bytes,
        topic: str = "",
        priority: int = 10,
    ):
        super().__init__(device_token)
        self.client = client
        self.payload = payload
        self.topic = topic
        self.priority = priority

    async def attempt(self) -> None:
        headers = {"apns-priority": str(self.priority), "apns-push-type": "alert"}
        if self.topic:
            headers["apns-topic"] = self.topic
        response = await self.client.post(
            f"/3/device/{self.target}", content=self.payload, headers=headers
        )
        if response.status_code == 200:
            return

        apns_id = response.headers.get("apns-id", "")
        try:
            reason = response.json().get("reason", "")
        except ValueError:
            reason = response.text
        message = f"not sent: {response.status_code} {apns_id} {reason}"
        if response.status_code == 429 or response.status_code >= 500:
            raise PushDeliveryError(message)
        raise ApnsRejectedError(message, status=response.status_code, reason=reason)


def apns2_client(config: ApnsConfig, certificate: ApnsCertificate) -> httpx.AsyncClient:
    """HTTP/2 client authenticated with ``certificate``."""
    base_url = APNS2_URL if config.use_production_gateway else APNS2_SANDBOX_URL
    return httpx.AsyncClient(
        base_url=base_url,
        http2=True,
        verify=certificate.ssl_context(),
        timeout=config.timeout,
    )


async def send_apns2_notification(
    device_tokens: Iterable[str],
    payload: bytes,
    config: ApnsConfig,
    *,
    retry_config: RetryConfig | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[DeliveryResult]:
    """Send ``payload`` to every device through the HTTP/2 provider API.

    The certificate is loaded once for the whole batch. If it cannot be
    loaded, every device is reported failed without a request being made.
    """
    retry_config = retry_config or RetryConfig()
    tokens = list(device_tokens)

    owns_client = client is None
    if client is None:
        try:
            certificate = _load_configured_certificate(config)
        except CertificateError as e:
            logger.error("APNs HTTP/2 push aborted for %d devices: %s", len(tokens), e)
            return [DeliveryResult(t, DeliveryStatus.FAILED, 0, str(e)) for t in tokens]
        client = apns2_client(config, certificate)

    try:
        return await run_workers(
            (Apns2Worker(client, t, payload, topic=config.topic) for t in tokens),
            backoff_factory=backoff_factory(retry_config),
            concurrency=retry_config.concurrency,
        )
    finally:
        if owns_client:
            await client.aclose()
