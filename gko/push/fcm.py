"""FCM / Web Push delivery — one encrypted POST per subscription."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator

import httpx

from gko.config import FcmConfig, RetryConfig
from gko.push.backoff import backoff_factory
from gko.push.errors import NoRetryError, PushDeliveryError, SubscriptionExpiredError
from gko.push.webpush import b64url_encode, encrypt
from gko.push.workers import DeliveryResult, Worker, run_workers

logger = logging.getLogger(__name__)

FCM_URL = "https://fcm.googleapis.com/fcm/send"
GCM_URL = "https://android.googleapis.com/gcm/send"


@dataclass(frozen=True)
class FcmSubscription:
    """A browser/device push subscription: endpoint plus its encryption keys."""

    endpoint: str
    key: str
    auth: str


def fcm_endpoint(endpoint: str) -> str:
    """Rewrite a legacy GCM endpoint to its FCM equivalent."""
    return endpoint.replace(GCM_URL, FCM_URL, 1)


def _check_status(response: httpx.Response, endpoint: str) -> None:
    status = response.status_code
    if status in (404, 410):
        raise SubscriptionExpiredError(f"subscription gone ({status}): {endpoint}")
    if status == 429 or status >= 500:
        raise PushDeliveryError(f"push service returned {status} for {endpoint}")
    if status >= 400:
        raise NoRetryError(f"push service rejected request ({status}): {response.text[:200]}")
    raise NoRetryError(f"unexpected push service status {status} for {endpoint}")


class FcmWorker(Worker):
    """Encrypts the payload for one subscription and POSTs it."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        server_key: str,
        subscription: FcmSubscription,
        payload: bytes,
        config: FcmConfig,
    ):
        super().__init__(subscription.endpoint)
        self.client = client
        self.server_key = server_key
        self.subscription = subscription
        self.payload = payload
        self.config = config

    async def attempt(self) -> None:
        encrypted = encrypt(self.subscription.key, self.subscription.auth, self.payload)

        endpoint = fcm_endpoint(self.subscription.endpoint)
        headers = {
            "Authorization": f"key={self.server_key}",
            "Encryption": f"salt={b64url_encode(encrypted.salt)}",
            "Crypto-Key": f"dh={b64url_encode(encrypted.public_key)}",
            "Content-Encoding": "aesgcm",
            "Content-Length": str(len(encrypted.ciphertext)),
            "TTL": str(self.config.ttl),
        }
        response = await self.client.post(
            endpoint, content=encrypted.ciphertext, headers=headers, timeout=self.config.timeout
        )

        if response.is_success:
            return
        if self.config.raise_for_status:
            _check_status(response, endpoint)
        logger.warning(
            "Push service returned %d for %s; counting as delivered",
            response.status_code,
            endpoint,
        )


async def send_fcm_notification(
    server_key: str,
    subscriptions: Iterable[FcmSubscription],
    payload: bytes,
    *,
    config: FcmConfig | None = None,
    retry_config: RetryConfig | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[DeliveryResult]:
    """Push ``payload`` to every subscription concurrently.

    Delivery is best-effort: failures are logged and reported in the returned
    per-subscription results, never raised.
    """
    config = config or FcmConfig()
    retry_config = retry_config or RetryConfig()
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=config.timeout)

    def produce(http: httpx.AsyncClient) -> Iterator[FcmWorker]:
        for sub in subscriptions:
            yield FcmWorker(http, server_key, sub, payload, config)

    try:
        return await run_workers(
            produce(client),
            backoff_factory=backoff_factory(retry_config),
            concurrency=retry_config.concurrency,
        )
    finally:
        if owns_client:
            await client.aclose()
