"""Push service: configured entry point used by the HTTP API."""

from __future__ import annotations

import logging

import httpx

from gko.config import AppConfig, ApnsTransport
from gko.push.apns import ApnsNotification, send_apns2_notification, send_apns_notification
from gko.push.errors import PushConfigurationError
from gko.push.fcm import FcmSubscription, send_fcm_notification
from gko.push.workers import DeliveryResult

logger = logging.getLogger(__name__)


class PushService:
    """Holds configuration and the shared HTTP client for FCM delivery."""

    def __init__(self, config: AppConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self._http = http_client or httpx.AsyncClient(timeout=config.fcm.timeout)

    async def send_fcm(
        self, subscriptions: list[FcmSubscription], payload: bytes
    ) -> list[DeliveryResult]:
        if not self.config.fcm.server_key:
            raise PushConfigurationError("FCM server key is not configured")
        logger.info("Sending FCM notification to %d subscriptions", len(subscriptions))
        return await send_fcm_notification(
            self.config.fcm.server_key,
            subscriptions,
            payload,
            config=self.config.fcm,
            retry_config=self.config.retry,
            client=self._http,
        )

    async def send_apns(
        self, device_tokens: list[str], notification: ApnsNotification
    ) -> list[DeliveryResult]:
        apns = self.config.apns
        if apns.cert_file is None:
            raise PushConfigurationError("APNs certificate is not configured")
        logger.info(
            "Sending APNs notification to %d devices (%s transport)",
            len(device_tokens),
            apns.transport.value,
        )
        if apns.transport == ApnsTransport.HTTP2:
            return await send_apns2_notification(
                device_tokens, notification.payload(), apns, retry_config=self.config.retry
            )
        return await send_apns_notification(
            device_tokens, notification, apns, retry_config=self.config.retry
        )

    async def close(self) -> None:
        await self._http.aclose()
