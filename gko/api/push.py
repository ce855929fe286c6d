"""Push API routes — fan a notification out to FCM subscriptions or APNs devices."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from gko.push.apns import ApnsNotification
from gko.push.errors import PushConfigurationError
from gko.push.fcm import FcmSubscription
from gko.push.service import PushService
from gko.push.workers import DeliveryResult

logger = logging.getLogger(__name__)
router = APIRouter()


class SubscriptionIn(BaseModel):
    endpoint: str
    key: str
    auth: str


class FcmPushRequest(BaseModel):
    subscriptions: list[SubscriptionIn]
    payload: str


class ApnsPushRequest(BaseModel):
    device_tokens: list[str]
    alert: str | dict[str, Any] | None = None
    badge: int | None = None
    sound: str | None = None
    content_available: bool = False
    data: dict[str, Any] = Field(default_factory=dict)


def _service(request: Request) -> PushService:
    return request.app.state.push_service


def _summary(results: list[DeliveryResult]) -> dict:
    delivered = sum(1 for r in results if r.delivered)
    return {
        "delivered": delivered,
        "failed": len(results) - delivered,
        "results": [
            {
                "target": r.target,
                "status": r.status.value,
                "attempts": r.attempts,
                "error": r.error or None,
            }
            for r in results
        ],
    }


@router.get("/api/health")
async def health() -> dict:
    return {"status": "ok"}


@router.post("/push/fcm")
async def push_fcm(body: FcmPushRequest, request: Request) -> dict:
    if not body.subscriptions:
        raise HTTPException(status_code=400, detail="No subscriptions given")

    subscriptions = [FcmSubscription(s.endpoint, s.key, s.auth) for s in body.subscriptions]
    try:
        results = await _service(request).send_fcm(subscriptions, body.payload.encode("utf-8"))
    except PushConfigurationError as e:
        logger.error("FCM push unavailable: %s", e)
        raise HTTPException(status_code=503, detail=str(e))
    return _summary(results)


@router.post("/push/apns")
async def push_apns(body: ApnsPushRequest, request: Request) -> dict:
    if not body.device_tokens:
        raise HTTPException(status_code=400, detail="No device tokens given")

    notification = ApnsNotification(
        alert=body.alert,
        badge=body.badge,
        sound=body.sound,
        content_available=body.content_available,
        custom=body.data,
    )
    try:
        results = await _service(request).send_apns(body.device_tokens, notification)
    except PushConfigurationError as e:
        logger.error("APNs push unavailable: %s", e)
        raise HTTPException(status_code=503, detail=str(e))
    return _summary(results)
