"""Push notification delivery: retry harness, FCM/WebPush and APNs workers."""

from gko.push.apns import (
    ApnsNotification,
    send_apns2_notification,
    send_apns_notification,
)
from gko.push.errors import NoRetryError, PushDeliveryError, PushError
from gko.push.fcm import FcmSubscription, send_fcm_notification
from gko.push.workers import DeliveryResult, DeliveryStatus

__all__ = [
    "ApnsNotification",
    "DeliveryResult",
    "DeliveryStatus",
    "FcmSubscription",
    "NoRetryError",
    "PushDeliveryError",
    "PushError",
    "send_apns2_notification",
    "send_apns_notification",
    "send_fcm_notification",
]
