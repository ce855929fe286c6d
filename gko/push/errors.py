"""Push delivery error hierarchy.

Anything derived from ``NoRetryError`` stops the retry loop after the attempt
that raised it. Every other exception is retried until the backoff strategy
gives up.
"""

from __future__ import annotations


class PushError(Exception):
    """Base class for push delivery failures."""


class PushDeliveryError(PushError):
    """A transient delivery failure (5xx, throttling, APNs processing error)."""


class NoRetryError(PushError):
    """Raised by an attempt that must not be repeated."""


class SubscriptionExpiredError(NoRetryError):
    """The push service reports the subscription as gone (404/410)."""


class ApnsRejectedError(NoRetryError):
    """APNs refused the notification for a reason retrying cannot fix."""

    def __init__(self, message: str, status: int | None = None, reason: str = ""):
        super().__init__(message)
        self.status = status
        self.reason = reason


class PushConfigurationError(PushError):
    """Credentials needed for a transport are not configured."""


class WebPushEncryptionError(PushError, ValueError):
    """Malformed subscription key material or an oversized payload."""


class CertificateError(PushError):
    """The APNs client certificate could not be loaded or is not valid now."""


class ApnsFrameError(PushError, ValueError):
    """A device token or payload cannot be encoded into an APNs frame."""
