"""gko-push: fan-out delivery of FCM/WebPush and APNs notifications."""

__version__ = "1.0.0"
