"""Firebase Cloud Messaging push provider."""

import asyncio
import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from matchday.notifications.payloads import PlatformPayload
from matchday.notifications.providers import MulticastResult, PushProvider, TokenResult

logger = logging.getLogger(__name__)

APP_NAME = "matchday"


def classify_firebase_error(error: Optional[Exception]) -> Optional[str]:
    """Error code for a failed per-token send, in FCM's legacy kebab-case form."""
    if error is None:
        return None
    if isinstance(error, messaging.UnregisteredError):
        return "registration-token-not-registered"
    if isinstance(error, exceptions.InvalidArgumentError) and "registration token" in str(error).lower():
        return "invalid-registration-token"
    code = getattr(error, "code", None)
    if code:
        return str(code).lower().replace("_", "-")
    return "unknown"


def build_multicast_message(tokens: list[str], payload: PlatformPayload) -> messaging.MulticastMessage:
    android = None
    if payload.android:
        android = messaging.AndroidConfig(
            priority=payload.android["priority"],
            notification=messaging.AndroidNotification(
                channel_id=payload.android["channel_id"],
                icon=payload.android.get("icon"),
                color=payload.android.get("color"),
            ),
        )

    apns = None
    if payload.apns:
        apns = messaging.APNSConfig(
            headers=payload.apns["headers"],
            payload=messaging.APNSPayload(
                aps=messaging.Aps(
                    badge=payload.apns.get("badge"),
                    sound=payload.apns.get("sound"),
                    category=payload.apns.get("category"),
                    content_available=payload.apns.get("content_available"),
                ),
            ),
        )

    webpush = None
    if payload.webpush:
        webpush = messaging.WebpushConfig(
            notification=messaging.WebpushNotification(
                icon=payload.webpush.get("icon"),
                badge=payload.webpush.get("badge"),
            ),
        )

    return messaging.MulticastMessage(
        tokens=tokens,
        data=payload.data,
        notification=messaging.Notification(
            title=payload.title,
            body=payload.body,
            image=payload.image_url,
        ),
        android=android,
        apns=apns,
        webpush=webpush,
    )


class FCMPushProvider(PushProvider):
    """Sends through firebase-admin; the blocking SDK call runs in a worker thread."""

    def __init__(self, credentials_path: str, app: Optional[firebase_admin.App] = None):
        if app is not None:
            self.app = app
        else:
            try:
                self.app = firebase_admin.get_app(APP_NAME)
            except ValueError:
                cred = credentials.Certificate(credentials_path)
                self.app = firebase_admin.initialize_app(cred, name=APP_NAME)
                logger.info("[PUSH] Firebase app initialized")

    async def send_multicast(self, tokens: list[str], payload: PlatformPayload) -> MulticastResult:
        message = build_multicast_message(tokens, payload)
        batch = await asyncio.to_thread(messaging.send_each_for_multicast, message, app=self.app)

        results = [
            TokenResult(
                token=token,
                success=response.success,
                error_code=None if response.success else classify_firebase_error(response.exception),
            )
            for token, response in zip(tokens, batch.responses)
        ]
        return MulticastResult(
            success_count=batch.success_count,
            failure_count=batch.failure_count,
            results=results,
        )
