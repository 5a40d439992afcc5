"""
Push Notifier - Best-effort multicast push to a form owner's devices.

Delivery goes through Firebase Cloud Messaging. Failures are logged and
counted, never raised: by the time a notification is sent the submission
has been committed.
"""

import asyncio

import firebase_admin
from firebase_admin import credentials, messaging
from structlog import get_logger

from app.config import settings
from app.models.domain import FormContext, PushNotification
from app.observability.metrics import metrics

logger = get_logger(__name__)

NOTIFICATION_TITLE = "New Form Submission"


def build_submission_notification(
    form: FormContext, response_id: int, tokens: list[str]
) -> PushNotification | None:
    """The owner notification for an accepted submission, or None without devices."""
    if not tokens:
        return None

    return PushNotification(
        tokens=tuple(tokens),
        title=NOTIFICATION_TITLE,
        body=f"A new form submission has been received for {form.name}.",
        data={
            "appId": str(form.app_id),
            "appName": form.app_name,
            "appUrl": form.app_url,
            "formId": str(form.form_id),
            "formName": form.name,
            "formPublic": "true" if form.is_public else "false",
            "responseId": str(response_id),
        },
    )


def _ensure_firebase_app() -> firebase_admin.App:
    """Initialize the default Firebase app on first use."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    if settings.firebase_credentials_path:
        logger.info("firebase_init", credentials="service_account")
        cred = credentials.Certificate(settings.firebase_credentials_path)
    else:
        logger.info("firebase_init", credentials="application_default")
        cred = credentials.ApplicationDefault()
    return firebase_admin.initialize_app(cred)


class PushNotifier:
    """Sends PushNotification messages; never raises."""

    def __init__(self, enabled: bool | None = None) -> None:
        self.enabled = settings.notifications_enabled if enabled is None else enabled

    async def send(self, notification: PushNotification) -> None:
        if not self.enabled:
            metrics.record_notification("skipped")
            return

        try:
            await asyncio.to_thread(self._send_multicast, notification)
        except Exception as e:
            metrics.record_notification("failed")
            metrics.record_error(type(e).__name__, "send_notification")
            logger.error(
                "notification_dispatch_failed",
                form_id=notification.data.get("formId"),
                response_id=notification.data.get("responseId"),
                device_count=len(notification.tokens),
                error=str(e),
            )

    def _send_multicast(self, notification: PushNotification) -> None:
        app = _ensure_firebase_app()
        message = messaging.MulticastMessage(
            tokens=list(notification.tokens),
            notification=messaging.Notification(
                title=notification.title,
                body=notification.body,
            ),
            data=dict(notification.data),
        )
        response = messaging.send_each_for_multicast(message, app=app)

        result = "sent" if response.failure_count == 0 else "partial"
        if response.success_count == 0:
            result = "failed"
        metrics.record_notification(result)
        logger.info(
            "notification_dispatched",
            form_id=notification.data.get("formId"),
            response_id=notification.data.get("responseId"),
            success_count=response.success_count,
            failure_count=response.failure_count,
        )
