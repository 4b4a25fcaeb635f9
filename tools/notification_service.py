"""
Notification Service Tool
Delivers medication reminders and low-stock alerts over Web Push and email
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from pywebpush import WebPushException, webpush
from sqlalchemy.orm import Session

from config import Settings, settings as default_settings
from database import get_db_context
from exceptions import ConfigurationError
from models import Channel, NotificationStatus, PushSubscription, User
from tools.tz_utils import utcnow


logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Types of notifications"""
    MEDICATION_REMINDER = "medication_reminder"
    LOW_STOCK_ALERT = "low_stock_alert"


# Push subscriptions that the push service reports as gone
GONE_STATUS_CODES = frozenset({404, 410})


NOTIFICATION_TEMPLATES: Dict[NotificationType, Dict[str, str]] = {
    NotificationType.MEDICATION_REMINDER: {
        "title": "Medication reminder",
        "push": "{medicationName} - due {scheduledTime}",
        "email_subject": "Reminder: {medicationName}",
    },
    NotificationType.LOW_STOCK_ALERT: {
        "title": "Low stock",
        "push": "{medicationsCount} medication(s) running low: {names}",
        "email_subject": "Low stock: {medicationsCount} medication(s)",
    },
}


@dataclass
class NotificationPayload:
    """What to say; the service decides how to say it per channel"""
    notification_type: NotificationType
    data: Dict[str, Any] = field(default_factory=dict)
    url: str = "/home"

    @property
    def template(self) -> Dict[str, str]:
        return NOTIFICATION_TEMPLATES[self.notification_type]

    @property
    def title(self) -> str:
        return self.template["title"]

    def render(self, key: str) -> str:
        try:
            return self.template[key].format(**self.data)
        except KeyError as e:
            logger.warning(f"Missing template variable: {e}")
            return self.title


@dataclass
class DeliveryResult:
    """Outcome of one channel delivery for one user"""
    status: NotificationStatus
    channel: Channel
    reason: Optional[str] = None
    sent: int = 0
    removed: int = 0
    delivered_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.status == NotificationStatus.SENT


class NotificationService:
    """
    Transport for reminder and alert delivery.

    PUSH goes to every stored Web Push subscription of the user; EMAIL goes
    through the Maileroo template API. A channel without credentials raises
    ConfigurationError so callers can treat it as a no-op.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._config = config
        self._http_transport = http_transport

    @property
    def config(self) -> Settings:
        return self._config or default_settings

    def is_push_configured(self) -> bool:
        return bool(self.config.VAPID_PUBLIC_KEY and self.config.VAPID_PRIVATE_KEY)

    def is_email_configured(self) -> bool:
        return bool(self.config.MAILEROO_API_KEY and self.config.MAILEROO_FROM_ADDRESS)

    async def send(
        self,
        user_id: int,
        channel: Channel,
        payload: NotificationPayload,
        db: Optional[Session] = None
    ) -> DeliveryResult:
        """Deliver `payload` to `user_id` over a single channel"""
        channel = Channel(channel)
        if channel == Channel.PUSH:
            return await self.send_push(user_id, payload, db=db)
        if channel == Channel.EMAIL:
            return await self.send_email(user_id, payload, db=db)
        raise ConfigurationError(f"Channel {channel.value} has no transport")

    # ------------------------------------------------------------------
    # Web Push
    # ------------------------------------------------------------------

    async def send_push(
        self,
        user_id: int,
        payload: NotificationPayload,
        db: Optional[Session] = None
    ) -> DeliveryResult:
        if not self.is_push_configured():
            raise ConfigurationError("Web Push is not configured (VAPID keys missing)")

        if db:
            return await self._send_push(db, user_id, payload)
        with get_db_context() as session:
            return await self._send_push(session, user_id, payload)

    async def _send_push(self, session: Session, user_id: int, payload: NotificationPayload) -> DeliveryResult:
        subscriptions: List[PushSubscription] = session.query(PushSubscription).filter(
            PushSubscription.user_id == user_id
        ).all()

        if not subscriptions:
            return DeliveryResult(
                status=NotificationStatus.FAILED,
                channel=Channel.PUSH,
                reason="no_subscription",
            )

        body = json.dumps({
            "title": payload.title,
            "body": payload.render("push"),
            "url": payload.url,
        })

        sent = failed = removed = 0
        for subscription in subscriptions:
            try:
                await asyncio.to_thread(self._deliver_push, subscription, body)
                sent += 1
            except WebPushException as e:
                status_code = getattr(e.response, "status_code", None)
                if status_code in GONE_STATUS_CODES:
                    logger.info(f"Removing expired push subscription {subscription.id} for user {user_id}")
                    session.delete(subscription)
                    session.flush()
                    removed += 1
                else:
                    logger.warning(f"Push delivery failed for subscription {subscription.id}: {e}")
                    failed += 1

        if sent > 0:
            return DeliveryResult(
                status=NotificationStatus.SENT,
                channel=Channel.PUSH,
                sent=sent,
                removed=removed,
                delivered_at=utcnow(),
            )

        return DeliveryResult(
            status=NotificationStatus.FAILED,
            channel=Channel.PUSH,
            reason="no_subscription" if removed and not failed else "delivery_failed",
            removed=removed,
        )

    def _deliver_push(self, subscription: PushSubscription, body: str) -> None:
        webpush(
            subscription_info={
                "endpoint": subscription.endpoint,
                "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
            },
            data=body,
            vapid_private_key=self.config.VAPID_PRIVATE_KEY,
            vapid_claims={"sub": self.config.VAPID_SUBJECT},
            ttl=self.config.PUSH_TTL_SECONDS,
        )

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    def _template_id(self, notification_type: NotificationType) -> Optional[int]:
        if notification_type == NotificationType.MEDICATION_REMINDER:
            return self.config.MAILEROO_TEMPLATE_REMINDER_ID
        return self.config.MAILEROO_TEMPLATE_LOW_STOCK_ID

    async def send_email(
        self,
        user_id: int,
        payload: NotificationPayload,
        db: Optional[Session] = None
    ) -> DeliveryResult:
        if not self.is_email_configured():
            raise ConfigurationError("Email is not configured (Maileroo credentials missing)")

        template_id = self._template_id(payload.notification_type)
        if not template_id:
            raise ConfigurationError(f"No email template configured for {payload.notification_type.value}")

        def _recipient(session: Session):
            user = session.query(User).filter(User.id == user_id).first()
            if not user:
                return None, None
            return user.email, user.name

        if db:
            email, name = _recipient(db)
        else:
            with get_db_context() as session:
                email, name = _recipient(session)

        if not email:
            return DeliveryResult(
                status=NotificationStatus.FAILED,
                channel=Channel.EMAIL,
                reason="no_email",
            )

        template_data = {
            "name": name or "there",
            "year": utcnow().year,
            "appUrl": self.config.APP_URL,
            **payload.data,
        }
        body = {
            "from": {
                "address": self.config.MAILEROO_FROM_ADDRESS,
                "display_name": self.config.MAILEROO_FROM_NAME,
            },
            "to": [{"address": email}],
            "subject": payload.render("email_subject"),
            "template_id": template_id,
            "template_data": template_data,
            "tracking": True,
            "tags": {"type": "notification"},
        }

        try:
            async with httpx.AsyncClient(transport=self._http_transport, timeout=10.0) as client:
                response = await client.post(
                    self.config.MAILEROO_API_URL,
                    json=body,
                    headers={"Authorization": f"Bearer {self.config.MAILEROO_API_KEY}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"Email send error for user {user_id}: {e}")
            return DeliveryResult(
                status=NotificationStatus.FAILED,
                channel=Channel.EMAIL,
                reason=str(e) or "network_error",
            )

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_error or (isinstance(data, dict) and data.get("success") is False):
            message = None
            if isinstance(data, dict):
                message = data.get("message") or data.get("error")
            return DeliveryResult(
                status=NotificationStatus.FAILED,
                channel=Channel.EMAIL,
                reason=message or f"HTTP {response.status_code}",
            )

        return DeliveryResult(
            status=NotificationStatus.SENT,
            channel=Channel.EMAIL,
            sent=1,
            delivered_at=utcnow(),
        )


# Singleton instance
notification_service = NotificationService()


__all__ = [
    "NotificationType",
    "NotificationPayload",
    "DeliveryResult",
    "NotificationService",
    "notification_service",
]
