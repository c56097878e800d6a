# shop/services/notification_service.py
"""
Customer notifications for order events.

Delivery (email templates, SES) happens outside this service; the order
services only hand over a snapshot and never wait on or fail because of it.
"""
import logging

logger = logging.getLogger(__name__)


class Notifier:
    async def send_order_confirmation(self, order) -> None:
        raise NotImplementedError

    async def send_order_status_update(self, order) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    async def send_order_confirmation(self, order) -> None:
        logger.info("Order confirmation queued for %s (user %s)", order.order_code, order.user_id)

    async def send_order_status_update(self, order) -> None:
        logger.info("Status update queued for %s: %s", order.order_code, order.status.value)


_default_notifier = LoggingNotifier()


def get_notifier() -> Notifier:
    return _default_notifier


async def notify_quietly(send, order) -> None:
    """Fire-and-forget wrapper: a failing notifier is logged, never raised."""
    try:
        await send(order)
    except Exception:
        logger.exception("Notification for order %s failed", order.order_code)
