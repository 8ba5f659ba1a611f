"""
Corisio - Order Notification Helper
====================================
Sends a notification about an order event to the notification service.
In dev mode (no NOTIFICATION_URL), logs only.
"""

import logging

import requests

from config.settings import NOTIFICATION_URL, NOTIFICATION_API_KEY

logger = logging.getLogger("corisio.notifications")

ORDER_PLACED = "order_placed"
ORDER_CONFIRMED = "order_confirmed"
ORDER_CANCELLED = "order_cancelled"
PAYMENT_FAILED = "payment_failed"

_TITLES = {
    ORDER_PLACED: "Order placed",
    ORDER_CONFIRMED: "Order confirmed",
    ORDER_CANCELLED: "Order cancelled",
    PAYMENT_FAILED: "Payment failed",
}


def notify_order_event(
    user_id: int,
    event_type: str,
    order_slug: str,
    message: str = "",
) -> bool:
    """
    Send notification about an order event.

    Args:
        user_id: Recipient user id
        event_type: One of "order_placed", "order_confirmed", "order_cancelled", "payment_failed"
        order_slug: Public order handle
        message: Optional body text

    Returns:
        True if the notification service accepted it, False otherwise
    """
    title = _TITLES.get(event_type, "Order update")
    body = message or f"{title}: #{order_slug}"

    if not NOTIFICATION_URL:
        logger.info(f"Notification skipped (no URL): user={user_id} {event_type} -> {body}")
        return False

    headers = {"Authorization": f"Bearer {NOTIFICATION_API_KEY}"} if NOTIFICATION_API_KEY else {}
    try:
        response = requests.post(NOTIFICATION_URL, json={
            "userId": user_id,
            "type": event_type,
            "title": title,
            "body": body,
            "data": {"orderSlug": order_slug},
        }, headers=headers, timeout=5)

        if response.status_code < 300:
            logger.info(f"Notification sent to user {user_id}: {event_type} #{order_slug}")
            return True
        logger.error(f"Notification API error: {response.status_code} - {response.text}")
        return False

    except requests.RequestException as e:
        logger.error(f"Notification failed: {e}")
        return False
