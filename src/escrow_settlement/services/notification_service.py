"""Notification capability for buyers and sellers.

The engine only decides *who* should hear about *what*. Delivery (email,
push, in-app) is somebody else's job; the default notifier writes a
structured log line per message.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from escrow_settlement.logging_config import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, recipient_id: str, template: str, data: dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Notifier that only logs; used when no delivery channel is configured."""

    async def notify(self, recipient_id: str, template: str, data: dict[str, Any]) -> None:
        logger.info("notification.sent", recipient=recipient_id, template=template, **data)


async def send_quietly(notifier: Notifier | None, recipient_id: str, template: str, **data: Any) -> bool:
    """Deliver one notification; a failing channel never fails the caller's operation."""
    if notifier is None:
        return False
    try:
        await notifier.notify(recipient_id, template, data)
    except Exception:
        logger.exception("notification.failed", recipient=recipient_id, template=template)
        return False
    return True
