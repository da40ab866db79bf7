"""
Best-effort notifications. Delivery happens in background tasks and failures
are only logged; callers never wait on or see them.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, webhook_url: Optional[str] = None, timeout_seconds: Optional[float] = None):
        self.webhook_url = (
            webhook_url if webhook_url is not None else settings.NOTIFICATION_WEBHOOK_URL
        )
        self.timeout_seconds = timeout_seconds or settings.COLLABORATOR_TIMEOUT_SECONDS
        self._pending: Set[asyncio.Task] = set()

    async def send(self, recipient_id: str, kind: str, payload: Dict[str, Any]) -> bool:
        """
        Deliver one notification

        Returns:
            True if it was delivered (or logged, when no webhook is configured)
        """
        if not self.webhook_url:
            logger.info(f"[NOTIFY] {kind} -> {recipient_id}: {payload}")
            return True

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    self.webhook_url,
                    json={"recipient_id": recipient_id, "kind": kind, "payload": payload},
                )
                response.raise_for_status()
            return True
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"[NOTIFY] Failed to deliver {kind} to {recipient_id}: {str(e)}")
            return False

    def dispatch(self, recipient_id: str, kind: str, payload: Dict[str, Any]) -> Optional[asyncio.Task]:
        """Fire-and-forget wrapper around send()"""
        try:
            task = asyncio.get_running_loop().create_task(
                self.send(recipient_id, kind, payload)
            )
        except RuntimeError:
            logger.warning(f"[NOTIFY] No running loop, dropping {kind} for {recipient_id}")
            return None

        # Keep a reference until the task finishes
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight notifications (shutdown and tests)"""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
