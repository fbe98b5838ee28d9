# FILE: services/telemetry.py
"""
Fire-and-forget telemetry sinks.

log() is synchronous and must never raise into the pipeline: pipeline
correctness does not depend on telemetry succeeding.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from services.utils import deep_serialize

logger = logging.getLogger("telemetry")


class TelemetrySink(Protocol):
    def log(self, user_id: Optional[str], event_type: str, payload: Dict[str, Any]) -> None: ...

    async def shutdown(self) -> None: ...


class LoggingTelemetrySink:
    def log(self, user_id: Optional[str], event_type: str, payload: Dict[str, Any]) -> None:
        logger.info(f"[TELEMETRY] user_id={user_id} event={event_type} payload={deep_serialize(payload)}")

    async def shutdown(self) -> None:
        return None


class PrismaTelemetrySink:
    """
    Writes telemetry rows in background tasks so stage transitions
    never wait on the insert.
    """

    def __init__(self, db):
        self.db = db
        self._pending: Set[asyncio.Task] = set()

    def log(self, user_id: Optional[str], event_type: str, payload: Dict[str, Any]) -> None:
        try:
            task = asyncio.get_running_loop().create_task(
                self._write(user_id, event_type, deep_serialize(payload))
            )
        except RuntimeError:
            logger.warning(f"[TELEMETRY] no running loop; dropped event={event_type}")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, user_id: Optional[str], event_type: str, payload: Dict[str, Any]) -> None:
        from prisma import Json

        try:
            await self.db.telemetryevent.create(
                data={"user_id": user_id, "event": event_type, "payload": Json(payload)}
            )
        except Exception:
            logger.exception(f"[TELEMETRY] failed to persist event={event_type}")

    async def shutdown(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
