import logging
import sys
from typing import Any, Optional, Union

from parley.protocol.bus import EventBus
from parley.protocol.events import EventTypes

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Union[str, int] = "INFO", stream=None) -> None:
    """
    Configure the root logger with a single stderr handler.
    Safe to call more than once.
    """
    root = logging.getLogger()
    root.setLevel(level if isinstance(level, int) else level.upper())

    for handler in root.handlers:
        if getattr(handler, "_parley_handler", False):
            return

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._parley_handler = True
    root.addHandler(handler)


class EventLogger:
    """
    Bus subscriber that turns session events into log lines.

    Partial message updates are not logged one by one; the assistant
    message is logged once, when its session settles.
    """

    def __init__(self, bus: EventBus, logger: Optional[logging.Logger] = None):
        self._bus = bus
        self._logger = logger or logging.getLogger("Parley")

    async def start(self):
        """Subscribe to the session and conversation events."""
        await self._bus.subscribe(EventTypes.SESSION_STATE_CHANGED, self._log_status)
        await self._bus.subscribe(EventTypes.USER_MESSAGE_SUBMITTED, self._log_user_input)
        await self._bus.subscribe(EventTypes.SESSION_COMPLETED, self._log_response)
        await self._bus.subscribe(EventTypes.SESSION_CANCELLED, self._log_cancelled)
        await self._bus.subscribe(EventTypes.SESSION_FAILED, self._log_failure)

    # --- Handlers ---

    async def _log_status(self, data: Any):
        self._logger.debug(
            f"STATUS: {data.conversation_id} {data.previous.value} -> {data.state.value}"
        )

    async def _log_user_input(self, data: Any):
        self._logger.info(f"USER [{data.conversation_id}]: {data.message.content}")

    async def _log_response(self, data: Any):
        content = data.message.content if data.message else ""
        self._logger.info(f"ASSISTANT [{data.conversation_id}]: {content}")

    async def _log_cancelled(self, data: Any):
        self._logger.info(
            f"CANCELLED [{data.conversation_id}] after {data.chunk_count} chunk(s)"
        )

    async def _log_failure(self, data: Any):
        self._logger.error(f"FAILED [{data.conversation_id}]: {data.error}")

