"""Session lifecycle notifications for collaborators such as presence tracking."""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class SessionEventNotifier(Protocol):
    """Receives session start/end events. Implementations must not raise."""

    async def session_started(self, account_id: int) -> None: ...

    async def session_ended(self, account_id: int) -> None: ...


class NullSessionNotifier:
    """Default notifier: records events at debug level only."""

    async def session_started(self, account_id: int) -> None:
        logger.debug(f"Session started for account {account_id}")

    async def session_ended(self, account_id: int) -> None:
        logger.debug(f"Session ended for account {account_id}")
