"""Operator alert sink used when a request gives up."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class OperatorAlerter(Protocol):
    async def alert(self, message: str) -> None: ...


class LoggingAlerter:
    """Default sink: an ERROR log line that log-based alerting can match."""

    async def alert(self, message: str) -> None:
        logger.error("Operator alert: %s", message)
