"""Shared behavior of the shadow backends."""

from __future__ import annotations

import asyncio
import random

from deployotron.deploy.shadow.state import ShadowState
from deployotron.lib.errors import TransientFaultError
from deployotron.lib.logging_config import get_logger
from deployotron.models.backend_config import BackendConfig

logger = get_logger(__name__)


class ShadowBackend:
    """Failure injection and simulated latency for shadow operations.

    Args:
        config: Backend configuration (failure rate, delays)
        state: Ledger shared with the other shadow backends
        rng: Random source for failure sampling; seed it for reproducible runs
    """

    def __init__(
        self,
        config: BackendConfig,
        state: ShadowState,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self.state = state
        self._rng = rng or random.Random()

    async def _simulate_delay(self, seconds: float) -> None:
        if self.config.simulate_delays:
            await asyncio.sleep(seconds)

    def _check_failure(self, operation: str) -> None:
        """Raise a transient fault if the failure rate says so."""
        if self.config.should_fail(self._rng):
            logger.debug(f"Injected failure in shadow {operation}")
            raise TransientFaultError(operation)
