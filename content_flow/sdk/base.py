"""Abstract base class that all provider adapters implement."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..core.errors import ProviderError
from ..core.requests import (
    MAX_TEMPERATURE,
    MAX_TOKENS_LIMIT,
    NormalizedRequest,
    ProviderResult,
    validate_request,
)

logger = logging.getLogger(__name__)

CONNECTION_CHECK_PROMPT = "Hello, world!"


@dataclass(frozen=True)
class ConnectionCheck:
    """Outcome of a provider reachability and credential check."""
    provider_id: str
    ok: bool
    message: str
    model: Optional[str] = None
    latency_ms: Optional[float] = None
    error_kind: Optional[str] = None


class ProviderAdapter(ABC):
    """
    Contract for AI backends.

    Every implementation MUST:
    - Translate a NormalizedRequest into exactly one backend call
    - Map backend failures onto the ProviderError hierarchy
    - Never retry internally (the orchestrator owns the retry policy)
    """

    provider_id: str = ""
    max_tokens_limit: int = MAX_TOKENS_LIMIT
    max_temperature: float = MAX_TEMPERATURE

    def call(self, request: NormalizedRequest) -> ProviderResult:
        """Validate the request, then send it to the backend.

        Raises:
            InvalidParameter: Before any network traffic, for bad input
            ProviderError: Subclass matching the backend failure
        """
        validate_request(request, self.max_tokens_limit, self.max_temperature)
        return self._send(request)

    def test_connection(self) -> ConnectionCheck:
        """Send one tiny generation to confirm the key works and the backend answers.

        Provider failures are reported in the result rather than raised.
        """
        request = NormalizedRequest.generate(CONNECTION_CHECK_PROMPT, temperature=0.0, max_tokens=16)
        started = time.perf_counter()
        try:
            result = self.call(request)
        except ProviderError as e:
            logger.warning("Connection check failed for %s: %s", self.provider_id, e)
            return ConnectionCheck(
                provider_id=self.provider_id,
                ok=False,
                message=str(e),
                error_kind=type(e).__name__,
            )
        latency_ms = round((time.perf_counter() - started) * 1000, 1)
        logger.info("Connection check passed for %s in %.1fms", self.provider_id, latency_ms)
        return ConnectionCheck(
            provider_id=self.provider_id,
            ok=True,
            message="Connection OK",
            model=result.model,
            latency_ms=latency_ms,
        )

    @abstractmethod
    def _send(self, request: NormalizedRequest) -> ProviderResult:
        """Perform the backend call for an already validated request."""
