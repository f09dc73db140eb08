"""Push provider interface and the logging-only provider."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from matchday.notifications.payloads import PlatformPayload

logger = logging.getLogger(__name__)

# Provider feedback meaning the token will never work again
PERMANENT_TOKEN_ERRORS = frozenset({
    "registration-token-not-registered",
    "invalid-registration-token",
})


def normalize_error_code(code: Optional[str]) -> Optional[str]:
    """"messaging/registration-token-not-registered" -> "registration-token-not-registered"."""
    if not code:
        return None
    code = code.strip().lower()
    if code.startswith("messaging/"):
        code = code[len("messaging/"):]
    return code.replace("_", "-")


def is_permanent_token_error(code: Optional[str]) -> bool:
    return normalize_error_code(code) in PERMANENT_TOKEN_ERRORS


@dataclass
class TokenResult:
    token: str
    success: bool
    error_code: Optional[str] = None

    @property
    def permanent_failure(self) -> bool:
        return not self.success and is_permanent_token_error(self.error_code)


@dataclass
class MulticastResult:
    success_count: int = 0
    failure_count: int = 0
    results: list[TokenResult] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[TokenResult]) -> "MulticastResult":
        success = sum(1 for r in results if r.success)
        return cls(success_count=success, failure_count=len(results) - success, results=results)


class PushProvider(ABC):
    """Sends one payload to a batch of device tokens."""

    max_tokens_per_call: int = 500

    @abstractmethod
    async def send_multicast(self, tokens: list[str], payload: PlatformPayload) -> MulticastResult:
        """Per-token results come back in the same order as `tokens`."""


class LoggingPushProvider(PushProvider):
    """Used when push delivery is disabled: logs and reports success."""

    async def send_multicast(self, tokens: list[str], payload: PlatformPayload) -> MulticastResult:
        logger.info(
            f"[PUSH] (disabled) would send {payload.data.get('type')} to {len(tokens)} "
            f"{payload.platform.value} tokens: {payload.title!r}"
        )
        return MulticastResult.from_results([TokenResult(token=t, success=True) for t in tokens])
