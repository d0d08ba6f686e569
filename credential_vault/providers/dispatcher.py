"""
Validity Dispatcher — one result contract over heterogeneous provider probes.

Probes are external collaborators. Any object exposing::

    async def probe(raw_secret: str) -> ProbeError | None

can be registered for a provider name. ``None`` means the provider accepted
the secret. A plain ``{"errorKind": ..., "message": ...}`` mapping is read as
a failure too; any other result is reported as an ``http_error``.

Every attempt runs under a timeout and transient failures are retried a
bounded number of times, so a hung provider can never stall the caller.
"""
import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional, Protocol

from ..exceptions import ValidationFailure
from ..vault.crypto import hash_for_logging

logger = logging.getLogger("credential_vault.providers")

# Failure kinds reported by probes
INVALID = "invalid"
NETWORK = "network"
TIMEOUT = "timeout"
RATE_LIMITED = "rate_limited"
HTTP_ERROR = "http_error"

TRANSIENT_KINDS = frozenset({NETWORK, TIMEOUT, RATE_LIMITED})


@dataclass(frozen=True)
class ProbeError:
    kind: str
    message: str


@dataclass(frozen=True)
class ValidityResult:
    valid: bool
    error: Optional[str] = None

    def as_dict(self) -> dict:
        if self.error is None:
            return {"valid": self.valid}
        return {"valid": self.valid, "error": self.error}


class ProviderProbe(Protocol):
    async def probe(self, raw_secret: str) -> Optional[ProbeError]:
        ...


class ValidityDispatcher:
    """Routes validity checks to registered provider probes.

    Args:
        probes: Mapping of provider name to probe.
        timeout: Seconds allowed per attempt.
        max_retries: Extra attempts for transient failures.
        backoff: Base delay in seconds between retries (doubles each retry).
    """

    def __init__(
        self,
        probes: Optional[dict[str, ProviderProbe]] = None,
        timeout: float = 10.0,
        max_retries: int = 2,
        backoff: float = 0.5,
    ):
        self._probes: dict[str, ProviderProbe] = dict(probes or {})
        self._timeout = timeout
        self._max_retries = max_retries
        self._backoff = backoff

    def register(self, provider: str, probe: ProviderProbe) -> None:
        self._probes[provider] = probe

    @property
    def providers(self) -> list[str]:
        return sorted(self._probes)

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def max_retries(self) -> int:
        return self._max_retries

    async def _attempt(self, probe: ProviderProbe, raw_secret: str) -> Optional[ProbeError]:
        try:
            outcome = await asyncio.wait_for(probe.probe(raw_secret), self._timeout)
        except asyncio.TimeoutError:
            return ProbeError(TIMEOUT, f"Provider did not answer within {self._timeout}s")
        except Exception as err:
            return ProbeError(NETWORK, f"Network error: {err}")
        # bool-returning clients (``validate_token``) are accepted too
        if outcome is None or outcome is True:
            return None
        if outcome is False:
            return ProbeError(INVALID, "Provider rejected the token")
        if isinstance(outcome, ProbeError):
            return outcome
        if isinstance(outcome, Mapping) and "errorKind" in outcome:
            return ProbeError(
                str(outcome["errorKind"]),
                str(outcome.get("message") or "Provider rejected the token"),
            )
        logger.warning("Probe returned unexpected result of type %s", type(outcome).__name__)
        return ProbeError(HTTP_ERROR, "Unexpected probe result")

    async def test_token_validity(self, provider: str, raw_secret: str) -> ValidityResult:
        """Check a raw secret against its provider without storing it.

        Returns:
            ValidityResult; never raises for provider-side failures.
        """
        probe = self._probes.get(provider)
        if probe is None:
            return ValidityResult(False, f"Unknown provider: {provider}")

        fingerprint = hash_for_logging(raw_secret)
        failure: Optional[ProbeError] = None
        for attempt in range(self._max_retries + 1):
            if attempt:
                await asyncio.sleep(self._backoff * (2 ** (attempt - 1)))
            failure = await self._attempt(probe, raw_secret)
            if failure is None:
                logger.info("Provider %s accepted token %s", provider, fingerprint)
                return ValidityResult(True)
            if failure.kind not in TRANSIENT_KINDS:
                break
            logger.debug(
                "Transient %s failure probing %s (attempt %d): %s",
                failure.kind, provider, attempt + 1, failure.message,
            )

        logger.info(
            "Provider %s rejected token %s: %s", provider, fingerprint, failure.kind
        )
        return ValidityResult(False, failure.message)

    async def require_valid(self, provider: str, raw_secret: str) -> None:
        """Raise :class:`ValidationFailure` unless the provider accepts the secret."""
        result = await self.test_token_validity(provider, raw_secret)
        if not result.valid:
            raise ValidationFailure(provider, result.error or "Invalid token")
