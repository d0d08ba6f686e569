"""
Tests for the validity dispatcher and the provider probes.

Tests cover:
- Uniform {valid, error} results over ok / rejection / exception / hang
- Bounded retries for transient failures only
- ValidationFailure from require_valid
- HTTP status mapping of the built-in probes (with a fake aiohttp session)
"""
import asyncio

import aiohttp
import pytest

from credential_vault.exceptions import ValidationFailure
from credential_vault.providers.dispatcher import (
    ProbeError,
    ValidityDispatcher,
    ValidityResult,
    INVALID,
    NETWORK,
    RATE_LIMITED,
)
from credential_vault.providers.probes import (
    AlphaVantageProbe,
    BinanceProbe,
    MonobankProbe,
    default_dispatcher,
)
from credential_vault.vault.config import VaultConfig


# --- Fakes ---

class ScriptedProbe:
    """Returns (or raises) the scripted outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def probe(self, raw_secret):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class HangingProbe:
    async def probe(self, raw_secret):
        await asyncio.sleep(60)


class FakeResponse:
    def __init__(self, status=200, payload=None):
        self.status = status
        self._payload = payload

    async def json(self, content_type=None):
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession.get()."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, headers=None, params=None):
        self.requests.append({"url": url, "headers": headers, "params": params})
        if self.error is not None:
            raise self.error
        return self.response


def make_dispatcher(probe, retries=2, timeout=1.0):
    return ValidityDispatcher({"acme": probe}, timeout=timeout, max_retries=retries, backoff=0)


# --- Dispatcher ---

class TestDispatcher:

    @pytest.mark.asyncio
    async def test_valid(self):
        """Test an accepting probe yields {valid: True}."""
        result = await make_dispatcher(ScriptedProbe(None)).test_token_validity("acme", "s")
        assert result == ValidityResult(True)
        assert result.as_dict() == {"valid": True}

    @pytest.mark.asyncio
    async def test_bool_probe(self):
        """Test bool-returning clients are normalized."""
        ok = await make_dispatcher(ScriptedProbe(True)).test_token_validity("acme", "s")
        bad = await make_dispatcher(ScriptedProbe(False)).test_token_validity("acme", "s")
        assert ok.valid is True
        assert bad.valid is False and bad.error

    @pytest.mark.asyncio
    async def test_unknown_provider(self):
        result = await make_dispatcher(ScriptedProbe(None)).test_token_validity("nope", "s")
        assert result.valid is False
        assert result.error == "Unknown provider: nope"

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self):
        """Test a credential rejection is reported verbatim after one call."""
        probe = ScriptedProbe(ProbeError(INVALID, "Monobank API error: 403"))
        result = await make_dispatcher(probe).test_token_validity("acme", "s")
        assert result.as_dict() == {"valid": False, "error": "Monobank API error: 403"}
        assert probe.calls == 1

    @pytest.mark.asyncio
    async def test_exception_is_converted(self):
        """Test unexpected exceptions never escape the dispatcher."""
        probe = ScriptedProbe(RuntimeError("boom"))
        result = await make_dispatcher(probe, retries=0).test_token_validity("acme", "s")
        assert result.valid is False
        assert "boom" in result.error

    @pytest.mark.asyncio
    async def test_transient_then_success(self):
        """Test a transient failure is retried."""
        probe = ScriptedProbe(ProbeError(NETWORK, "reset"), None)
        result = await make_dispatcher(probe).test_token_validity("acme", "s")
        assert result.valid is True
        assert probe.calls == 2

    @pytest.mark.asyncio
    async def test_retry_budget_is_bounded(self):
        """Test transient failures stop after max_retries extra attempts."""
        probe = ScriptedProbe(ProbeError(RATE_LIMITED, "slow down"))
        result = await make_dispatcher(probe, retries=2).test_token_validity("acme", "s")
        assert result.valid is False
        assert result.error == "slow down"
        assert probe.calls == 3

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test a hanging provider is cut off by the timeout."""
        dispatcher = make_dispatcher(HangingProbe(), retries=0, timeout=0.05)
        result = await dispatcher.test_token_validity("acme", "s")
        assert result.valid is False
        assert "did not answer" in result.error

    @pytest.mark.asyncio
    async def test_require_valid_raises(self):
        probe = ScriptedProbe(ProbeError(INVALID, "bad key"))
        with pytest.raises(ValidationFailure) as exc:
            await make_dispatcher(probe).require_valid("acme", "s")
        assert exc.value.provider == "acme"
        assert exc.value.message == "bad key"

    def test_register(self):
        dispatcher = ValidityDispatcher()
        dispatcher.register("b", ScriptedProbe(None))
        dispatcher.register("a", ScriptedProbe(None))
        assert dispatcher.providers == ["a", "b"]

    @pytest.mark.asyncio
    async def test_error_mapping_is_converted(self):
        """Test a plain {errorKind, message} mapping reads as a failure."""
        probe = ScriptedProbe({"errorKind": "invalid", "message": "bad key"})
        result = await make_dispatcher(probe).test_token_validity("acme", "s")
        assert result.as_dict() == {"valid": False, "error": "bad key"}
        assert probe.calls == 1

    @pytest.mark.asyncio
    async def test_unexpected_result_is_converted(self):
        """Test an unrecognized probe result becomes an http_error failure."""
        probe = ScriptedProbe(42)
        result = await make_dispatcher(probe).test_token_validity("acme", "s")
        assert result.as_dict() == {"valid": False, "error": "Unexpected probe result"}
        assert probe.calls == 1

    def test_default_dispatcher(self):
        dispatcher = default_dispatcher()
        assert dispatcher.providers == ["alpha_vantage", "binance", "monobank"]
        assert dispatcher.timeout == 10.0
        assert dispatcher.max_retries == 2

    def test_default_dispatcher_reads_config(self, monkeypatch):
        """Test probe timeout and retries follow the environment."""
        monkeypatch.setenv("MASTER_SECRET", "s")
        monkeypatch.setenv("VAULT_PROBE_TIMEOUT", "2.5")
        monkeypatch.setenv("VAULT_PROBE_RETRIES", "0")
        dispatcher = default_dispatcher(VaultConfig.from_env())
        assert dispatcher.timeout == 2.5
        assert dispatcher.max_retries == 0


# --- Probes ---

class TestMonobankProbe:

    @pytest.mark.asyncio
    async def test_ok(self):
        session = FakeSession(FakeResponse(200))
        assert await MonobankProbe(session).probe("tok") is None
        assert session.requests[0]["headers"]["X-Token"] == "tok"
        assert session.requests[0]["url"].endswith("/personal/client-info")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, kind", [
        (401, INVALID),
        (403, INVALID),
        (429, RATE_LIMITED),
        (500, "http_error"),
    ])
    async def test_status_mapping(self, status, kind):
        result = await MonobankProbe(FakeSession(FakeResponse(status))).probe("tok")
        assert result.kind == kind

    @pytest.mark.asyncio
    async def test_network_error(self):
        session = FakeSession(error=aiohttp.ClientConnectionError("refused"))
        result = await MonobankProbe(session).probe("tok")
        assert result.kind == NETWORK


class TestAlphaVantageProbe:

    @pytest.mark.asyncio
    async def test_ok(self):
        session = FakeSession(FakeResponse(200, {"Global Quote": {"01. symbol": "SPY"}}))
        assert await AlphaVantageProbe(session).probe("key") is None
        assert session.requests[0]["params"]["apikey"] == "key"

    @pytest.mark.asyncio
    async def test_error_message(self):
        session = FakeSession(FakeResponse(200, {"Error Message": "Invalid API call"}))
        result = await AlphaVantageProbe(session).probe("key")
        assert result.kind == INVALID

    @pytest.mark.asyncio
    async def test_note_means_rate_limited(self):
        session = FakeSession(FakeResponse(200, {"Note": "Thank you for using..."}))
        result = await AlphaVantageProbe(session).probe("key")
        assert result.kind == RATE_LIMITED


class TestBinanceProbe:

    @pytest.mark.asyncio
    async def test_requires_key_pair(self):
        session = FakeSession(FakeResponse(200))
        result = await BinanceProbe(session).probe("only-a-key")
        assert result.kind == INVALID
        assert session.requests == []

    @pytest.mark.asyncio
    async def test_signed_request(self):
        session = FakeSession(FakeResponse(200))
        assert await BinanceProbe(session).probe("api-key:secret-key") is None
        request = session.requests[0]
        assert request["headers"]["X-MBX-APIKEY"] == "api-key"
        assert "signature=" in request["url"]

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        result = await BinanceProbe(FakeSession(FakeResponse(401))).probe("k:s")
        assert result.kind == INVALID

    def test_sign_is_hmac_sha256(self):
        signature = BinanceProbe.sign("timestamp=1", "secret")
        assert len(signature) == 64
        assert signature == BinanceProbe.sign("timestamp=1", "secret")
