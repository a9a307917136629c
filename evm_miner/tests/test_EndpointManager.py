"""Unit tests for EndpointManager."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from evm_miner.src.EndpointManager import EndpointManager
from evm_miner.src.LedgerClient import LedgerError
from evm_miner.src.Session import MinerIdentity

IDENTITY = MinerIdentity(account="evmminer1111", permission="active", signing_key="PUB_K1_test")


class FakeClient:
    """Ledger client whose liveness check can be toggled per URL."""

    def __init__(self, url: str, registry: dict):
        self.url = url
        self.registry = registry
        self.checks = 0
        self.closed = False

    async def get_info(self):
        self.checks += 1
        if not self.registry["up"].get(self.url, False):
            raise LedgerError(f"{self.url} unreachable")
        return {"chain_id": self.registry["chain_ids"].get(self.url, "aa" * 32)}

    async def close(self):
        self.closed = True


def make_manager(up: dict, oracle=None, chain_ids=None):
    registry = {"up": up, "chain_ids": chain_ids or {}, "clients": {}}

    def factory(url: str) -> FakeClient:
        client = FakeClient(url, registry)
        registry["clients"][url] = client
        return client

    manager = EndpointManager(
        endpoints=["http://a", "http://b"],
        identity=IDENTITY,
        signer=AsyncMock(),
        oracle=oracle,
        client_factory=factory,
    )
    return manager, registry


class TestEndpointManagerInit:
    def test_requires_endpoints(self) -> None:
        with pytest.raises(ValueError, match="At least one ledger endpoint"):
            EndpointManager(endpoints=[], identity=IDENTITY, signer=AsyncMock())

    def test_no_session_before_refresh(self) -> None:
        manager, _ = make_manager({})
        assert manager.session is None
        assert manager.active_endpoint is None


class TestRefresh:
    """Test endpoint selection."""

    def test_first_success_wins(self) -> None:
        manager, registry = make_manager({"http://a": True, "http://b": True})

        assert asyncio.run(manager.refresh()) == 0
        assert manager.session.url == "http://a"
        # b is never tried when a succeeds
        assert "http://b" not in registry["clients"]

    def test_failover_to_second(self) -> None:
        manager, registry = make_manager({"http://a": False, "http://b": True})

        assert asyncio.run(manager.refresh()) == 1
        assert manager.session.url == "http://b"
        assert manager.active_endpoint == "http://b"
        assert registry["clients"]["http://a"].checks == 1

    def test_stays_on_second_while_it_succeeds(self) -> None:
        manager, registry = make_manager({"http://a": False, "http://b": True})

        async def cycles():
            for _ in range(3):
                assert await manager.refresh() == 1
                assert manager.session.url == "http://b"

        asyncio.run(cycles())
        # first endpoint is re-checked every cycle
        assert registry["clients"]["http://a"].checks == 3

    def test_session_bound_to_identity_and_chain(self) -> None:
        manager, _ = make_manager({"http://a": True}, chain_ids={"http://a": "cd" * 32})
        asyncio.run(manager.refresh())

        session = manager.session
        assert session.identity == IDENTITY
        assert session.chain_id == "cd" * 32

    def test_session_rebuilt_each_success(self) -> None:
        manager, _ = make_manager({"http://a": True})

        async def cycles():
            await manager.refresh()
            first = manager.session
            await manager.refresh()
            return first, manager.session

        first, second = asyncio.run(cycles())
        assert first is not second

    def test_all_down_keeps_previous_session(self) -> None:
        up = {"http://a": True}
        manager, _ = make_manager(up)

        async def cycles():
            await manager.refresh()
            session = manager.session
            up["http://a"] = False
            result = await manager.refresh()
            return session, result

        session, result = asyncio.run(cycles())
        assert result is None
        assert manager.session is session

    def test_all_down_without_session(self) -> None:
        manager, _ = make_manager({})
        assert asyncio.run(manager.refresh()) is None
        assert manager.session is None

    def test_malformed_info_tries_next(self) -> None:
        manager, registry = make_manager({"http://a": True, "http://b": True})

        async def no_chain_id():
            return {}

        async def run():
            client = manager._client_for("http://a")
            client.get_info = no_chain_id
            return await manager.refresh()

        assert asyncio.run(run()) == 1


class TestSampling:
    """Successful cycles trigger a non-blocking price sample."""

    def test_sample_triggered_with_active_client(self) -> None:
        oracle = AsyncMock()
        manager, registry = make_manager({"http://a": False, "http://b": True}, oracle=oracle)

        async def run():
            await manager.refresh()
            await asyncio.sleep(0)

        asyncio.run(run())
        oracle.sample.assert_awaited_once_with(registry["clients"]["http://b"])

    def test_no_sample_when_all_down(self) -> None:
        oracle = AsyncMock()
        manager, _ = make_manager({}, oracle=oracle)

        async def run():
            await manager.refresh()
            await asyncio.sleep(0)

        asyncio.run(run())
        oracle.sample.assert_not_called()

    def test_refresh_does_not_wait_for_sample(self) -> None:
        class SlowOracle:
            def __init__(self):
                self.finished = False

            async def sample(self, client):
                await asyncio.sleep(3600)
                self.finished = True

        oracle = SlowOracle()
        manager, _ = make_manager({"http://a": True}, oracle=oracle)

        async def run():
            await asyncio.wait_for(manager.refresh(), timeout=1)
            await manager.close()

        asyncio.run(run())
        assert oracle.finished is False


class TestRunLoop:
    def test_loop_survives_cycle_errors(self) -> None:
        manager, _ = make_manager({"http://a": True})
        manager.initial_delay = 0
        manager.refresh_interval = 0
        calls = []

        async def flaky_refresh():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return 0

        manager.refresh = flaky_refresh

        async def run():
            task = asyncio.create_task(manager.run())
            while len(calls) < 3:
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        assert len(calls) >= 3

    def test_close_closes_clients(self) -> None:
        manager, registry = make_manager({"http://a": False, "http://b": True})

        async def run():
            await manager.refresh()
            await manager.close()

        asyncio.run(run())
        assert all(c.closed for c in registry["clients"].values())
