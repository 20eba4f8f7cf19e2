"""Tests for BatchOrchestrator proxy assignment, ordering, pacing and summaries."""

import asyncio

import pytest

from checkin_engine import batch_orchestrator
from checkin_engine.batch_orchestrator import BatchOrchestrator, summarize
from checkin_engine.checkin_workflow import CheckinResult
from checkin_engine.outcomes import ConfigFailure, ErrorKind

from tests.fakes import (
    ClientFactory,
    FakeChainClient,
    FakeWebClient,
    WorkflowRecorder,
    http_error,
)


KEYS = ["0x" + f"{i:02d}" * 32 for i in range(1, 6)]


def make_orchestrator(recorder, delay=0, concurrency=1):
    orchestrator = BatchOrchestrator(delay=delay, concurrency=concurrency, workflow_factory=recorder)
    recorder.orchestrator = orchestrator
    return orchestrator


class TestWorkflowCreation:

    @pytest.mark.asyncio
    async def test_proxies_assigned_round_robin(self):
        recorder = WorkflowRecorder()
        orchestrator = make_orchestrator(recorder)

        await orchestrator.run(KEYS, ["p0:1080", "p1:1080"])

        assert [w.proxy for w in recorder.created] == ["p0:1080", "p1:1080", "p0:1080", "p1:1080", "p0:1080"]

    @pytest.mark.asyncio
    async def test_no_proxies_means_none(self):
        recorder = WorkflowRecorder()
        orchestrator = make_orchestrator(recorder)

        await orchestrator.run(KEYS[:3], [])

        assert [w.proxy for w in recorder.created] == [None, None, None]

    @pytest.mark.asyncio
    async def test_wallet_ids_and_indexes(self):
        recorder = WorkflowRecorder()
        orchestrator = make_orchestrator(recorder)

        await orchestrator.run(KEYS[:3])

        assert [w.wallet_id for w in recorder.created] == ["wallet-001", "wallet-002", "wallet-003"]
        assert [w.index for w in recorder.created] == [1, 2, 3]
        assert [w.kwargs['private_key'] for w in recorder.created] == KEYS[:3]

    @pytest.mark.asyncio
    async def test_empty_credentials_rejected_before_any_context(self):
        recorder = WorkflowRecorder()
        orchestrator = make_orchestrator(recorder)

        with pytest.raises(ConfigFailure):
            await orchestrator.run([], ["p0:1080"])

        assert recorder.created == []

    def test_negative_delay_rejected(self):
        with pytest.raises(ConfigFailure):
            BatchOrchestrator(delay=-1)

    def test_zero_concurrency_rejected(self):
        with pytest.raises(ConfigFailure):
            BatchOrchestrator(concurrency=0)


class TestSequentialRun:

    @pytest.mark.asyncio
    async def test_results_in_input_order_despite_failures(self):
        recorder = WorkflowRecorder(failing={2, 4})
        orchestrator = make_orchestrator(recorder)

        results = await orchestrator.run(KEYS)

        assert len(results) == len(KEYS)
        assert [r.index for r in results] == [1, 2, 3, 4, 5]
        assert [r.success for r in results] == [True, False, True, False, True]
        assert recorder.started == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_results_appended_as_each_context_finishes(self):
        recorder = WorkflowRecorder()
        orchestrator = make_orchestrator(recorder)

        await orchestrator.run(KEYS[:4])

        assert recorder.results_seen_at_start == {1: 0, 2: 1, 3: 2, 4: 3}

    @pytest.mark.asyncio
    async def test_pacing_between_completions_only(self, monkeypatch):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        monkeypatch.setattr(batch_orchestrator.asyncio, 'sleep', fake_sleep)
        recorder = WorkflowRecorder()
        orchestrator = make_orchestrator(recorder, delay=2.5)

        await orchestrator.run(KEYS[:3])

        assert sleeps == [2.5, 2.5]

    @pytest.mark.asyncio
    async def test_pacing_override(self, monkeypatch):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        monkeypatch.setattr(batch_orchestrator.asyncio, 'sleep', fake_sleep)
        recorder = WorkflowRecorder()
        orchestrator = make_orchestrator(recorder, delay=2.5)

        await orchestrator.run(KEYS[:2], pacing_delay=0.5)

        assert sleeps == [0.5]

    @pytest.mark.asyncio
    async def test_single_wallet_never_sleeps(self, monkeypatch):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        monkeypatch.setattr(batch_orchestrator.asyncio, 'sleep', fake_sleep)
        orchestrator = make_orchestrator(WorkflowRecorder(), delay=5)

        await orchestrator.run(KEYS[:1])

        assert sleeps == []


class TestParallelRun:

    @pytest.mark.asyncio
    async def test_concurrency_bound_respected(self):
        recorder = WorkflowRecorder(run_times={1: 0.05, 2: 0.03, 3: 0.01, 4: 0.02, 5: 0.01})
        orchestrator = make_orchestrator(recorder, concurrency=2)

        results = await orchestrator.run(KEYS)

        assert recorder.max_in_flight <= 2
        assert len(results) == 5

    @pytest.mark.asyncio
    async def test_results_sorted_by_index(self):
        # later wallets finish first
        recorder = WorkflowRecorder(failing={1}, run_times={1: 0.06, 2: 0.04, 3: 0.02})
        orchestrator = make_orchestrator(recorder, concurrency=3)

        results = await orchestrator.run(KEYS[:3])

        assert recorder.finished == [3, 2, 1]
        assert [r.index for r in results] == [1, 2, 3]
        assert [r.success for r in results] == [False, True, True]

    @pytest.mark.asyncio
    async def test_completions_spaced_by_delay(self):
        recorder = WorkflowRecorder(run_times={1: 0.01, 2: 0.01, 3: 0.01})
        orchestrator = make_orchestrator(recorder, delay=0.2, concurrency=3)

        loop = asyncio.get_running_loop()
        recorded_at = []
        record = orchestrator._record

        async def timed_record(result):
            recorded_at.append(loop.time())
            await record(result)

        orchestrator._record = timed_record

        results = await orchestrator.run(KEYS[:3])

        assert len(results) == 3
        assert len(recorded_at) == 3
        gaps = [later - earlier for earlier, later in zip(recorded_at, recorded_at[1:])]
        assert all(gap >= 0.19 for gap in gaps)
        # all three ran together, only the recording was paced
        assert recorder.max_in_flight == 3


class TestScenarios:

    @pytest.mark.asyncio
    async def test_three_wallets_no_proxies_all_succeed(self):
        web_factory = ClientFactory(FakeWebClient)
        chain_factory = ClientFactory(FakeChainClient)
        orchestrator = BatchOrchestrator(
            delay=0,
            web_client_factory=web_factory,
            chain_client_factory=chain_factory,
        )

        results = await orchestrator.run(KEYS[:3], [])
        summary = orchestrator.summary()

        assert len(results) == 3
        assert all(r.success for r in results)
        assert summary.success_rate == 100.0
        assert summary.failures == {}
        assert all(client.proxy is None for client in web_factory.created)
        assert len({id(c) for c in chain_factory.created}) == 3

    @pytest.mark.asyncio
    async def test_nonce_failure_on_first_wallet_does_not_stop_second(self):
        web_factory = ClientFactory(
            FakeWebClient,
            per_wallet={'wallet-001': {'routes': {'auth/nonce/': http_error(500, "Internal Server Error")}}},
        )
        chain_factory = ClientFactory(FakeChainClient)
        orchestrator = BatchOrchestrator(
            delay=0,
            web_client_factory=web_factory,
            chain_client_factory=chain_factory,
        )

        results = await orchestrator.run(KEYS[:2])

        assert results[0].success is False
        assert results[0].error_kind == ErrorKind.AUTH_FAILURE
        assert "nonce retrieval" in results[0].error
        assert results[1].success is True
        assert 'execute' in chain_factory.for_wallet('wallet-002').call_names()
        assert orchestrator.summary().failures == {1: results[0].error}

    @pytest.mark.asyncio
    async def test_malformed_proxy_fails_only_its_wallet(self):
        orchestrator = BatchOrchestrator(
            delay=0,
            web_client_factory=ClientFactory(FakeWebClient),
            chain_client_factory=ClientFactory(FakeChainClient),
        )

        results = await orchestrator.run(KEYS[:2], ["bad-proxy", "10.0.0.2:1080"])

        assert results[0].error_kind == ErrorKind.CONFIG_FAILURE
        assert results[1].success is True


class TestRunFromFiles:

    @pytest.mark.asyncio
    async def test_loads_keys_and_proxies(self, tmp_path):
        keys_file = tmp_path / "keys.txt"
        keys_file.write_text(f"# wallets\n{KEYS[0]}\n\n  {KEYS[1]}  \n")
        proxies_file = tmp_path / "proxies.txt"
        proxies_file.write_text("10.0.0.1:1080\n")

        recorder = WorkflowRecorder()
        orchestrator = make_orchestrator(recorder)

        results = await orchestrator.run_from_files(str(keys_file), str(proxies_file))

        assert len(results) == 2
        assert [w.kwargs['private_key'] for w in recorder.created] == KEYS[:2]
        assert [w.proxy for w in recorder.created] == ["10.0.0.1:1080", "10.0.0.1:1080"]

    @pytest.mark.asyncio
    async def test_missing_proxy_file_means_no_proxies(self, tmp_path):
        keys_file = tmp_path / "keys.txt"
        keys_file.write_text(KEYS[0] + "\n")

        recorder = WorkflowRecorder()
        orchestrator = make_orchestrator(recorder)

        await orchestrator.run_from_files(str(keys_file), str(tmp_path / "missing.txt"))

        assert recorder.created[0].proxy is None

    @pytest.mark.asyncio
    async def test_missing_key_file_is_config_failure(self, tmp_path):
        orchestrator = make_orchestrator(WorkflowRecorder())

        with pytest.raises(ConfigFailure):
            await orchestrator.run_from_files(str(tmp_path / "missing.txt"))

    @pytest.mark.asyncio
    async def test_key_file_with_only_comments_is_config_failure(self, tmp_path):
        keys_file = tmp_path / "keys.txt"
        keys_file.write_text("# nothing here\n\n")
        orchestrator = make_orchestrator(WorkflowRecorder())

        with pytest.raises(ConfigFailure):
            await orchestrator.run_from_files(str(keys_file))


class TestSummarize:

    def test_counts_rates_and_durations(self):
        results = [
            CheckinResult(index=1, wallet_id="wallet-001", success=True, duration=2.0),
            CheckinResult(index=2, wallet_id="wallet-002", success=False, duration=1.0,
                          error="login failed", error_kind=ErrorKind.AUTH_FAILURE),
            CheckinResult(index=3, wallet_id="wallet-003", success=True, duration=3.0),
            CheckinResult(index=4, wallet_id="wallet-004", success=True, duration=2.0),
        ]

        summary = summarize(results)

        assert summary.total == 4
        assert summary.success_count == 3
        assert summary.failure_count == 1
        assert summary.success_rate == 75.0
        assert summary.failure_rate == 25.0
        assert summary.total_duration == 8.0
        assert summary.average_duration == 2.0
        assert summary.failures == {2: "login failed"}

    def test_empty_results(self):
        summary = summarize([])

        assert summary.total == 0
        assert summary.success_rate == 0.0
        assert summary.average_duration == 0.0
