"""Tests for the command line entry point."""

import checkin_engine.__main__ as cli
from checkin_engine.batch_orchestrator import BatchOrchestrator

from tests.fakes import ClientFactory, FakeChainClient, FakeWebClient


def test_default_command_is_run():
    args = cli.build_parser().parse_args([])

    assert args.command == "run"
    assert args.delay is None


def test_overrides_parsed():
    args = cli.build_parser().parse_args(["check", "--delay", "0.5", "--concurrency", "4", "--keys", "k.txt"])

    assert args.command == "check"
    assert args.delay == 0.5
    assert args.concurrency == 4
    assert args.keys == "k.txt"


def test_missing_config_file_exits_non_zero(tmp_path):
    assert cli.main(["--config", str(tmp_path / "missing.yaml")]) == 1


def test_missing_key_file_exits_non_zero(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    assert cli.main(["run", "--keys", str(tmp_path / "missing.txt")]) == 1


def test_run_with_failed_wallets_still_exits_zero(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    keys = tmp_path / "keys.txt"
    keys.write_text("0x" + "11" * 32 + "\n" + "0x" + "22" * 32 + "\n")

    def orchestrator_with_fakes(config, delay=None, concurrency=None):
        return BatchOrchestrator(
            config,
            delay=0,
            concurrency=concurrency,
            web_client_factory=ClientFactory(FakeWebClient),
            chain_client_factory=ClientFactory(FakeChainClient),
        )

    monkeypatch.setattr(cli, "BatchOrchestrator", orchestrator_with_fakes)

    # second wallet gets an unparseable proxy and fails on its own
    proxies = tmp_path / "proxies.txt"
    proxies.write_text("10.0.0.1:1080\nbroken\n")

    assert cli.main(["run", "--keys", str(keys), "--proxies", str(proxies)]) == 0
