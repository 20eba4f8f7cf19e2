"""
Batch Orchestrator

Runs one CheckinWorkflow per private key and aggregates the outcomes.

Process:
1. Load keys and proxies (round-robin: key i gets proxy i % len(proxies))
2. Build every workflow context up front, each with its own clients
3. Run them in input order (or bounded-parallel with concurrency > 1)
4. Wait `delay` seconds between completions
5. Summarize success/failure counts, rates and durations
"""

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from .chain_client import ChainClient
from .checkin_workflow import CheckinResult, CheckinWorkflow
from .config_loader import CheckinConfig, read_lines_from_file
from .logging_setup import mask_secret
from .outcomes import ConfigFailure
from .proxy_config import mask_proxy_string
from .web_client import WebClient


@dataclass
class BatchSummary:
    """Aggregate statistics over one batch"""
    total: int
    success_count: int
    failure_count: int
    success_rate: float
    failure_rate: float
    total_duration: float
    average_duration: float
    failures: Dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return asdict(self)

    def __repr__(self):
        return (f"BatchSummary({self.success_count}/{self.total} ok, "
                f"{self.success_rate:.1f}%, {self.total_duration:.2f}s)")


def summarize(results: Sequence[CheckinResult]) -> BatchSummary:
    """
    Compute batch statistics from finished results

    Args:
        results: Check-in results (any order)

    Returns:
        BatchSummary; rates are percentages rounded to one decimal
    """
    total = len(results)
    success_count = sum(1 for r in results if r.success)
    failure_count = total - success_count
    total_duration = round(sum(r.duration for r in results), 2)

    return BatchSummary(
        total=total,
        success_count=success_count,
        failure_count=failure_count,
        success_rate=round(success_count / total * 100, 1) if total else 0.0,
        failure_rate=round(failure_count / total * 100, 1) if total else 0.0,
        total_duration=total_duration,
        average_duration=round(total_duration / total, 2) if total else 0.0,
        failures={r.index: r.error or "unknown error" for r in sorted(results, key=lambda r: r.index) if not r.success},
    )


def log_summary(summary: BatchSummary):
    """Render the batch report"""
    logger.info("=" * 60)
    logger.info("📊 CHECK-IN SUMMARY")
    logger.info("=" * 60)
    logger.info(f"✓ Success: {summary.success_count}/{summary.total} ({summary.success_rate:.1f}%)")
    logger.info(f"✗ Failed: {summary.failure_count}/{summary.total} ({summary.failure_rate:.1f}%)")
    logger.info(f"⏱ Total duration: {summary.total_duration:.2f}s (avg {summary.average_duration:.2f}s)")

    if summary.failures:
        logger.info("Failures:")
        for index, reason in summary.failures.items():
            logger.info(f"  #{index}: {reason}")
    logger.info("=" * 60)


class BatchOrchestrator:
    """
    Multi-wallet check-in runner

    Features:
    - One isolated workflow context per key (own proxy, web and chain clients)
    - Round-robin proxy assignment
    - Sequential by default, optional bounded parallelism
    - Results appended as soon as each context finishes
    """

    def __init__(
        self,
        config: Optional[CheckinConfig] = None,
        delay: Optional[float] = None,
        concurrency: Optional[int] = None,
        workflow_factory: Callable[..., Any] = CheckinWorkflow,
        web_client_factory: Callable[..., Any] = WebClient,
        chain_client_factory: Callable[..., Any] = ChainClient
    ):
        """
        Initialize orchestrator

        Args:
            config: Loaded configuration (default: built-in defaults)
            delay: Seconds between completions (default: batch.delay_seconds)
            concurrency: Contexts in flight at once (default: batch.concurrency)
            workflow_factory: Builds one workflow context per key
            web_client_factory: Passed to every workflow context
            chain_client_factory: Passed to every workflow context
        """
        self.config = config or CheckinConfig()
        self.delay = self.config.batch.delay_seconds if delay is None else delay
        self.concurrency = self.config.batch.concurrency if concurrency is None else concurrency

        if self.delay < 0:
            raise ConfigFailure(f"delay must not be negative, got {self.delay}")
        if self.concurrency < 1:
            raise ConfigFailure(f"concurrency must be at least 1, got {self.concurrency}")

        self.workflow_factory = workflow_factory
        self.web_client_factory = web_client_factory
        self.chain_client_factory = chain_client_factory

        self.workflows: List[Any] = []
        self.results: List[CheckinResult] = []
        self._results_lock: Optional[asyncio.Lock] = None

        logger.info(f"Batch orchestrator initialized (delay {self.delay}s, concurrency {self.concurrency})")

    def load_inputs(
        self,
        keys_file: Optional[str] = None,
        proxies_file: Optional[str] = None
    ) -> Tuple[List[str], List[str]]:
        """
        Read private keys and proxies from their line files

        Returns:
            (private_keys, proxies)

        Raises:
            ConfigFailure: If the key file is missing or has no keys
        """
        keys_path = keys_file or self.config.batch.private_keys_file
        proxies_path = proxies_file or self.config.batch.proxies_file

        private_keys = read_lines_from_file(keys_path, required=True)
        if not private_keys:
            raise ConfigFailure(f"No private keys found in {keys_path}")

        proxies = read_lines_from_file(proxies_path)
        logger.info(f"✓ Loaded {len(private_keys)} private keys, {len(proxies)} proxies")
        return private_keys, proxies

    def create_workflows(self, private_keys: Sequence[str], proxies: Sequence[str]) -> List[Any]:
        """
        Build one workflow context per key

        Key i (0-based) gets proxies[i % len(proxies)], or no proxy when the
        list is empty, and wallet id wallet-{i+1:03d}.
        """
        workflows = []
        for i, private_key in enumerate(private_keys):
            proxy = proxies[i % len(proxies)] if proxies else None
            wallet_id = f"wallet-{i + 1:03d}"

            logger.debug(
                f"[{wallet_id}] key {mask_secret(private_key, head=4, tail=4)}, "
                f"proxy {mask_proxy_string(proxy) if proxy else 'none'}"
            )

            workflows.append(self.workflow_factory(
                private_key=private_key,
                index=i + 1,
                wallet_id=wallet_id,
                proxy=proxy,
                network=self.config.network,
                service=self.config.service,
                checkin=self.config.checkin,
                http=self.config.http,
                web_client_factory=self.web_client_factory,
                chain_client_factory=self.chain_client_factory,
            ))
        return workflows

    async def _record(self, result: CheckinResult):
        async with self._results_lock:
            self.results.append(result)

    async def _run_sequential(self, delay: float):
        total = len(self.workflows)
        for position, workflow in enumerate(self.workflows, 1):
            logger.info(f"▶ Wallet {position}/{total}")
            result = await workflow.run()
            await self._record(result)

            if position < total and delay > 0:
                logger.info(f"⏳ Waiting {delay}s before next wallet...")
                await asyncio.sleep(delay)

    async def _run_parallel(self, delay: float):
        """
        Bounded-parallel run

        Contexts run concurrently (at most `concurrency` at a time), but
        completions are recorded one by one, each at least `delay` seconds
        after the previous one.
        """
        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(self.concurrency)
        pacing_lock = asyncio.Lock()
        last_completion: Optional[float] = None

        async def worker(workflow):
            nonlocal last_completion
            async with semaphore:
                result = await workflow.run()

            async with pacing_lock:
                if last_completion is not None and delay > 0:
                    wait = last_completion + delay - loop.time()
                    if wait > 0:
                        logger.info(f"⏳ Waiting {wait:.2f}s before recording wallet {result.index}...")
                        await asyncio.sleep(wait)
                await self._record(result)
                last_completion = loop.time()

        await asyncio.gather(*(worker(w) for w in self.workflows))
        self.results.sort(key=lambda r: r.index)

    async def run(
        self,
        private_keys: Sequence[str],
        proxies: Optional[Sequence[str]] = None,
        pacing_delay: Optional[float] = None
    ) -> List[CheckinResult]:
        """
        Run the whole batch

        Args:
            private_keys: One key per wallet, in run order
            proxies: Proxy strings assigned round-robin (may be empty)
            pacing_delay: Override for the delay between completions

        Returns:
            One CheckinResult per key, in input order

        Raises:
            ConfigFailure: If no keys were given
        """
        if not private_keys:
            raise ConfigFailure("No private keys provided")

        proxies = list(proxies or [])
        delay = self.delay if pacing_delay is None else pacing_delay

        self.results = []
        self._results_lock = asyncio.Lock()
        self.workflows = self.create_workflows(private_keys, proxies)

        logger.info("=" * 60)
        logger.info(f"🚀 Starting check-in batch: {len(self.workflows)} wallets")
        logger.info(f"  Network: {self.config.network.name} (chain {self.config.network.chain_id})")
        logger.info(f"  Proxies: {len(proxies)}")
        logger.info(f"  Delay: {delay}s, concurrency: {self.concurrency}")
        logger.info("=" * 60)

        if self.concurrency > 1 and len(self.workflows) > 1:
            await self._run_parallel(delay)
        else:
            await self._run_sequential(delay)

        log_summary(self.summary())
        return list(self.results)

    async def run_from_files(
        self,
        keys_file: Optional[str] = None,
        proxies_file: Optional[str] = None,
        pacing_delay: Optional[float] = None
    ) -> List[CheckinResult]:
        """Load keys and proxies from disk, then run()"""
        private_keys, proxies = self.load_inputs(keys_file, proxies_file)
        return await self.run(private_keys, proxies, pacing_delay)

    def summary(self) -> BatchSummary:
        return summarize(self.results)
