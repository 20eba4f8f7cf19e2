"""
Check-in Workflow

One wallet = one workflow context = its own web client and chain client.

Steps:
1. Initialize - connect private key, read address and balance
2. Authenticate - nonce, sign-in message, signature, login token
3. Check in - on-chain checkIn() transaction
4. Record - report the tx hash to the service (best effort)
5. Update points - refresh the user's score (best effort, after a successful record)

Steps 1-3 are fatal: a failure finalizes the context as failed. Steps 4-5
only attach warnings to an otherwise successful result.
"""

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from loguru import logger

from .chain_client import CHECKIN_ABI, ChainClient
from .config_loader import CheckinSettings, HttpSettings, NetworkConfig, ServiceConfig
from .logging_setup import mask_secret
from .outcomes import ConfigFailure, ErrorKind, StepOutcome
from .proxy_config import ProxyBinding, parse_proxy
from .signin_message import build_signin_message
from .web_client import WebClient


class WorkflowState(str, Enum):
    CREATED = "CREATED"
    INITIALIZED = "INITIALIZED"
    AUTHENTICATED = "AUTHENTICATED"
    TRANSACTED = "TRANSACTED"
    RECORDED = "RECORDED"
    FINALIZED = "FINALIZED"


STATE_ORDER = list(WorkflowState)


@dataclass
class CheckinResult:
    """Outcome of one workflow context"""
    index: int
    wallet_id: str
    success: bool
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    address: Optional[str] = None
    balance: Optional[str] = None
    duration: float = 0.0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    warnings: List[str] = field(default_factory=list)
    # last state reached before FINALIZED
    last_state: WorkflowState = WorkflowState.CREATED
    explorer_url: Optional[str] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['error_kind'] = self.error_kind.value if self.error_kind else None
        data['last_state'] = self.last_state.value
        if self.completed_at:
            data['completed_at'] = self.completed_at.isoformat()
        return data


class StepFailed(Exception):
    """Raised inside run() when a fatal step fails; never leaves the workflow"""

    def __init__(self, outcome: StepOutcome):
        super().__init__(outcome.message)
        self.outcome = outcome


class CheckinWorkflow:
    """
    Check-in run for a single wallet

    All network and chain bindings are created in __init__ and never change.
    Nothing here is shared with other workflow contexts.
    """

    def __init__(
        self,
        private_key: str,
        index: int = 1,
        wallet_id: Optional[str] = None,
        proxy: Union[str, ProxyBinding, None] = None,
        network: Optional[NetworkConfig] = None,
        service: Optional[ServiceConfig] = None,
        checkin: Optional[CheckinSettings] = None,
        http: Optional[HttpSettings] = None,
        web_client_factory: Callable[..., Any] = WebClient,
        chain_client_factory: Callable[..., Any] = ChainClient
    ):
        """
        Initialize workflow context

        Args:
            private_key: Wallet private key (kept in memory only)
            index: 1-based position in the batch
            wallet_id: Display id (default: wallet-{index:03d})
            proxy: Proxy string or parsed binding; a malformed string fails this context only
            network: Chain settings
            service: Remote service settings
            checkin: Contract address, gas price and gas margin
            http: Timeout and User-Agent policy
            web_client_factory: Builds the WebClient (tests pass fakes)
            chain_client_factory: Builds the ChainClient (tests pass fakes)
        """
        self.index = index
        self.wallet_id = wallet_id or f"wallet-{index:03d}"
        self._private_key = private_key
        self.network = network or NetworkConfig()
        self.service = service or ServiceConfig()
        self.settings = checkin or CheckinSettings()
        self.http = http or HttpSettings()

        self.state = WorkflowState.CREATED
        self.setup_error: Optional[str] = None
        self.proxy: Optional[ProxyBinding] = None

        # Step outputs
        self.address: Optional[str] = None
        self.balance: Optional[str] = None
        self.access_token: Optional[str] = None
        self.tx_result: Optional[Dict[str, Any]] = None
        self.warnings: List[str] = []
        self.result: Optional[CheckinResult] = None

        self.web_client = None
        self.chain_client = None

        try:
            self.proxy = proxy if isinstance(proxy, ProxyBinding) else parse_proxy(proxy)
        except ConfigFailure as e:
            self.setup_error = str(e)
            logger.error(f"[{self.wallet_id}] ✗ {e}")
            return

        self.chain_client = chain_client_factory(
            rpc_url=self.network.rpc,
            chain_id=self.network.chain_id,
            proxy=self.proxy,
            gas_margin=self.settings.gas_margin,
            label=self.wallet_id,
        )
        self.web_client = web_client_factory(
            proxy=self.proxy,
            timeout=self.http.timeout_seconds,
            user_agent=self.http.user_agent,
            random_user_agent=self.http.random_user_agent,
            headers=self.service.headers,
            label=self.wallet_id,
        )

        logger.debug(f"[{self.wallet_id}] Created workflow context ({'proxy ' + self.proxy.display if self.proxy else 'no proxy'})")

    def _advance(self, new_state: WorkflowState):
        """Move forward in the lifecycle; going backwards is a bug"""
        if STATE_ORDER.index(new_state) <= STATE_ORDER.index(self.state):
            raise RuntimeError(f"Illegal transition {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _auth_headers(self) -> Dict[str, str]:
        return {'authorization': f"Bearer {self.access_token}"}

    # ------------------------------------------------------------------
    # Step 1: initialize
    # ------------------------------------------------------------------

    async def initialize(self) -> StepOutcome:
        """Connect the wallet; CONNECT_FAILURE is fatal"""
        logger.info(f"[{self.wallet_id}] 🔗 Connecting wallet...")
        outcome = await self.chain_client.connect(self._private_key)
        if not outcome.success:
            return outcome

        self.address = outcome.data['address']
        self.balance = outcome.data['balance']
        self._advance(WorkflowState.INITIALIZED)

        logger.info(f"[{self.wallet_id}] 📍 Address: {self.address}")
        logger.info(f"[{self.wallet_id}] 💰 Balance: {self.balance} {self.network.symbol}")
        return outcome

    # ------------------------------------------------------------------
    # Step 2: authenticate
    # ------------------------------------------------------------------

    async def fetch_nonce(self) -> StepOutcome:
        """GET /auth/nonce/{address}"""
        response = await self.web_client.get(self.service.endpoint(f"auth/nonce/{self.address}"))
        outcome = response.to_outcome(ErrorKind.AUTH_FAILURE, "nonce retrieval failed")
        if not outcome.success:
            return outcome

        data = outcome.data
        nonce = data.get('nonce') if isinstance(data, dict) else data
        if nonce is None or nonce == "" or isinstance(nonce, bool) or not isinstance(nonce, (str, int)):
            return StepOutcome.fail(
                ErrorKind.AUTH_FAILURE,
                f"nonce retrieval failed: response has no nonce ({data!r})",
                status=response.status
            )
        return StepOutcome.ok(str(nonce))

    def create_signin_message(self, nonce: str, issued_at: Optional[datetime] = None) -> str:
        return build_signin_message(
            domain=self.service.domain,
            uri=self.service.uri,
            address=self.address,
            chain_id=self.network.chain_id,
            nonce=nonce,
            issued_at=issued_at,
        )

    async def perform_login(self, signature: str, message: str) -> StepOutcome:
        """POST /auth/login; the response must carry access_token"""
        body = {
            'walletAddress': self.address,
            'signature': signature,
            'message': message,
        }
        logger.debug(f"[{self.wallet_id}] Login payload: signature {mask_secret(signature, head=20, tail=0)}, message {len(message)} chars")

        response = await self.web_client.post(self.service.endpoint("auth/login"), body)
        outcome = response.to_outcome(ErrorKind.AUTH_FAILURE, "login failed")
        if not outcome.success:
            return outcome

        token = outcome.data.get('access_token') if isinstance(outcome.data, dict) else None
        if not token:
            return StepOutcome.fail(
                ErrorKind.AUTH_FAILURE,
                "login failed: response has no access_token",
                status=response.status
            )
        return StepOutcome.ok(token)

    async def authenticate(self) -> StepOutcome:
        """
        Nonce -> sign-in message -> signature -> login

        Returns:
            StepOutcome with the access token, or the first failing sub-step (AUTH_FAILURE)
        """
        logger.info(f"[{self.wallet_id}] 🔑 Logging in...")

        nonce = await self.fetch_nonce()
        if not nonce.success:
            return nonce
        logger.debug(f"[{self.wallet_id}] Nonce: {nonce.data}")

        message = self.create_signin_message(nonce.data)

        signature = self.chain_client.sign_message(message)
        if not signature.success:
            return StepOutcome.fail(ErrorKind.AUTH_FAILURE, f"message signing failed: {signature.message}")

        login = await self.perform_login(signature.data, message)
        if not login.success:
            return login

        self.access_token = login.data
        self._advance(WorkflowState.AUTHENTICATED)
        logger.info(f"[{self.wallet_id}] ✓ Login successful")
        return login

    # ------------------------------------------------------------------
    # Step 3: on-chain check-in
    # ------------------------------------------------------------------

    async def execute_checkin(self) -> StepOutcome:
        """Send checkIn() with the configured gas price; CHAIN_FAILURE is fatal"""
        logger.info(f"[{self.wallet_id}] ⏳ Sending check-in transaction...")
        contract_name = f"checkin-{self.wallet_id}"

        bound = self.chain_client.bind_contract(self.settings.contract_address, CHECKIN_ABI, contract_name)
        if not bound.success:
            return bound

        outcome = await self.chain_client.execute(
            contract_name,
            'checkIn',
            [],
            {'gasPrice': self.settings.gas_price}
        )
        if not outcome.success:
            return outcome

        self.tx_result = outcome.data
        self._advance(WorkflowState.TRANSACTED)
        logger.info(f"[{self.wallet_id}] ⛳ Check-in confirmed, gas used {self.tx_result['gas_used']}")
        return outcome

    # ------------------------------------------------------------------
    # Steps 4-5: best-effort bookkeeping
    # ------------------------------------------------------------------

    async def record_checkin(self) -> StepOutcome:
        """POST /wallets/checkin with the transaction hash"""
        body = {
            'walletAddress': self.address,
            'transactionHash': self.tx_result['tx_hash'],
            'chainId': self.network.chain_id,
            'walletApp': self.service.wallet_app,
        }
        response = await self.web_client.post(
            self.service.endpoint("wallets/checkin"),
            body,
            headers=self._auth_headers()
        )
        outcome = response.to_outcome(ErrorKind.RECORD_FAILURE, "check-in record failed")
        if outcome.success:
            self._advance(WorkflowState.RECORDED)
        return outcome

    async def update_points(self) -> StepOutcome:
        """POST /users/update-my-points with an empty body"""
        response = await self.web_client.post(
            self.service.endpoint("users/update-my-points"),
            None,
            headers={**self._auth_headers(), 'content-type': 'application/json'}
        )
        return response.to_outcome(ErrorKind.UPDATE_FAILURE, "points update failed")

    def _warn(self, outcome: StepOutcome):
        warning = f"{outcome.error_kind.value}: {outcome.message}"
        self.warnings.append(warning)
        logger.warning(f"[{self.wallet_id}] ⚠ {warning}")

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def _finalize(self, started: float, failure: Optional[StepOutcome] = None) -> CheckinResult:
        duration = round(time.monotonic() - started, 2)
        last_state = self.state
        self._advance(WorkflowState.FINALIZED)

        tx = self.tx_result or {}
        success = failure is None
        self.result = CheckinResult(
            index=self.index,
            wallet_id=self.wallet_id,
            success=success,
            tx_hash=tx.get('tx_hash'),
            block_number=tx.get('block_number'),
            gas_used=tx.get('gas_used'),
            address=self.address,
            balance=self.balance,
            duration=duration,
            error=None if success else failure.message,
            error_kind=None if success else failure.error_kind,
            warnings=list(self.warnings),
            last_state=last_state,
            explorer_url=self.network.tx_link(tx['tx_hash']) if success and tx.get('tx_hash') else None,
            completed_at=datetime.now(timezone.utc),
        )

        if success:
            logger.info(f"[{self.wallet_id}] 🎯 Check-in complete in {duration:.2f}s")
            logger.info(f"[{self.wallet_id}] 🔗 {self.result.explorer_url}")
        else:
            logger.error(f"[{self.wallet_id}] ❌ Failed: {failure.message} ({duration:.2f}s)")
        return self.result

    async def run(self) -> CheckinResult:
        """
        Drive this wallet through every step

        Always returns a CheckinResult (never raises) and reaches FINALIZED
        exactly once.
        """
        if self.result is not None:
            return self.result

        started = time.monotonic()
        logger.info(f"[{self.wallet_id}] 🚀 Starting ({'proxy ' + self.proxy.display if self.proxy else 'no proxy'})")

        if self.setup_error:
            return self._finalize(started, StepOutcome.fail(ErrorKind.CONFIG_FAILURE, self.setup_error))

        try:
            for step in (self.initialize, self.authenticate, self.execute_checkin):
                outcome = await step()
                if not outcome.success:
                    raise StepFailed(outcome)

            recorded = await self.record_checkin()
            if not recorded.success:
                self._warn(recorded)
            else:
                logger.info(f"[{self.wallet_id}] 📡 Check-in recorded")
                points = await self.update_points()
                if not points.success:
                    self._warn(points)
                else:
                    logger.info(f"[{self.wallet_id}] 💯 Points updated")

            return self._finalize(started)

        except StepFailed as e:
            return self._finalize(started, e.outcome)
        except Exception as e:
            logger.exception(f"[{self.wallet_id}] Unexpected error")
            return self._finalize(started, StepOutcome.fail(ErrorKind.UNEXPECTED, f"Unexpected error: {e}"))
        finally:
            await self.close()

    async def close(self):
        """Close both clients"""
        for client in (self.web_client, self.chain_client):
            if client is None:
                continue
            try:
                await client.close()
            except Exception as e:
                logger.debug(f"[{self.wallet_id}] Error closing {type(client).__name__}: {e}")
