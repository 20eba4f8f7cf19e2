"""
Chain Client

Per-wallet EVM client: one RPC connection, one optional proxy, one account.

Features:
- Connect a private key and read its balance
- Network facts (chain id, block number, fee data)
- Named contract bindings, read-only calls and state-changing executes
- Gas estimation with a multiplicative safety margin
- Single attempt per operation; failures come back as StepOutcome values
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from eth_account import Account
from eth_account.messages import encode_defunct
from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from .logging_setup import mask_secret
from .outcomes import ErrorKind, StepOutcome
from .proxy_config import ProxyBinding
from .web_client import proxy_request_kwargs, socks_connector


DEFAULT_GAS_MARGIN = 1.2
FEE_FIELDS = ('gasPrice', 'maxFeePerGas', 'maxPriorityFeePerGas')

CHECKIN_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [],
        "name": "checkIn",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


@dataclass
class NetworkInfo:
    """Network facts read from the RPC node"""
    chain_id: int
    block_number: int
    gas_price_gwei: Optional[str]
    max_fee_per_gas_gwei: Optional[str]
    max_priority_fee_per_gas_gwei: Optional[str]

    def __repr__(self):
        return (f"NetworkInfo(chain {self.chain_id} @ block {self.block_number}, "
                f"gas {self.gas_price_gwei} gwei)")


def _gwei(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return str(Web3.from_wei(value, 'gwei'))


class ChainClient:
    """
    RPC client bound to one chain id and one proxy

    Each workflow context builds its own ChainClient; the HTTP session behind
    the provider belongs to this instance only.
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        proxy: Optional[ProxyBinding] = None,
        gas_margin: float = DEFAULT_GAS_MARGIN,
        timeout: float = 30.0,
        receipt_timeout: float = 120.0,
        label: str = "chain"
    ):
        """
        Initialize chain client

        Args:
            rpc_url: JSON-RPC endpoint
            chain_id: Chain id written into every transaction
            proxy: Optional egress proxy for RPC traffic
            gas_margin: Multiplier applied to gas estimates (must be > 1.0)
            timeout: RPC request timeout in seconds
            receipt_timeout: How long to wait for a transaction receipt
            label: Prefix for log messages (usually the wallet id)
        """
        if gas_margin <= 1.0:
            raise ValueError(f"gas_margin must be greater than 1.0, got {gas_margin}")

        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.proxy = proxy
        self.gas_margin = gas_margin
        self.timeout = timeout
        self.receipt_timeout = receipt_timeout
        self.label = label

        request_kwargs = {'timeout': aiohttp.ClientTimeout(total=timeout), **proxy_request_kwargs(proxy)}
        self.provider = AsyncHTTPProvider(
            rpc_url,
            request_kwargs=request_kwargs,
            exception_retry_configuration=None,
        )
        self.w3 = AsyncWeb3(self.provider)

        self.account = None
        self.contracts: Dict[str, Any] = {}
        self._session: Optional[aiohttp.ClientSession] = None

        if proxy:
            logger.debug(f"[{label}] ✓ RPC proxy configured: {proxy.masked_url}")

    @property
    def address(self) -> Optional[str]:
        return self.account.address if self.account else None

    async def _ensure_session(self):
        """Give the provider a session of our own so the proxy connector is used"""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                connector=socks_connector(self.proxy),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            await self.provider.cache_async_session(self._session)

    def apply_gas_margin(self, estimated_gas: int) -> int:
        """Scale a gas estimate by the safety margin (100000 * 1.2 -> 120000)"""
        return int(Decimal(int(estimated_gas)) * Decimal(str(self.gas_margin)))

    async def connect(self, credential: str) -> StepOutcome:
        """
        Connect a private key and resolve its address and balance

        Args:
            credential: Hex private key

        Returns:
            StepOutcome with {'address', 'balance'} or CONNECT_FAILURE
        """
        try:
            account = Account.from_key(credential)
        except Exception as e:
            # never echo the key itself
            logger.error(f"[{self.label}] ✗ Invalid private key ({type(e).__name__})")
            return StepOutcome.fail(ErrorKind.CONNECT_FAILURE, f"Invalid private key: {type(e).__name__}")

        try:
            await self._ensure_session()
            balance_wei = await self.w3.eth.get_balance(account.address)
        except Exception as e:
            logger.error(f"[{self.label}] ✗ Wallet connect failed: {e}")
            return StepOutcome.fail(ErrorKind.CONNECT_FAILURE, f"RPC unreachable while connecting wallet: {e}")

        self.account = account
        balance = str(Web3.from_wei(balance_wei, 'ether'))
        logger.info(f"[{self.label}] ✓ Wallet connected: {account.address}")
        return StepOutcome.ok({'address': account.address, 'balance': balance})

    async def get_balance(self, address: str) -> str:
        """Balance in ether as a decimal string; '0' if it cannot be read"""
        try:
            await self._ensure_session()
            balance_wei = await self.w3.eth.get_balance(Web3.to_checksum_address(address))
            return str(Web3.from_wei(balance_wei, 'ether'))
        except Exception as e:
            logger.warning(f"[{self.label}] ⚠ Balance read failed: {e}")
            return "0"

    async def network_info(self) -> StepOutcome:
        """
        Read chain id, block number and fee data

        Returns:
            StepOutcome with NetworkInfo or CHAIN_FAILURE
        """
        try:
            await self._ensure_session()
            chain_id = await self.w3.eth.chain_id
            block_number = await self.w3.eth.block_number
            gas_price = await self.w3.eth.gas_price

            latest = await self.w3.eth.get_block('latest')
            base_fee = latest.get('baseFeePerGas')
            max_fee = None
            max_priority = None
            if base_fee is not None:
                max_priority = await self.w3.eth.max_priority_fee
                max_fee = base_fee * 2 + max_priority

            info = NetworkInfo(
                chain_id=int(chain_id),
                block_number=int(block_number),
                gas_price_gwei=_gwei(gas_price),
                max_fee_per_gas_gwei=_gwei(max_fee),
                max_priority_fee_per_gas_gwei=_gwei(max_priority),
            )
            if info.chain_id != self.chain_id:
                logger.warning(f"[{self.label}] ⚠ RPC reports chain {info.chain_id}, configured {self.chain_id}")
            return StepOutcome.ok(info)

        except Exception as e:
            logger.error(f"[{self.label}] ✗ Network info failed: {e}")
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, f"Network info failed: {e}")

    def bind_contract(self, address: str, abi: Sequence[Dict[str, Any]], name: str) -> StepOutcome:
        """
        Create (or replace) the contract handle stored under `name`

        Returns:
            StepOutcome with the contract handle or CHAIN_FAILURE
        """
        try:
            contract = self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=list(abi))
        except Exception as e:
            logger.error(f"[{self.label}] ✗ Contract binding failed for {address}: {e}")
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, f"Contract binding failed: {e}")

        if name in self.contracts:
            logger.debug(f"[{self.label}] Replacing contract binding '{name}'")
        self.contracts[name] = contract
        logger.debug(f"[{self.label}] ✓ Contract bound: {name} - {address}")
        return StepOutcome.ok(contract)

    def get_contract(self, name: str):
        return self.contracts.get(name)

    async def call(self, name: str, method: str, args: Sequence[Any] = ()) -> StepOutcome:
        """Read-only contract call"""
        contract = self.get_contract(name)
        if contract is None:
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, f"Contract '{name}' is not bound")

        try:
            await self._ensure_session()
            result = await getattr(contract.functions, method)(*args).call()
            return StepOutcome.ok(result)
        except Exception as e:
            logger.error(f"[{self.label}] ✗ Call {name}.{method} failed: {e}")
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, f"Call {name}.{method} failed: {e}")

    async def execute(
        self,
        name: str,
        method: str,
        args: Sequence[Any] = (),
        opts: Optional[Dict[str, Any]] = None
    ) -> StepOutcome:
        """
        Send a state-changing contract transaction and wait for one confirmation

        Gas limit is opts['gas'] when given, otherwise the estimate scaled by
        gas_margin. Fee fields in opts (gasPrice or EIP-1559 fields) are used
        as-is.

        Args:
            name: Contract binding name
            method: Contract method
            args: Method arguments
            opts: Transaction overrides (gas, gasPrice, value, ...)

        Returns:
            StepOutcome with {'tx_hash', 'block_number', 'gas_used'} or CHAIN_FAILURE
        """
        if self.account is None:
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, "Wallet not connected, cannot send transaction")

        contract = self.get_contract(name)
        if contract is None:
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, f"Contract '{name}' is not bound")

        opts = dict(opts or {})
        label = f"{name}.{method}"

        try:
            await self._ensure_session()
            function = getattr(contract.functions, method)(*args)

            tx_params: Dict[str, Any] = {
                **opts,
                'from': self.account.address,
                'chainId': self.chain_id,
            }

            if 'gas' not in opts:
                estimate_params = {k: v for k, v in tx_params.items() if k != 'chainId'}
                estimated = await function.estimate_gas(estimate_params)
                tx_params['gas'] = self.apply_gas_margin(estimated)
                logger.info(f"[{self.label}] Estimated gas: {estimated} -> limit {tx_params['gas']}")

            if 'nonce' not in tx_params:
                tx_params['nonce'] = await self.w3.eth.get_transaction_count(self.account.address, 'pending')

            tx = await function.build_transaction(tx_params)

        except Exception as e:
            logger.error(f"[{self.label}] ✗ Preparing {label} failed: {e}")
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, f"Preparing {label} failed: {e}")

        return await self._sign_and_send(tx, label)

    async def send_native(
        self,
        to: str,
        amount: Any,
        opts: Optional[Dict[str, Any]] = None
    ) -> StepOutcome:
        """
        Send the native coin

        Args:
            to: Recipient address
            amount: Amount in ether units (Decimal, str or number)
            opts: Transaction overrides (gas, gasPrice, ...)

        Returns:
            StepOutcome with {'tx_hash', 'block_number', 'gas_used'} or CHAIN_FAILURE
        """
        if self.account is None:
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, "Wallet not connected, cannot send transaction")

        opts = dict(opts or {})

        try:
            await self._ensure_session()
            tx: Dict[str, Any] = {
                **opts,
                'from': self.account.address,
                'to': Web3.to_checksum_address(to),
                'value': Web3.to_wei(Decimal(str(amount)), 'ether'),
                'chainId': self.chain_id,
            }

            if not any(field in tx for field in FEE_FIELDS):
                tx['gasPrice'] = await self.w3.eth.gas_price

            if 'gas' not in tx:
                estimated = await self.w3.eth.estimate_gas({k: v for k, v in tx.items() if k != 'chainId'})
                tx['gas'] = self.apply_gas_margin(estimated)

            if 'nonce' not in tx:
                tx['nonce'] = await self.w3.eth.get_transaction_count(self.account.address, 'pending')

        except Exception as e:
            logger.error(f"[{self.label}] ✗ Preparing transfer failed: {e}")
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, f"Preparing transfer failed: {e}")

        return await self._sign_and_send(tx, f"transfer {amount} -> {to}")

    async def _sign_and_send(self, tx: Dict[str, Any], label: str) -> StepOutcome:
        """Sign, submit and wait for one confirmation"""
        try:
            signed = self.account.sign_transaction(tx)
            raw = getattr(signed, 'raw_transaction', None) or getattr(signed, 'rawTransaction')
            tx_hash = await self.w3.eth.send_raw_transaction(raw)
        except Exception as e:
            logger.error(f"[{self.label}] ✗ {label} submission failed: {e}")
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, f"{label} submission failed: {e}")

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"[{self.label}] Transaction sent: {tx_hash_hex}")

        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except Exception as e:
            logger.error(f"[{self.label}] ✗ Waiting for {tx_hash_hex} failed: {e}")
            return StepOutcome.fail(
                ErrorKind.CHAIN_FAILURE,
                f"{label} not confirmed: {e}",
                data={'tx_hash': tx_hash_hex}
            )

        result = {
            'tx_hash': tx_hash_hex,
            'block_number': receipt['blockNumber'],
            'gas_used': receipt['gasUsed'],
        }

        if receipt['status'] != 1:
            logger.error(f"[{self.label}] ✗ {label} reverted in block {receipt['blockNumber']}")
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, f"{label} reverted ({tx_hash_hex})", data=result)

        logger.info(f"[{self.label}] ✓ Transaction confirmed in block {result['block_number']}, gas used {result['gas_used']}")
        return StepOutcome.ok(result)

    def sign_message(self, message: str) -> StepOutcome:
        """
        EIP-191 personal_sign of a text message

        Returns:
            StepOutcome with the 0x-prefixed signature or AUTH_FAILURE
        """
        if self.account is None:
            return StepOutcome.fail(ErrorKind.AUTH_FAILURE, "Wallet not connected, cannot sign")
        try:
            signed = self.account.sign_message(encode_defunct(text=message))
        except Exception as e:
            return StepOutcome.fail(ErrorKind.AUTH_FAILURE, f"Message signing failed: {e}")

        signature = Web3.to_hex(signed.signature)
        logger.debug(f"[{self.label}] Signature: {mask_secret(signature, head=20, tail=0)}")
        return StepOutcome.ok(signature)

    async def get_transaction(self, tx_hash: str) -> StepOutcome:
        """Transaction and receipt (receipt None while pending)"""
        try:
            await self._ensure_session()
            tx = await self.w3.eth.get_transaction(tx_hash)
            try:
                receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                receipt = None
            return StepOutcome.ok({'transaction': tx, 'receipt': receipt})
        except Exception as e:
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, f"Transaction lookup failed: {e}")

    async def wait_for_transaction(
        self,
        tx_hash: str,
        confirmations: int = 1,
        poll_interval: float = 1.0
    ) -> StepOutcome:
        """
        Wait until a transaction has `confirmations` blocks on top of it

        Returns:
            StepOutcome with the receipt or CHAIN_FAILURE
        """
        try:
            await self._ensure_session()
            logger.info(f"[{self.label}] Waiting for {tx_hash} ({confirmations} confirmations)...")
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)

            target_block = receipt['blockNumber'] + confirmations - 1
            while await self.w3.eth.block_number < target_block:
                await asyncio.sleep(poll_interval)

            logger.info(f"[{self.label}] ✓ {tx_hash} confirmed {confirmations} times")
            return StepOutcome.ok(receipt)
        except Exception as e:
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, f"Waiting for {tx_hash} failed: {e}")

    async def test_rpc_proxy(self) -> StepOutcome:
        """Read the block number through the configured proxy"""
        if self.proxy is None:
            return StepOutcome.fail(ErrorKind.CONFIG_FAILURE, "No RPC proxy configured")

        try:
            await self._ensure_session()
            block_number = await self.w3.eth.block_number
            logger.info(f"[{self.label}] ✓ RPC proxy OK (block {block_number})")
            return StepOutcome.ok({'block_number': block_number, 'rpc_url': self.rpc_url})
        except Exception as e:
            logger.warning(f"[{self.label}] ✗ RPC proxy test failed: {e}")
            return StepOutcome.fail(ErrorKind.CHAIN_FAILURE, f"RPC proxy connection failed: {e}")

    async def close(self):
        """Release the RPC session"""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        self.contracts.clear()
