"""
Check-in Engine

Multi-wallet daily check-in: every private key gets its own isolated workflow
context (own proxy, HTTP session and RPC connection) and is driven through the
same ordered steps.

Components:
- web_client: Per-wallet HTTP client with optional SOCKS5/HTTP proxy
- chain_client: Per-wallet web3 client (connect, sign, contract execute)
- checkin_workflow: Step state machine for one wallet
- batch_orchestrator: Runs all wallets, paces them, summarizes results
- config_loader: YAML config and key/proxy line files

Workflow Steps:
1. Initialize - connect wallet, read balance
2. Authenticate - nonce, signed sign-in message, login token
3. Check in - checkIn() transaction on chain
4. Record - report the tx hash to the service (best effort)
5. Update points - refresh the score (best effort)
"""

from .outcomes import (
    ConfigFailure,
    Envelope,
    ErrorKind,
    StepOutcome,
)
from .proxy_config import (
    ProxyBinding,
    parse_proxy,
)
from .config_loader import (
    CheckinConfig,
    NetworkConfig,
    ServiceConfig,
    load_config,
    read_lines_from_file,
)
from .web_client import (
    WebClient,
)
from .chain_client import (
    ChainClient,
    NetworkInfo,
)
from .signin_message import (
    build_signin_message,
)
from .checkin_workflow import (
    CheckinWorkflow,
    CheckinResult,
    WorkflowState,
)
from .batch_orchestrator import (
    BatchOrchestrator,
    BatchSummary,
    summarize,
)

__all__ = [
    # Results and errors
    'ConfigFailure',
    'Envelope',
    'ErrorKind',
    'StepOutcome',

    # Configuration
    'CheckinConfig',
    'NetworkConfig',
    'ServiceConfig',
    'ProxyBinding',
    'load_config',
    'parse_proxy',
    'read_lines_from_file',

    # Clients
    'WebClient',
    'ChainClient',
    'NetworkInfo',

    # Workflow
    'build_signin_message',
    'CheckinWorkflow',
    'CheckinResult',
    'WorkflowState',

    # Batch
    'BatchOrchestrator',
    'BatchSummary',
    'summarize',
]

__version__ = '1.0.0'
__description__ = 'Multi-wallet on-chain check-in with per-wallet isolation'
