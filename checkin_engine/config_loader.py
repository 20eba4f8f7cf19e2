"""
Check-in Configuration

Loads checkin_config.yaml and the newline-delimited credential/proxy files.

Every section has built-in defaults (Monad testnet + Apriori service), so a
missing config file or a partial one is valid. Values found in the YAML
override the defaults key by key.
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from loguru import logger

from .outcomes import ConfigFailure


DEFAULT_CONFIG_PATH = "checkin_config.yaml"

CHECKIN_CONTRACT_ADDRESS = "0x703e753E9a2aCa1194DED65833EAec17dcFeAc1b"

DEFAULT_SERVICE_HEADERS = {
    'accept': '*/*',
    'accept-language': 'en-US,en;q=0.9',
    'origin': 'https://of.apr.io',
    'priority': 'u=1, i',
    'referer': 'https://of.apr.io/',
    'sec-ch-ua': '"Not;A=Brand";v="99", "Google Chrome";v="139", "Chromium";v="139"',
    'sec-ch-ua-mobile': '?0',
    'sec-ch-ua-platform': '"macOS"',
    'sec-fetch-dest': 'empty',
    'sec-fetch-mode': 'cors',
    'sec-fetch-site': 'same-site',
}


@dataclass(frozen=True)
class NetworkConfig:
    """Chain the check-in transaction is sent to"""
    name: str = "Monad Testnet"
    chain_id: int = 10143
    symbol: str = "MON"
    rpc: str = "https://testnet-rpc.monad.xyz"
    explorer: str = "https://testnet.monadexplorer.com/tx/"

    def tx_link(self, tx_hash: str) -> str:
        return f"{self.explorer}{tx_hash}"


@dataclass(frozen=True)
class ServiceConfig:
    """Remote web service that issues nonces and records check-ins"""
    domain: str = "of.apr.io"
    uri: str = "https://of.apr.io"
    api_base: str = "https://wallet-collection-api.apr.io"
    wallet_app: str = "OKX"
    headers: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SERVICE_HEADERS))

    def endpoint(self, path: str) -> str:
        return f"{self.api_base.rstrip('/')}/{path.lstrip('/')}"


@dataclass(frozen=True)
class CheckinSettings:
    contract_address: str = CHECKIN_CONTRACT_ADDRESS
    gas_price: int = 55_000_000_000  # wei
    gas_margin: float = 1.2


@dataclass(frozen=True)
class BatchSettings:
    delay_seconds: float = 2.0
    concurrency: int = 1
    private_keys_file: str = "config/private_keys.txt"
    proxies_file: str = "config/proxies.txt"


@dataclass(frozen=True)
class HttpSettings:
    timeout_seconds: float = 10.0
    random_user_agent: bool = True
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass(frozen=True)
class CheckinConfig:
    """Complete configuration for one batch run"""
    network: NetworkConfig = field(default_factory=NetworkConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    checkin: CheckinSettings = field(default_factory=CheckinSettings)
    batch: BatchSettings = field(default_factory=BatchSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


SECTIONS = {
    'network': NetworkConfig,
    'service': ServiceConfig,
    'checkin': CheckinSettings,
    'batch': BatchSettings,
    'http': HttpSettings,
    'logging': LoggingSettings,
}


def _build_section(section_name: str, section_cls, raw: Any):
    """Overlay one YAML mapping onto the section defaults"""
    defaults = section_cls()
    if raw is None:
        return defaults
    if not isinstance(raw, dict):
        raise ConfigFailure(f"Config section '{section_name}' must be a mapping")

    known = {f.name: f for f in fields(section_cls)}
    overrides = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key '{section_name}.{key}'")
            continue
        if key == 'headers':
            if not isinstance(value, dict):
                raise ConfigFailure("Config key 'service.headers' must be a mapping")
            merged = dict(defaults.headers)
            merged.update({str(k): str(v) for k, v in value.items()})
            value = merged
        overrides[key] = value

    try:
        section = replace(defaults, **overrides)
    except TypeError as e:
        raise ConfigFailure(f"Invalid config section '{section_name}': {e}")

    # YAML gives ints for 10143 but strings for quoted values; coerce numeric fields
    coerced = {}
    for name, default_value in ((f.name, getattr(defaults, f.name)) for f in fields(section_cls)):
        value = getattr(section, name)
        if value is None or default_value is None:
            continue
        if isinstance(default_value, bool):
            if not isinstance(value, bool):
                raise ConfigFailure(f"Config key '{section_name}.{name}' must be true/false")
        elif isinstance(default_value, (int, float)):
            try:
                coerced[name] = type(default_value)(value)
            except (TypeError, ValueError):
                raise ConfigFailure(f"Config key '{section_name}.{name}' must be a number, got {value!r}")
    return replace(section, **coerced) if coerced else section


def load_config(config_path: Optional[Union[str, Path]] = None) -> CheckinConfig:
    """
    Load configuration from YAML

    Args:
        config_path: Path to the YAML file (default: checkin_config.yaml)

    Returns:
        CheckinConfig with defaults for anything the file does not set

    Raises:
        ConfigFailure: If the file is not valid YAML or has invalid values
    """
    path = Path(config_path or DEFAULT_CONFIG_PATH)

    if not path.exists():
        if config_path is not None:
            raise ConfigFailure(f"Config file not found: {path}")
        logger.info(f"No {path} found, using built-in defaults")
        return CheckinConfig()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigFailure(f"Invalid YAML in {path}: {e}")

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigFailure(f"Config file {path} must contain a mapping")

    for key in raw:
        if key not in SECTIONS:
            logger.warning(f"Ignoring unknown config section '{key}'")

    config = CheckinConfig(**{
        name: _build_section(name, section_cls, raw.get(name))
        for name, section_cls in SECTIONS.items()
    })

    if config.checkin.gas_margin <= 1.0:
        raise ConfigFailure(f"checkin.gas_margin must be greater than 1.0, got {config.checkin.gas_margin}")
    if config.batch.concurrency < 1:
        raise ConfigFailure(f"batch.concurrency must be at least 1, got {config.batch.concurrency}")
    if config.batch.delay_seconds < 0:
        raise ConfigFailure("batch.delay_seconds must not be negative")

    logger.info(f"Loaded config from {path} ({config.network.name}, chain {config.network.chain_id})")
    return config


def read_lines_from_file(file_path: Union[str, Path], required: bool = False) -> List[str]:
    """
    Read a newline-delimited list, skipping blank lines and # comments

    Args:
        file_path: File to read
        required: Raise instead of returning [] when the file is missing

    Returns:
        Stripped, non-empty, non-comment lines in file order

    Raises:
        ConfigFailure: If required and the file cannot be read
    """
    path = Path(file_path)
    try:
        text = path.read_text(encoding='utf-8')
    except OSError as e:
        if required:
            raise ConfigFailure(f"Cannot read {path}: {e}")
        logger.warning(f"⚠ Could not read {path}, treating as empty")
        return []

    lines = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith('#'):
            lines.append(stripped)
    return lines
