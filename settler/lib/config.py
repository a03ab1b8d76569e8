"""
Centralized application configuration.

Runtime settings for the settlement agent come from environment variables
(`main.py` loads a `.env` file first via `python-dotenv`). `load_settings()`
parses and validates them into an immutable `Settings` instance. Any missing or
unparseable required value raises `ConfigError`, which is fatal at launch.
"""

import logging
import os
import socket
from dataclasses import dataclass
from typing import Mapping, Optional

from eth_utils import is_address, to_checksum_address

from .errors.app_error import ConfigError

DEFAULT_RPC_URL = "https://sepolia-rollup.arbitrum.io/rpc"


@dataclass(frozen=True)
class Settings:
    """
    Immutable container for the agent's configuration.

    Configuration categories:
        - Identity: instance id and signing key source.
        - Endpoints: RPC node, billing service, settlement contract.
        - Economics: costs that decide whether a bill is worth claiming.
        - Loop: tick interval, retry and confirmation policies.
        - Logging: level and log file.
    """

    # Identity
    settler_id: int
    secret_key_file: str

    # Endpoints
    billing_addr: str
    billing_contract_addr: str
    payee_wallet_address: str

    # Economics
    method_call_cost: int
    balance_transfer_cost: int

    # Loop
    billing_interval_secs: int

    rpc_url: str = DEFAULT_RPC_URL
    retry_attempts: int = 5
    retry_base_delay: float = 0.1
    confirmations: int = 3
    confirmation_timeout: float = 60.0
    confirmation_max_checks: Optional[int] = 1440
    http_timeout: float = 10.0

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = "logs.log"

    @property
    def billing_url(self) -> str:
        """Base URL of the billing service."""
        return f"http://{self.billing_addr}"


def is_valid_ip_with_port(addr: str) -> bool:
    """True if `addr` is `host:port` and resolves to at least one IPv4 address."""
    host, sep, port = addr.rpartition(":")
    if not sep or not host or not port.isdigit():
        return False
    try:
        infos = socket.getaddrinfo(host, int(port), socket.AF_INET)
    except (OSError, OverflowError, UnicodeError):
        return False
    return bool(infos)


def _required(env: Mapping[str, str], name: str) -> str:
    value = (env.get(name) or "").strip()
    if not value:
        raise ConfigError(f"{name} is not set")
    return value


def _int(
    env: Mapping[str, str],
    name: str,
    default: Optional[int] = None,
    minimum: int = 0,
    maximum: Optional[int] = None,
) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        if default is None:
            raise ConfigError(f"{name} is not set")
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer", context={name: raw})
    if value < minimum or (maximum is not None and value > maximum):
        raise ConfigError(f"{name} is out of range", context={name: value})
    return value


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a number", context={name: raw})
    if value < 0:
        raise ConfigError(f"{name} must not be negative", context={name: value})
    return value


def _address(env: Mapping[str, str], name: str) -> str:
    value = _required(env, name)
    if not is_address(value):
        raise ConfigError(f"Error parsing {name} {value} as an eth address")
    return to_checksum_address(value)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build `Settings` from environment variables.

    Args:
        environ: Mapping to read from. Defaults to `os.environ`.

    Returns:
        Validated settings.

    Raises:
        ConfigError: A required variable is missing or a value is invalid.

    Example:
        >>> settings = load_settings({"SETTLER_ID": "1", ...})
        >>> settings.billing_url
        'http://127.0.0.1:8000'
    """
    env = os.environ if environ is None else environ

    billing_addr = _required(env, "BILLING_ADDR")
    if not is_valid_ip_with_port(billing_addr):
        raise ConfigError(f"Invalid Billing IP address {billing_addr}!")

    log_level = (env.get("LOG_LEVEL") or "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"Unknown LOG_LEVEL {log_level}")

    max_checks = _int(env, "CONFIRMATION_MAX_CHECKS", default=1440)

    return Settings(
        settler_id=_int(env, "SETTLER_ID", maximum=2**32 - 1),
        secret_key_file=_required(env, "SECRET_KEY_FILE"),
        billing_addr=billing_addr,
        billing_contract_addr=_address(env, "BILLING_CONTRACT_ADDR"),
        payee_wallet_address=_address(env, "PAYEE_WALLET_ADDRESS"),
        method_call_cost=_int(env, "METHOD_CALL_COST"),
        balance_transfer_cost=_int(env, "BALANCE_TRANSFER_COST"),
        billing_interval_secs=_int(env, "BILLING_INTERVAL_SECS", minimum=1),
        rpc_url=(env.get("RPC_URL") or DEFAULT_RPC_URL).strip(),
        retry_attempts=_int(env, "RETRY_ATTEMPTS", default=5),
        retry_base_delay=_float(env, "RETRY_BASE_DELAY", 0.1),
        confirmations=_int(env, "CONFIRMATIONS", default=3, minimum=1),
        confirmation_timeout=_float(env, "CONFIRMATION_TIMEOUT", 60.0),
        confirmation_max_checks=max_checks or None,
        http_timeout=_float(env, "HTTP_TIMEOUT", 10.0),
        log_level=log_level,
        log_file=(env.get("LOG_FILE", "logs.log") or "").strip() or None,
    )
