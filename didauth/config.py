"""Service configuration, built explicitly or from environment variables."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Dict, Mapping, NamedTuple, Optional

from .constants import DEFAULT_NAMESPACE, DEFAULT_TOKEN_TTL
from .errors import ConfigError

DEFAULT_DID_MANAGER_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

_DURATION = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


class Network(NamedTuple):
    name: str
    chain_id: int
    rpc_url: str


NETWORKS: Dict[str, Network] = {
    "hardhat": Network("Hardhat Local", 31337, "http://localhost:8545"),
    "mainnet": Network("Ethereum Mainnet", 1, "https://mainnet.rpc.buidlguidl.com"),
    "sepolia": Network("Ethereum Sepolia", 11155111, "https://rpc.sepolia.org"),
}


def parse_duration(value: str) -> int:
    """Convert ``<int><s|m|h|d>`` (e.g. ``24h``) to seconds."""

    match = _DURATION.fullmatch(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ConfigError(f"Invalid duration {value!r}; expected e.g. '30m', '24h', '7d'")
    seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    if seconds <= 0:
        raise ConfigError(f"Duration {value!r} must be positive")
    return seconds


def format_duration(seconds: int) -> str:
    """Inverse of :func:`parse_duration`, preferring hours (``86400`` -> ``24h``)."""

    if seconds <= 0:
        raise ValueError("Duration must be positive")
    for unit, size in (("h", 3600), ("m", 60)):
        if seconds % size == 0:
            return f"{seconds // size}{unit}"
    return f"{seconds}s"


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc


@dataclass(frozen=True)
class Settings:
    """Immutable configuration injected into the authentication service."""

    jwt_secret: str
    token_ttl: str = DEFAULT_TOKEN_TTL
    network: str = "hardhat"
    rpc_url: Optional[str] = None
    did_manager_address: str = DEFAULT_DID_MANAGER_ADDRESS
    oracle_timeout: float = 5.0
    oracle_cache_ttl: float = 0.0
    registry_path: Optional[str] = None
    did_namespace: str = DEFAULT_NAMESPACE
    challenge_tracking: bool = False
    challenge_max_age: float = 300.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.jwt_secret:
            raise ConfigError("JWT_SECRET must be set to a non-empty value")
        if self.network not in NETWORKS:
            raise ConfigError(f"Unknown network {self.network!r}; choose one of {sorted(NETWORKS)}")
        parse_duration(self.token_ttl)
        if self.oracle_timeout <= 0:
            raise ConfigError("ORACLE_TIMEOUT must be positive")
        if self.oracle_cache_ttl < 0:
            raise ConfigError("ORACLE_CACHE_TTL must not be negative")
        if self.challenge_max_age <= 0:
            raise ConfigError("CHALLENGE_MAX_AGE must be positive")

    @property
    def token_ttl_seconds(self) -> int:
        return parse_duration(self.token_ttl)

    @property
    def chain(self) -> Network:
        return NETWORKS[self.network]

    @property
    def effective_rpc_url(self) -> str:
        return self.rpc_url or self.chain.rpc_url

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            jwt_secret=env.get("JWT_SECRET", ""),
            token_ttl=env.get("JWT_EXPIRES_IN", DEFAULT_TOKEN_TTL),
            network=env.get("BLOCKCHAIN_NETWORK", "hardhat"),
            rpc_url=env.get("BLOCKCHAIN_RPC_URL") or None,
            did_manager_address=env.get("DID_MANAGER_ADDRESS", DEFAULT_DID_MANAGER_ADDRESS),
            oracle_timeout=_parse_float("ORACLE_TIMEOUT", env.get("ORACLE_TIMEOUT", "5")),
            oracle_cache_ttl=_parse_float("ORACLE_CACHE_TTL", env.get("ORACLE_CACHE_TTL", "0")),
            registry_path=env.get("DID_REGISTRY_PATH") or None,
            did_namespace=env.get("DID_NAMESPACE", DEFAULT_NAMESPACE),
            challenge_tracking=_parse_bool("CHALLENGE_TRACKING", env.get("CHALLENGE_TRACKING", "false")),
            challenge_max_age=_parse_float("CHALLENGE_MAX_AGE", env.get("CHALLENGE_MAX_AGE", "300")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )


__all__ = ["NETWORKS", "Network", "Settings", "format_duration", "parse_duration"]
