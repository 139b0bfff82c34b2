from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

from dotenv import load_dotenv

from .constants import (
    DEFAULT_DUMP_PATHS,
    DEFAULT_ENV_FILE,
    DEFAULT_MAPPING_FILE,
    DEFAULT_NETWORK,
    DEFAULT_RPC_URL,
)
from .errors import ConfigurationError

# Env keys, resolved per network first (DEVELOPMENT_RPC_URL) then globally (RPC_URL)
RPC_URL_ENV = "RPC_URL"
PRIVATE_KEY_ENV = "PRIVATE_KEY"
GAS_LIMIT_ENV = "GAS_LIMIT"
GAS_PRICE_GWEI_ENV = "GAS_PRICE_GWEI"
PRIORITY_FEE_GWEI_ENV = "PRIORITY_FEE_GWEI"
MAX_FEE_GWEI_ENV = "MAX_FEE_GWEI"


def network_env_key(network: str, key: str) -> str:
    return f"{network.upper().replace('-', '_')}_{key}"


def resolve_network_value(network: str, key: str, env: Mapping[str, str]) -> Optional[str]:
    value = env.get(network_env_key(network, key))
    if value:
        return value
    return env.get(key) or None


def load_environment(working_directory: Union[str, Path], env_file: str = DEFAULT_ENV_FILE) -> bool:
    """Load ``.env`` from the working directory into ``os.environ`` without overriding it."""
    env_path = Path(working_directory) / env_file
    if not env_path.exists():
        return False
    return load_dotenv(env_path, override=False)


@dataclass
class NetworkConfig:
    name: str = DEFAULT_NETWORK
    rpc_url: str = DEFAULT_RPC_URL
    private_key: Optional[str] = None
    gas_limit: Optional[int] = None
    gas_price_gwei: str = "1"
    priority_fee_gwei: str = "1"
    max_fee_gwei: Optional[str] = None

    @classmethod
    def from_env(cls, name: str = DEFAULT_NETWORK, env: Optional[Mapping[str, str]] = None) -> "NetworkConfig":
        env = os.environ if env is None else env
        gas_limit = resolve_network_value(name, GAS_LIMIT_ENV, env)
        try:
            parsed_gas_limit = int(gas_limit) if gas_limit else None
        except ValueError as exc:
            raise ConfigurationError(f"{GAS_LIMIT_ENV} must be an integer, got {gas_limit!r}") from exc
        return cls(
            name=name,
            rpc_url=resolve_network_value(name, RPC_URL_ENV, env) or DEFAULT_RPC_URL,
            private_key=resolve_network_value(name, PRIVATE_KEY_ENV, env),
            gas_limit=parsed_gas_limit,
            gas_price_gwei=resolve_network_value(name, GAS_PRICE_GWEI_ENV, env) or "1",
            priority_fee_gwei=resolve_network_value(name, PRIORITY_FEE_GWEI_ENV, env) or "1",
            max_fee_gwei=resolve_network_value(name, MAX_FEE_GWEI_ENV, env),
        )


@dataclass
class RunnerOptions:
    working_directory: Path = field(default_factory=Path.cwd)
    network_name: str = DEFAULT_NETWORK
    result_dir: Optional[Path] = None
    dump: bool = False
    # None dumps the entire state
    dump_paths: Optional[List[str]] = field(default_factory=lambda: list(DEFAULT_DUMP_PATHS))
    dump_filename: Optional[Path] = None
    contracts_dir: Optional[Path] = None
    mapping: Any = DEFAULT_MAPPING_FILE
    delay: float = 0.0
    close_on_finish: bool = True
    debug: bool = False
    debug_inspect_depth: int = 5

    def __post_init__(self) -> None:
        self.working_directory = Path(self.working_directory).expanduser().resolve()
        if self.result_dir is None:
            self.result_dir = self.working_directory / "results"
        else:
            self.result_dir = self._absolute(self.result_dir)
        if self.dump_filename is not None:
            self.dump_filename = self._absolute(self.dump_filename)
        if self.delay < 0:
            raise ConfigurationError(f"delay must not be negative, got {self.delay}")
        if self.dump_paths is not None:
            self.dump_paths = list(self.dump_paths)

    def _absolute(self, path: Union[str, Path]) -> Path:
        candidate = Path(path).expanduser()
        return candidate if candidate.is_absolute() else self.working_directory / candidate

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]] = None) -> "RunnerOptions":
        options = dict(options or {})
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(options) - known)
        if unknown:
            raise ConfigurationError(f"Unknown runner option(s): {', '.join(unknown)}")
        return cls(**options)


__all__ = [
    "NetworkConfig",
    "RunnerOptions",
    "load_environment",
    "network_env_key",
    "resolve_network_value",
]
