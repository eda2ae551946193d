"""
FlightSurety Oracles Configuration Module

Central configuration management with environment variable support.
Configuration objects are built once at startup and passed explicitly
to the OracleNetwork; there is no process-wide instance.
"""

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple


WEI_PER_ETHER = 10 ** 18


class Environment(Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    return int(raw) if raw else None


@dataclass
class LedgerConfig:
    """Ledger endpoint and FlightSuretyApp contract configuration."""
    url: str = "http://127.0.0.1:8545"
    contract_address: str = ""
    abi_path: str = "build/contracts/FlightSuretyApp.json"

    # Transaction settings
    gas_limit: int = 6721975
    registration_fee_wei: int = 1 * WEI_PER_ETHER
    airline_stake_wei: int = 10 * WEI_PER_ETHER

    # Timeouts
    call_timeout_seconds: float = 10.0
    receipt_timeout_seconds: float = 30.0

    # Event subscription
    poll_interval_seconds: float = 2.0
    from_block: int = 0

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("LEDGER_URL", "http://127.0.0.1:8545"),
            contract_address=os.getenv("FLIGHT_SURETY_APP_ADDRESS", ""),
            abi_path=os.getenv("FLIGHT_SURETY_ABI_PATH", "build/contracts/FlightSuretyApp.json"),
            gas_limit=int(os.getenv("LEDGER_GAS_LIMIT", "6721975")),
            registration_fee_wei=int(os.getenv("ORACLE_REGISTRATION_FEE_WEI", str(WEI_PER_ETHER))),
            airline_stake_wei=int(os.getenv("AIRLINE_STAKE_WEI", str(10 * WEI_PER_ETHER))),
            call_timeout_seconds=float(os.getenv("LEDGER_CALL_TIMEOUT_SECONDS", "10")),
            receipt_timeout_seconds=float(os.getenv("LEDGER_RECEIPT_TIMEOUT_SECONDS", "30")),
            poll_interval_seconds=float(os.getenv("LEDGER_POLL_INTERVAL_SECONDS", "2")),
            from_block=int(os.getenv("LEDGER_FROM_BLOCK", "0")),
        )


@dataclass
class RegistrationConfig:
    """Oracle pool registration settings."""
    # Explicit oracle accounts; empty means "take them from the ledger node"
    accounts: List[str] = field(default_factory=list)

    # Ledger accounts before this offset are reserved (owner, airline)
    account_offset: int = 1
    max_oracles: Optional[int] = None

    concurrency: int = 5
    timeout_seconds: float = 15.0

    @classmethod
    def from_env(cls) -> "RegistrationConfig":
        """Load configuration from environment variables."""
        return cls(
            accounts=_env_list("ORACLE_ACCOUNTS"),
            account_offset=int(os.getenv("ORACLE_ACCOUNT_OFFSET", "1")),
            max_oracles=_env_optional_int("ORACLE_MAX_COUNT"),
            concurrency=int(os.getenv("ORACLE_REGISTRATION_CONCURRENCY", "5")),
            timeout_seconds=float(os.getenv("ORACLE_REGISTRATION_TIMEOUT_SECONDS", "15")),
        )


@dataclass
class RedisConfig:
    """Redis connection configuration (dedup cache backend)."""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    ssl: bool = False
    key_prefix: str = "oracles:seen:"

    # Pool settings
    max_connections: int = 20
    socket_timeout: float = 2.0

    # Dedup lookups: per-call bound, and how long to bypass Redis after a failure
    operation_timeout: float = 0.25
    cooldown_seconds: float = 30.0

    @property
    def url(self) -> str:
        """Build Redis URL."""
        protocol = "rediss" if self.ssl else "redis"
        auth = f":{self.password}@" if self.password else ""
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"

    @classmethod
    def from_env(cls) -> "RedisConfig":
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            db=int(os.getenv("REDIS_DB", "0")),
            password=os.getenv("REDIS_PASSWORD"),
            ssl=os.getenv("REDIS_SSL", "false").lower() == "true",
            key_prefix=os.getenv("REDIS_KEY_PREFIX", "oracles:seen:"),
            max_connections=int(os.getenv("REDIS_MAX_CONNECTIONS", "20")),
            socket_timeout=float(os.getenv("REDIS_SOCKET_TIMEOUT", "2.0")),
            operation_timeout=float(os.getenv("REDIS_OPERATION_TIMEOUT", "0.25")),
            cooldown_seconds=float(os.getenv("REDIS_COOLDOWN_SECONDS", "30")),
        )


@dataclass
class DispatchConfig:
    """Response dispatch settings."""
    # Dedup cache: "memory" or "redis"
    dedup_backend: str = "memory"
    dedup_ttl_seconds: float = 300.0
    dedup_max_entries: int = 10000

    submission_timeout_seconds: float = 10.0
    # 0 = unbounded; a bounded queue parks puts instead of dropping requests
    queue_maxsize: int = 0
    max_concurrent_dispatches: int = 32

    @classmethod
    def from_env(cls) -> "DispatchConfig":
        """Load configuration from environment variables."""
        return cls(
            dedup_backend=os.getenv("DISPATCH_DEDUP_BACKEND", "memory").lower(),
            dedup_ttl_seconds=float(os.getenv("DISPATCH_DEDUP_TTL_SECONDS", "300")),
            dedup_max_entries=int(os.getenv("DISPATCH_DEDUP_MAX_ENTRIES", "10000")),
            submission_timeout_seconds=float(os.getenv("DISPATCH_SUBMISSION_TIMEOUT_SECONDS", "10")),
            queue_maxsize=int(os.getenv("DISPATCH_QUEUE_MAXSIZE", "0")),
            max_concurrent_dispatches=int(os.getenv("DISPATCH_MAX_CONCURRENT", "32")),
        )


DEFAULT_FLIGHTS: Tuple[Tuple[str, int], ...] = (
    ("A1111", 1633963343),
    ("B2222", 1633943343),
    ("C3333", 1633993343),
    ("D4444", 1634193343),
    ("E5555", 1634293343),
)


@dataclass
class BootstrapConfig:
    """Demo airline and flights registered before the oracles start."""
    enabled: bool = True
    airline_name: str = "InterCon"
    flights: List[Tuple[str, int]] = field(default_factory=lambda: list(DEFAULT_FLIGHTS))

    @classmethod
    def from_env(cls) -> "BootstrapConfig":
        """
        Load configuration from environment variables.

        BOOTSTRAP_FLIGHTS uses "NAME:TIMESTAMP,NAME:TIMESTAMP".
        """
        flights = list(DEFAULT_FLIGHTS)
        raw = _env_list("BOOTSTRAP_FLIGHTS")
        if raw:
            flights = []
            for item in raw:
                name, _, ts = item.partition(":")
                flights.append((name.strip(), int(ts)))
        return cls(
            enabled=os.getenv("BOOTSTRAP_ENABLED", "true").lower() == "true",
            airline_name=os.getenv("BOOTSTRAP_AIRLINE_NAME", "InterCon"),
            flights=flights,
        )


class JsonLogFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "logger": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Structured logging
    json_format: bool = False

    # Log destinations
    console: bool = True
    file_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """Load configuration from environment variables."""
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO"),
            json_format=os.getenv("LOG_JSON_FORMAT", "false").lower() == "true",
            console=os.getenv("LOG_CONSOLE", "true").lower() == "true",
            file_path=os.getenv("LOG_FILE_PATH"),
        )

    def apply(self) -> None:
        """Install handlers on the root logger."""
        formatter = JsonLogFormatter() if self.json_format else logging.Formatter(self.format)
        handlers: List[logging.Handler] = []
        if self.console:
            handlers.append(logging.StreamHandler(sys.stderr))
        if self.file_path:
            handlers.append(logging.FileHandler(self.file_path))
        for handler in handlers:
            handler.setFormatter(formatter)

        logging.basicConfig(level=self.level.upper(), handlers=handlers or None, force=True)


@dataclass
class OracleNetworkConfig:
    """Master configuration for the oracle network."""
    environment: Environment = Environment.DEVELOPMENT

    # Sub-configurations
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    registration: RegistrationConfig = field(default_factory=RegistrationConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    bootstrap: BootstrapConfig = field(default_factory=BootstrapConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "OracleNetworkConfig":
        """Load all configuration from environment variables."""
        env_str = os.getenv("ENVIRONMENT", "development").lower()
        try:
            environment = Environment(env_str)
        except ValueError:
            environment = Environment.DEVELOPMENT

        return cls(
            environment=environment,
            ledger=LedgerConfig.from_env(),
            registration=RegistrationConfig.from_env(),
            dispatch=DispatchConfig.from_env(),
            redis=RedisConfig.from_env(),
            bootstrap=BootstrapConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    def validate(self, require_contract: bool = True) -> Dict[str, Any]:
        """
        Validate configuration and return any warnings/errors.

        Args:
            require_contract: False when running against the in-memory ledger

        Returns:
            Dictionary with 'valid' boolean and 'messages' list
        """
        messages = []
        valid = True

        if require_contract and not self.ledger.contract_address:
            messages.append("ERROR: FLIGHT_SURETY_APP_ADDRESS not configured")
            valid = False

        if self.dispatch.dedup_backend not in ("memory", "redis"):
            messages.append(
                f"ERROR: Unknown dedup backend '{self.dispatch.dedup_backend}'"
            )
            valid = False

        if self.registration.concurrency < 1:
            messages.append("ERROR: Registration concurrency must be at least 1")
            valid = False

        if self.dispatch.dedup_backend == "redis" and self.redis.operation_timeout <= 0:
            messages.append("ERROR: REDIS_OPERATION_TIMEOUT must be positive")
            valid = False

        if self.dispatch.queue_maxsize < 0:
            messages.append("ERROR: DISPATCH_QUEUE_MAXSIZE must be 0 (unbounded) or positive")
            valid = False

        if self.dispatch.dedup_ttl_seconds <= 0:
            messages.append("WARNING: Dedup TTL disabled, re-deliveries will be re-dispatched")

        if self.environment == Environment.PRODUCTION:
            if "127.0.0.1" in self.ledger.url or "localhost" in self.ledger.url:
                messages.append("WARNING: Using a local ledger endpoint in production")
            if self.dispatch.dedup_backend == "memory":
                messages.append("WARNING: In-memory dedup cache in production")

        return {"valid": valid, "messages": messages}
