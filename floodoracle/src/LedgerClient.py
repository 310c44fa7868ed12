"""LedgerClient: Abstract interface for ledger backends.

A ledger stores the latest scaled gauge height and the payout threshold.
Backends (EVM contract, Internet Computer canister) register themselves
and are selected by name at startup.

The cached connection is only replaced after a freshly built one has
answered a read call, and it is dropped whenever a call observes that the
endpoint went away, so the next ensure_connected() performs a new
handshake.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar

from .UnitConverter import SCALE

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base exception for ledger errors."""

    pass


class ConnectionUnavailable(LedgerError):
    """Raised when the ledger endpoint cannot be reached."""

    pass


class WriteRejected(LedgerError):
    """Raised when the backend refuses a call (revert, authorization, ...)."""

    pass


class WriteTimeout(LedgerError):
    """Raised when a write was not confirmed within the allowed window."""

    pass


@dataclass(frozen=True)
class WriteReceipt:
    """Confirmation of a ledger write.

    :ivar backend: Name of the backend that accepted the write.
    :ivar scaled: Scaled value written.
    :ivar reference: Transaction hash, if the backend has one.
    :ivar block_number: Block that included the write, if any.
    """

    backend: str
    scaled: int
    reference: str | None = None
    block_number: int | None = None


ConnectionT = TypeVar("ConnectionT")


class LedgerClient(ABC, Generic[ConnectionT]):
    """Abstract base class for ledger backends.

    Subclasses implement _connect() and the _call_* methods that operate on
    an established connection; the base class handles connection caching
    and invalidation.

    :cvar name: Unique identifier for this backend.
    :cvar DEFAULT_CONFIRMATION_TIMEOUT: Seconds to wait for write confirmation.
    :ivar scale: Fixed-point factor used by the deployed ledger.
    :ivar confirmation_timeout: Seconds to wait for write confirmation.
    """

    name: ClassVar[str] = ""

    DEFAULT_CONFIRMATION_TIMEOUT = 60.0

    def __init__(
        self,
        scale: int = SCALE,
        confirmation_timeout: float | None = None,
        **kwargs: Any,
    ) -> None:
        self.scale = scale
        self.confirmation_timeout = confirmation_timeout or self.DEFAULT_CONFIRMATION_TIMEOUT
        self._connection: ConnectionT | None = None

    @property
    def is_connected(self) -> bool:
        """Whether a verified connection is currently cached."""
        return self._connection is not None

    @property
    def description(self) -> str:
        """Short human readable description used in startup logs."""
        return self.name

    @abstractmethod
    def _connect(self) -> ConnectionT:
        """Build a new connection and verify it with a lightweight read.

        :returns: Verified connection handle.
        :raises ConnectionUnavailable: If the endpoint cannot be reached.
        """
        pass

    @abstractmethod
    def _call_write_value(self, conn: ConnectionT, scaled: int) -> WriteReceipt:
        pass

    @abstractmethod
    def _call_read_value(self, conn: ConnectionT) -> int:
        pass

    @abstractmethod
    def _call_read_threshold(self, conn: ConnectionT) -> int:
        pass

    @abstractmethod
    def _call_write_threshold(self, conn: ConnectionT, scaled: int) -> WriteReceipt:
        pass

    def ensure_connected(self) -> None:
        """Establish a connection unless one is already cached.

        :raises ConnectionUnavailable: If the endpoint cannot be reached.
        """
        if self._connection is not None:
            return
        self._connection = self._connect()
        logger.info(f"[{self.name}] Connected to {self.description}")

    def reconnect(self) -> None:
        """Replace the cached connection with a freshly verified one.

        The old connection is kept if the new one cannot be established.

        :raises ConnectionUnavailable: If the endpoint cannot be reached.
        """
        connection = self._connect()
        self._connection = connection
        logger.info(f"[{self.name}] Reconnected to {self.description}")

    def disconnect(self) -> None:
        """Drop the cached connection."""
        self._connection = None

    def _with_connection(self, op: str, fn, *args: Any) -> Any:
        self.ensure_connected()
        conn = self._connection
        try:
            return fn(conn, *args)
        except ConnectionUnavailable:
            logger.warning(f"[{self.name}] Connection lost during {op}, discarding handle")
            self._connection = None
            raise

    def write_scaled_value(self, scaled: int) -> WriteReceipt:
        """Submit the scaled gauge height and wait for confirmation.

        :param scaled: Scaled value to store.
        :returns: WriteReceipt of the confirmed write.
        :raises ConnectionUnavailable: If the endpoint cannot be reached.
        :raises WriteRejected: If the backend refused the write.
        :raises WriteTimeout: If confirmation did not arrive in time.
        """
        return self._with_connection("write", self._call_write_value, scaled)

    def read_current_value(self) -> int:
        """Read the scaled gauge height currently stored on the ledger."""
        return self._with_connection("read", self._call_read_value)

    def read_threshold(self) -> int:
        """Read the scaled payout threshold.

        :returns: Scaled threshold.
        :raises ConnectionUnavailable: If the endpoint cannot be reached.
        :raises WriteRejected: If the backend refused the call.
        """
        return self._with_connection("threshold read", self._call_read_threshold)

    def write_threshold(self, scaled: int) -> WriteReceipt:
        """Administrative update of the payout threshold.

        :param scaled: New scaled threshold, must be positive.
        :returns: WriteReceipt of the confirmed write.
        :raises ValueError: If the threshold is not positive.
        """
        if scaled <= 0:
            raise ValueError(f"Threshold must be positive, got {scaled}")
        return self._with_connection("threshold write", self._call_write_threshold, scaled)


# Registry of available ledger backends (populated by subclass imports)
LEDGER_REGISTRY: dict[str, type[LedgerClient]] = {}


def register_ledger(cls: type[LedgerClient]) -> type[LedgerClient]:
    """Decorator to register a ledger backend in the global registry.

    :param cls: Ledger class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If the backend has no name defined.
    """
    if not cls.name:
        raise ValueError(f"Ledger {cls.__name__} must define a 'name' class variable")
    LEDGER_REGISTRY[cls.name] = cls
    return cls


def get_ledger_client(name: str, **kwargs: Any) -> LedgerClient:
    """Get a ledger backend instance by name.

    :param name: Backend name (e.g., "contract", "canister").
    :param kwargs: Backend specific options.
    :returns: LedgerClient instance.
    :raises ValueError: If the backend name is unknown.
    """
    if name not in LEDGER_REGISTRY:
        available = ", ".join(sorted(LEDGER_REGISTRY.keys()))
        raise ValueError(f"Unknown ledger backend '{name}'. Available: {available}")
    return LEDGER_REGISTRY[name](**kwargs)


def get_available_ledgers() -> list[str]:
    """Get list of available ledger backend names.

    :returns: Sorted list of registered backend names.
    """
    return sorted(LEDGER_REGISTRY.keys())
