"""
RPC client: request/response correlation on top of the roundtrip engine.

Usage:
    from shellyrpc import RPCClient

    with RPCClient("f8:44:77:21:12:55") as client:
        config = client.call("Shelly.GetConfig")

A client owns one connection and issues one call at a time. It holds no
lock: callers sharing a client between threads must serialize calls.
"""

import logging
import random
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable

from .config_loader import SOURCE_NAME, Config, resolve
from .errors import ApplicationError, ClientStateError, CorrelationError, ShellyRPCError
from .frames import ErrorEnvelope, JSONValue, RequestFrame, ResponseFrame
from .transport import Connection, roundtrip

logger = logging.getLogger(__name__)

IdGenerator = Callable[[], int]


class ClientState(Enum):
    """RPC client lifecycle states"""
    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ConnectionManagerBase(ABC):
    """
    Produces and releases connections to a device.

    The protocol core only ever sees the Connection values a manager
    returns; adapters, addresses and discovery stay behind this interface.
    """

    @abstractmethod
    def setup(self, address: str, config: Config) -> Connection:
        """
        Connect to the device at `address` and locate its RPC characteristics.

        Raises:
            ConnectionSetupError: the device could not be reached or set up
        """

    @abstractmethod
    def teardown(self, connection: Connection) -> None:
        """
        Disconnect `connection`.

        Raises:
            ConnectionTeardownError: disconnecting failed
        """


def make_id_generator(seed: int | None = None) -> IdGenerator:
    """
    Return a generator of 64-bit correlation ids.

    The ids are pseudo random, which is good enough as long as a connection
    has at most one call in flight. Pass a seed for reproducible sequences.
    """
    rng = random.Random(seed)
    return lambda: rng.getrandbits(64)


def check_correlation(request: RequestFrame, response: ResponseFrame) -> None:
    """Make sure `response` answers `request`, raise CorrelationError otherwise"""
    if request.id != response.id:
        raise CorrelationError("ID", request.id, response.id)
    if request.source != response.destination:
        raise CorrelationError("destination", request.source, response.destination)


def call(
    connection: Connection,
    method: str,
    params: JSONValue = None,
    source: str = SOURCE_NAME,
    id_generator: IdGenerator | None = None,
) -> JSONValue:
    """
    Call `method` on the device behind `connection` and return its result.

    Raises:
        ApplicationError: the device answered with an RPC error envelope
        CorrelationError: the response belongs to another request
        ShellyRPCError: the roundtrip failed
    """
    if id_generator is None:
        id_generator = make_id_generator()

    request = RequestFrame(id=id_generator(), source=source, method=method, params=params)
    response = roundtrip(connection, request)

    try:
        check_correlation(request, response)
    except CorrelationError:
        logger.debug("Discarding uncorrelated response: %s", response)
        raise

    if isinstance(response.result, ErrorEnvelope):
        raise ApplicationError(response.result.code, response.result.message, response)

    return response.result


class RPCClient:
    """
    Client for one device, from setup to teardown.

    State machine: UNINITIALIZED -> CONNECTED (setup) -> DISCONNECTED
    (teardown). Calls are only valid while CONNECTED; anything else is a
    programming error and raises ClientStateError.
    """

    def __init__(
        self,
        address: str,
        config: Config | None = None,
        manager: ConnectionManagerBase | None = None,
        id_generator: IdGenerator | None = None,
        source: str | None = None,
    ) -> None:
        """
        Initialize RPC client.

        Args:
            address: Device MAC address
            config: Connection settings, defaults to Config()
            manager: Connection manager, defaults to BlueZ over D-Bus
            id_generator: Source of correlation ids
            source: Source name sent with every request, overrides config
        """
        self.address = address
        self.config = config or Config()
        self.source = resolve(source, self.config.source)
        self._manager = manager
        self._id_generator = id_generator or make_id_generator()
        self._connection: Connection | None = None
        self._state = ClientState.UNINITIALIZED

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ClientState.CONNECTED

    @property
    def connection(self) -> Connection | None:
        return self._connection

    @property
    def manager(self) -> ConnectionManagerBase:
        if self._manager is None:
            from .bluez import BlueZConnectionManager
            self._manager = BlueZConnectionManager()
        return self._manager

    def _require_connected(self) -> Connection:
        if self._state != ClientState.CONNECTED or self._connection is None:
            raise ClientStateError(f"client is {self._state.value}, not connected")
        return self._connection

    def setup(self) -> Connection:
        """Connect to the device"""
        if self._state != ClientState.UNINITIALIZED:
            raise ClientStateError(f"setup not allowed, client is {self._state.value}")

        self._connection = self.manager.setup(self.address, self.config)
        self._state = ClientState.CONNECTED
        logger.info("🔗 Connected to %s", self.address)
        return self._connection

    def teardown(self) -> None:
        """Disconnect from the device"""
        connection = self._require_connected()
        try:
            self.manager.teardown(connection)
        finally:
            self._connection = None
            self._state = ClientState.DISCONNECTED
        logger.info("🔌 Disconnected from %s", self.address)

    def roundtrip(self, request: RequestFrame) -> ResponseFrame:
        """
        Exchange raw frames with the device.

        `call` should be preferred; use this only when the raw response
        frame is needed. No correlation checks are made.
        """
        return roundtrip(self._require_connected(), request)

    def call(self, method: str, params: JSONValue = None) -> JSONValue:
        """
        Call `method` with `params` and return the result.

        Raises:
            ApplicationError: the device reported an RPC error
            CorrelationError: the response does not match the request
            ShellyRPCError: transport or encoding failure
        """
        connection = self._require_connected()
        return call(
            connection,
            method,
            params,
            source=self.source,
            id_generator=self._id_generator,
        )

    def __enter__(self) -> "RPCClient":
        self.setup()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if not self.is_connected:
            return False

        if exc is None:
            self.teardown()
            return False

        try:
            self.teardown()
        except ShellyRPCError as teardown_error:
            if isinstance(exc, Exception):
                raise ExceptionGroup(
                    "call failed and teardown failed", [exc, teardown_error]
                ) from None
            logger.error("Teardown failed while handling %s: %s",
                         exc_type.__name__, teardown_error)
        return False
