"""
BlueZ connection manager - D-Bus/BlueZ Bluetooth Low Energy access

Brings a device from a MAC address to a Connection holding its three RPC
characteristics, using the BlueZ D-Bus API through dbus_next:

- power on the adapter
- discover the device if BlueZ does not know it yet
- connect and wait for GATT service resolution
- locate the RPC service and its data/tx ctrl/rx ctrl characteristics

dbus_next is asyncio based while the RPC core is blocking. Every
connection therefore gets a private event loop, and each characteristic
operation runs to completion on it before returning.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Coroutine, TypeVar

from dbus_next import Variant
from dbus_next.aio import MessageBus
from dbus_next.constants import BusType
from dbus_next.errors import AuthError, DBusError, InterfaceNotFoundError, InvalidObjectPathError

from .client import ConnectionManagerBase
from .config_loader import Config, GattConfig
from .errors import ConnectionSetupError, ConnectionTeardownError, TransportError
from .gatt_io import Characteristic
from .transport import Connection

logger = logging.getLogger(__name__)

T = TypeVar("T")

# DBus constants
BLUEZ_SERVICE_NAME = "org.bluez"
ADAPTER_INTERFACE = "org.bluez.Adapter1"
DEVICE_INTERFACE = "org.bluez.Device1"
GATT_SERVICE_INTERFACE = "org.bluez.GattService1"
GATT_CHARACTERISTIC_INTERFACE = "org.bluez.GattCharacteristic1"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"
OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"

# ATT protocol
ATT_HEADER_SIZE = 3        # opcode + handle, subtracted from the ATT MTU
DEFAULT_ATT_MTU = 23       # minimum ATT MTU, 20 payload bytes

# Timing Constants (seconds)
BLE_SERVICES_CHECK_INTERVAL = 0.5   # Service resolution polling interval
BLE_DISCOVERY_CHECK_INTERVAL = 0.5  # Device discovery polling interval

_MAC_RE = re.compile(r"^[0-9A-F]{2}(:[0-9A-F]{2}){5}$")


def parse_mac(address: str) -> str:
    """Normalize a MAC address to upper case, colon separated"""
    mac = address.strip().upper().replace("-", ":")
    if not _MAC_RE.match(mac):
        raise ConnectionSetupError(f"parse remote address: invalid MAC address {address!r}")
    return mac


def adapter_path(adapter: str) -> str:
    return f"/org/bluez/{adapter}"


def mac_to_dbus_path(mac: str, adapter: str) -> str:
    """Convert MAC address to D-Bus device path"""
    return f"{adapter_path(adapter)}/dev_{mac.replace(':', '_')}"


def _prop(props: dict[str, Any], name: str) -> Any:
    value = props.get(name)
    return value.value if isinstance(value, Variant) else value


def find_characteristic_paths(
    objects: dict[str, dict[str, dict[str, Any]]],
    device_path: str,
    gatt: GattConfig,
) -> tuple[str, str, str]:
    """
    Locate the RPC characteristics in a BlueZ managed objects tree.

    Returns:
        D-Bus object paths of the (data, tx ctrl, rx ctrl) characteristics
    """
    service_path = None
    for path, interfaces in objects.items():
        if not path.startswith(f"{device_path}/"):
            continue
        props = interfaces.get(GATT_SERVICE_INTERFACE)
        if props and str(_prop(props, "UUID")).lower() == gatt.service_uuid:
            service_path = path
            break

    if service_path is None:
        raise ConnectionSetupError(f"discover services ['{gatt.service_uuid}']: service not found")

    chars: dict[str, str] = {}
    for path, interfaces in objects.items():
        props = interfaces.get(GATT_CHARACTERISTIC_INTERFACE)
        if not props:
            continue
        if _prop(props, "Service") != service_path and not path.startswith(f"{service_path}/"):
            continue
        chars[str(_prop(props, "UUID")).lower()] = path

    wanted = [gatt.data_uuid, gatt.tx_ctrl_uuid, gatt.rx_ctrl_uuid]
    missing = [u for u in wanted if u not in chars]
    if missing:
        raise ConnectionSetupError(f"discover characteristics {missing}: characteristic not found")

    return chars[gatt.data_uuid], chars[gatt.tx_ctrl_uuid], chars[gatt.rx_ctrl_uuid]


@dataclass
class BlueZDevice:
    """Manager-owned state of one connection"""
    loop: asyncio.AbstractEventLoop
    bus: MessageBus
    path: str
    dev_iface: Any
    timeout: float

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run `coro` on this connection's loop, bounded by the operation timeout"""
        return self.loop.run_until_complete(asyncio.wait_for(coro, timeout=self.timeout))

    def close(self) -> None:
        try:
            self.bus.disconnect()
        finally:
            self.loop.close()


class BlueZCharacteristic(Characteristic):
    """Blocking handle for one GATT characteristic"""

    def __init__(self, device: BlueZDevice, char_iface: Any, uuid: str, mtu: int) -> None:
        self._device = device
        self._iface = char_iface
        self.uuid = uuid
        self._mtu = mtu

    def __repr__(self) -> str:
        return f"BlueZCharacteristic(uuid={self.uuid!r}, mtu={self._mtu})"

    def read(self, size: int) -> bytes:
        """
        Read the characteristic value.

        BlueZ completes long reads on its own, so the value may exceed
        `size`; the chunked reader keeps only what it asked for.
        """
        try:
            value = self._device.run(self._iface.call_read_value({}))
        except asyncio.TimeoutError as e:
            raise TransportError(f"read {self.uuid}: timeout after {self._device.timeout}s") from e
        except DBusError as e:
            raise TransportError(f"read {self.uuid}: {e}") from e
        return bytes(value)

    def write_without_response(self, data: bytes) -> int:
        try:
            self._device.run(
                self._iface.call_write_value(bytes(data), {"type": Variant("s", "command")})
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"write {self.uuid}: timeout after {self._device.timeout}s") from e
        except DBusError as e:
            raise TransportError(f"write {self.uuid}: {e}") from e
        # BlueZ accepts a write whole or fails it
        return len(data)

    def get_mtu(self) -> int:
        return self._mtu


class BlueZConnectionManager(ConnectionManagerBase):
    """
    Connection manager for the local BlueZ stack.

    Each setup() creates its own system bus connection and event loop, so
    connections to different devices share no state.
    """

    def setup(self, address: str, config: Config) -> Connection:
        mac = parse_mac(address)
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(self._setup(loop, mac, config))
        except BaseException:
            if not loop.is_closed():
                loop.close()
            raise

    def teardown(self, connection: Connection) -> None:
        device: BlueZDevice = connection.device
        if device is None:
            raise ConnectionTeardownError("connection was not set up by BlueZConnectionManager")

        try:
            device.run(device.dev_iface.call_disconnect())
        except (asyncio.TimeoutError, DBusError) as e:
            raise ConnectionTeardownError(f"disconnect from device: {e!r}") from e
        finally:
            device.close()

        logger.debug("🧹 Disconnected from %s", connection.address)

    async def _setup(self, loop: asyncio.AbstractEventLoop, mac: str, config: Config) -> Connection:
        try:
            bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        except (AuthError, DBusError, OSError) as e:
            raise ConnectionSetupError(f"connect to system bus: {e}") from e

        dev_iface = None
        try:
            await self._enable_adapter(bus, config.adapter)

            path = mac_to_dbus_path(mac, config.adapter)
            await self._wait_for_device(bus, config.adapter, path, config.connect_timeout)

            introspection = await bus.introspect(BLUEZ_SERVICE_NAME, path)
            device_obj = bus.get_proxy_object(BLUEZ_SERVICE_NAME, path, introspection)
            dev_iface = device_obj.get_interface(DEVICE_INTERFACE)
            props_iface = device_obj.get_interface(PROPERTIES_INTERFACE)

            connected = (await props_iface.call_get(DEVICE_INTERFACE, "Connected")).value
            if not connected:
                try:
                    await asyncio.wait_for(dev_iface.call_connect(), timeout=config.connect_timeout)
                except asyncio.TimeoutError as e:
                    raise ConnectionSetupError(
                        f"connect to device: timeout after {config.connect_timeout}s"
                    ) from e
                logger.debug("✅ connected to %s", mac)
            else:
                logger.debug("🔁 Connection to %s already established", mac)

            if not await self._wait_for_services_resolved(props_iface, config.connect_timeout):
                raise ConnectionSetupError(
                    f"services not resolved within {config.connect_timeout}s"
                )

            device = BlueZDevice(loop=loop, bus=bus, path=path, dev_iface=dev_iface,
                                 timeout=config.timeout)
            data, tx_ctrl, rx_ctrl = await self._find_characteristics(bus, device, config.gatt)

        except ConnectionSetupError as e:
            await self._cleanup_failed_setup(bus, dev_iface, e)
            raise
        except (asyncio.TimeoutError, DBusError, InterfaceNotFoundError, InvalidObjectPathError) as e:
            # dbus_next method calls time out on their own, with an empty message
            error = ConnectionSetupError(f"set up {mac}: {str(e) or type(e).__name__}")
            await self._cleanup_failed_setup(bus, dev_iface, error)
            raise error from e

        logger.debug("🔍 RPC characteristics found: data mtu=%d", data.get_mtu())
        return Connection(data=data, tx_ctrl=tx_ctrl, rx_ctrl=rx_ctrl, address=mac, device=device)

    async def _enable_adapter(self, bus: MessageBus, adapter: str) -> None:
        path = adapter_path(adapter)
        try:
            introspection = await bus.introspect(BLUEZ_SERVICE_NAME, path)
            adapter_obj = bus.get_proxy_object(BLUEZ_SERVICE_NAME, path, introspection)
            adapter_iface = adapter_obj.get_interface(ADAPTER_INTERFACE)
            if not await adapter_iface.get_powered():
                await adapter_iface.set_powered(True)
                logger.debug("Powered on adapter %s", adapter)
        except (DBusError, InterfaceNotFoundError, InvalidObjectPathError) as e:
            raise ConnectionSetupError(f"enable adapter {adapter}: {e}") from e

    async def _managed_objects(self, bus: MessageBus) -> dict[str, dict[str, dict[str, Any]]]:
        introspection = await bus.introspect(BLUEZ_SERVICE_NAME, "/")
        obj = bus.get_proxy_object(BLUEZ_SERVICE_NAME, "/", introspection)
        manager = obj.get_interface(OBJECT_MANAGER_INTERFACE)
        return await manager.call_get_managed_objects()

    async def _wait_for_device(self, bus: MessageBus, adapter: str, path: str, timeout: float) -> None:
        """Scan until BlueZ knows the device at `path`"""
        if path in await self._managed_objects(bus):
            return

        logger.debug("🔍 Device %s unknown, starting discovery", path)
        introspection = await bus.introspect(BLUEZ_SERVICE_NAME, adapter_path(adapter))
        adapter_obj = bus.get_proxy_object(BLUEZ_SERVICE_NAME, adapter_path(adapter), introspection)
        adapter_iface = adapter_obj.get_interface(ADAPTER_INTERFACE)

        await adapter_iface.call_start_discovery()
        try:
            start_time = time.monotonic()
            while (time.monotonic() - start_time) < timeout:
                await asyncio.sleep(BLE_DISCOVERY_CHECK_INTERVAL)
                if path in await self._managed_objects(bus):
                    return
            raise ConnectionSetupError(f"device not found within {timeout}s")
        finally:
            try:
                await adapter_iface.call_stop_discovery()
            except DBusError as e:
                logger.debug("StopDiscovery failed: %s", e)

    async def _wait_for_services_resolved(self, props_iface: Any, timeout: float) -> bool:
        """Wait for BLE services to be discovered and resolved"""
        start_time = time.monotonic()

        while (time.monotonic() - start_time) < timeout:
            try:
                services_resolved = (
                    await props_iface.call_get(DEVICE_INTERFACE, "ServicesResolved")
                ).value
                if services_resolved:
                    logger.debug("🔍 Services resolved after %.1fs", time.monotonic() - start_time)
                    return True
            except DBusError as e:
                logger.debug("Error checking ServicesResolved: %s", e)

            await asyncio.sleep(BLE_SERVICES_CHECK_INTERVAL)

        return False

    async def _find_characteristics(
        self, bus: MessageBus, device: BlueZDevice, gatt: GattConfig
    ) -> tuple[BlueZCharacteristic, BlueZCharacteristic, BlueZCharacteristic]:
        objects = await self._managed_objects(bus)
        paths = find_characteristic_paths(objects, device.path, gatt)
        uuids = (gatt.data_uuid, gatt.tx_ctrl_uuid, gatt.rx_ctrl_uuid)

        chars = []
        for path, uuid in zip(paths, uuids):
            introspection = await bus.introspect(BLUEZ_SERVICE_NAME, path)
            char_obj = bus.get_proxy_object(BLUEZ_SERVICE_NAME, path, introspection)
            char_iface = char_obj.get_interface(GATT_CHARACTERISTIC_INTERFACE)
            props_iface = char_obj.get_interface(PROPERTIES_INTERFACE)
            chars.append(BlueZCharacteristic(device, char_iface, uuid, await self._payload_mtu(props_iface)))

        return chars[0], chars[1], chars[2]

    async def _payload_mtu(self, props_iface: Any) -> int:
        """Negotiated ATT MTU minus the ATT header"""
        try:
            att_mtu = (await props_iface.call_get(GATT_CHARACTERISTIC_INTERFACE, "MTU")).value
        except DBusError:
            # BlueZ < 5.62 does not expose the MTU
            att_mtu = DEFAULT_ATT_MTU
        return max(att_mtu - ATT_HEADER_SIZE, 1)

    async def _cleanup_failed_setup(
        self, bus: MessageBus, dev_iface: Any, error: ConnectionSetupError
    ) -> None:
        """Disconnect after a failed setup; a failing disconnect is added to `error`"""
        if dev_iface is not None:
            try:
                await asyncio.wait_for(dev_iface.call_disconnect(), timeout=3.0)
            except (asyncio.TimeoutError, DBusError) as e:
                error.message = f"{error.message}; disconnect from device: {e!r}"
        bus.disconnect()
