#!/usr/bin/env python3
"""
Call an RPC method on a Shelly device over BLE and print the result.

Method names and parameters are documented per device, e.g. for the
BLU TRV at https://shelly-api-docs.shelly.cloud/docs-ble/Devices/trv#rpc-commands

    shellyrpc --addr f8:44:77:21:12:55 --method Shelly.GetConfig
    shellyrpc --method TRV.SetTarget --params '{"id": 0, "target_C": 21.5}'
"""

import argparse
import json
import math
import sys
from typing import Any, TextIO

from . import __version__
from .client import ConnectionManagerBase, RPCClient
from .config_loader import Config
from .errors import ApplicationError, DeviceConnectionError, ShellyRPCError
from .logging_setup import get_logger, setup_logging

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_SETUP = 10
EXIT_PARAMS = 20
EXIT_RPC_ERROR = 30
EXIT_CALL = 40
EXIT_ENCODE = 50
EXIT_TEARDOWN = 90


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="shellyrpc",
        description="Call an RPC method on a Shelly device over Bluetooth LE",
    )
    parser.add_argument("--addr", default="f8:44:77:21:12:55", help="Shelly device address")
    parser.add_argument("--method", default="Shelly.GetConfig", help="RPC method to call")
    parser.add_argument("--params", default="null", help="RPC method parameters as JSON blob")
    parser.add_argument("--config", default=None, help="Path to JSON config file")
    parser.add_argument("--adapter", default=None, help="Local bluetooth adapter (default: hci0)")
    parser.add_argument("--service-uuid", default=None, help="RPC GATT service UUID")
    parser.add_argument("--data-uuid", default=None, help="Data characteristic UUID")
    parser.add_argument("--tx-uuid", default=None, help="TX control characteristic UUID")
    parser.add_argument("--rx-uuid", default=None, help="RX control characteristic UUID")
    parser.add_argument("--connect-timeout", type=float, default=None,
                        help="Seconds allowed for discovery and connect")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Seconds allowed for every other operation")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> Config:
    return Config.load(args.config).with_overrides(
        adapter=args.adapter,
        service_uuid=args.service_uuid,
        data_uuid=args.data_uuid,
        tx_ctrl_uuid=args.tx_uuid,
        rx_ctrl_uuid=args.rx_uuid,
        connect_timeout=args.connect_timeout,
        timeout=args.timeout,
    )


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _parse_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"number out of range: {text}")
    return value


def call_and_print(client: RPCClient, method: str, params: str, out: TextIO) -> int:
    """Run one call on a connected client, print the outcome, return the exit code"""
    try:
        req_params = json.loads(params, parse_constant=_reject_constant,
                                parse_float=_parse_float)
    except ValueError as e:
        logger.error("Failed to unmarshal params: %s", e)
        return EXIT_PARAMS

    rc = EXIT_OK
    try:
        res: Any = client.call(method, req_params)
    except ApplicationError as e:
        res = {"RPCError": e.to_dict()}
        rc = EXIT_RPC_ERROR
    except ShellyRPCError as e:
        logger.error('Failed to call "%s" with "%s": %s', method, params, e)
        return EXIT_CALL

    try:
        out.write(json.dumps(res, indent=2, ensure_ascii=False) + "\n")
    except (TypeError, ValueError) as e:
        logger.error("Failed to encode response: %s", e)
        return EXIT_ENCODE

    return rc


def run(
    argv: list[str] | None = None,
    manager: ConnectionManagerBase | None = None,
    out: TextIO | None = None,
) -> int:
    args = parse_args(argv)
    setup_logging(verbose=args.verbose, simple_format=not args.verbose)
    out = out or sys.stdout

    try:
        config = load_config(args)
    except (OSError, ValueError) as e:
        logger.error("Failed to setup RPC client: invalid configuration: %s", e)
        return EXIT_SETUP

    client = RPCClient(args.addr, config=config, manager=manager)
    try:
        client.setup()
    except DeviceConnectionError as e:
        logger.error("Failed to setup RPC client: %s", e)
        return EXIT_SETUP

    try:
        rc = call_and_print(client, args.method, args.params, out)
    finally:
        try:
            client.teardown()
        except DeviceConnectionError as e:
            logger.error("Failed to teardown RPC client: %s", e)
            rc = EXIT_TEARDOWN

    return rc


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
