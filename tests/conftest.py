from __future__ import annotations

import textwrap
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from usbportal.core.bus import LocalBus
from usbportal.core.config import ConfigService
from usbportal.portal import Portal
from usbportal.simulator import BrokerSimulator

DEFAULT_DEVICES = [
    ("A", {"vendor_id": 0x1D6B, "product_id": 0x0002, "name": "root hub", "writable": False}),
    ("B", {"vendor_id": 0x046D, "product_id": 0xC52B, "name": "receiver", "writable": True}),
]


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


@dataclass
class BrokerHarness:
    bus: LocalBus
    broker: BrokerSimulator
    portal: Portal


@asynccontextmanager
async def _running_broker(
    *, devices: list[tuple[str, dict[str, Any]]] | None = None, **kwargs: Any
) -> AsyncIterator[BrokerHarness]:
    bus = LocalBus(unique_name=":1.42")
    await bus.start()
    broker = BrokerSimulator(devices=DEFAULT_DEVICES if devices is None else devices, **kwargs)
    broker.set_bus(bus)
    await broker.start()
    portal = Portal(bus)
    try:
        yield BrokerHarness(bus=bus, broker=broker, portal=portal)
    finally:
        await portal.drain()
        await broker.stop()
        await bus.stop()


@pytest.fixture
def running_broker() -> Callable[..., AbstractAsyncContextManager[BrokerHarness]]:
    """
    Factory for a started bus + broker simulator + portal, torn down on exit.
    """

    return _running_broker


@pytest.fixture
def sample_config_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary configuration directory for tests.
    """

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_yaml = """
    portal:
      token_prefix: "lab"
      default_reason: "Flash the lab board"

    simulator:
      policy: "grant"
      devices:
        - id: "board"
          attributes:
            vendor_id: 1155
            product_id: 14158
            name: "ST-Link"
        - id: "keyboard"
          attributes:
            vendor_id: 1133
            product_id: 49963

    logging:
      level: "debug"
    """
    secrets_yaml = """
    portal:
      bus_name: "org.example.portal.Test"
    """
    _write_yaml(config_dir / "config.yaml", config_yaml)
    _write_yaml(config_dir / "secrets.yaml", secrets_yaml)
    return config_dir


@pytest.fixture
def sample_config_service(sample_config_dir: Path) -> ConfigService:
    """Return a ConfigService wired to the temporary configuration."""

    return ConfigService(config_dir=sample_config_dir)
