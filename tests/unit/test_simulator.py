"""Tests for the in-process broker simulator module."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from usbportal.core.bus import LocalBus
from usbportal.core.contracts import ModuleConfig
from usbportal.simulator import BrokerSimulator


@pytest.mark.asyncio
async def test_configure_only_overrides_given_keys() -> None:
    simulator = BrokerSimulator(policy="deny", failure_code=9, devices=[("A", {})])
    await simulator.configure(ModuleConfig(options={"policy": "fail"}))

    health = await simulator.health()
    assert simulator.policy == "fail"
    assert health.details["devices"] == 1
    assert health.status == "degraded"


@pytest.mark.asyncio
async def test_start_exports_and_stop_unexports_broker_methods() -> None:
    bus = LocalBus()
    await bus.start()
    simulator = BrokerSimulator()
    simulator.set_bus(bus)
    await simulator.configure(ModuleConfig())
    await simulator.start()

    assert bus.status().method_count == 3
    assert (await simulator.health()).status == "healthy"

    await simulator.stop()
    await bus.stop()
    assert bus.status().method_count == 0


def test_policy_setter_validates() -> None:
    simulator = BrokerSimulator()
    simulator.policy = "silent"
    assert simulator.policy == "silent"
    with pytest.raises(ValidationError):
        simulator.policy = "sometimes"


@pytest.mark.asyncio
async def test_respond_requires_a_pending_request(running_broker) -> None:
    async with running_broker() as h:
        with pytest.raises(KeyError):
            await h.broker.respond("/org/freedesktop/portal/desktop/request/1_42/nope")


def test_unattached_simulator_has_no_bus() -> None:
    with pytest.raises(RuntimeError):
        BrokerSimulator().bus
