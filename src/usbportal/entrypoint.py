"""
CLI entrypoint that runs a USB portal session against the broker simulator.

The demo boots a :class:`LocalBus`, serves the broker side with
:class:`BrokerSimulator`, requests a session the way an application would and
prints the device list as it changes. It is the quickest way to watch the
handshake, the event stream and the close path end to end.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
from collections.abc import Sequence
from pathlib import Path

from .core.bus import LocalBus
from .core.cancellable import Cancellable
from .core.config import ConfigError, ConfigService, ConfigSnapshot, LoggingSettings
from .core.contracts import ModuleConfig
from .core.errors import CallerCancelled, Denied, PortalError
from .parent import StaticParent
from .portal import Portal
from .simulator import BrokerSimulator
from .usb.candidate import DeviceCandidate
from .usb.request import AccessMode
from .usb.session import UsbSession

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_REFUSED = 3


def _ensure_rotating_file_handler(
    log_file: Path,
    *,
    max_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Attach a rotating file handler pointed at ``log_file`` if missing."""

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create log directory %s: %s", log_file.parent, exc)
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            existing = getattr(handler, "baseFilename", None)
            if existing and Path(existing) == log_file.resolve():
                return

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)


def configure_logging(level: str, settings: LoggingSettings | None = None) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
    )
    if settings is not None and settings.file is not None:
        _ensure_rotating_file_handler(
            settings.file, max_mb=settings.max_mb, backup_count=settings.backup_count
        )


def parse_candidate(value: str) -> DeviceCandidate:
    """Parse ``VID:PID`` (hexadecimal, as printed by lsusb)."""
    try:
        vendor, product = value.split(":", 1)
        return DeviceCandidate(vendor_id=int(vendor, 16), product_id=int(product, 16))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected VID:PID in hex, got {value!r}") from exc


def _format_devices(session: UsbSession) -> str:
    devices = session.devices()
    if not devices:
        return "  (no devices)"
    lines = []
    for device in devices:
        lines.append(f"  {device.id}: {device.attributes.plain()}")
    return "\n".join(lines)


async def run_demo(
    snapshot: ConfigSnapshot,
    *,
    access_mode: AccessMode,
    candidates: Sequence[DeviceCandidate] | None,
    parent_handle: str | None = None,
    reason: str | None = None,
    plug: Sequence[str] = (),
    unplug: Sequence[str] = (),
    remote_close: bool = False,
    timeout: float | None = None,
) -> UsbSession | None:
    """Run one request against the simulator and return the (closed) session."""
    bus = LocalBus(queue_size=snapshot.portal.bus_queue_size)
    simulator = BrokerSimulator(settings=snapshot.portal)
    simulator.set_bus(bus)
    await simulator.configure(ModuleConfig(options=snapshot.simulator.model_dump()))
    portal = Portal(bus, settings=snapshot.portal)
    cancellable = Cancellable()

    await bus.start()
    await simulator.start()
    timer: asyncio.TimerHandle | None = None
    if timeout is not None:
        timer = asyncio.get_running_loop().call_later(timeout, cancellable.cancel)
    try:
        session = await portal.create_usb_session(
            access_mode,
            candidates,
            parent=StaticParent(parent_handle) if parent_handle else None,
            cancellable=cancellable,
            reason=reason,
        )
        if timer is not None:
            timer.cancel()
        print(f"Session {session.handle} granted:")
        print(_format_devices(session))

        for device_id in plug:
            await simulator.plug(device_id, {"name": device_id})
        for device_id in unplug:
            await simulator.unplug(device_id)
        if plug or unplug:
            await bus.flush()
            print("After device events:")
            print(_format_devices(session))

        if remote_close:
            await simulator.close_session(session.handle)
            await bus.flush()
        else:
            session.close()
        print(f"Session {session.handle} is {session.state.value}.")
        return session
    finally:
        if timer is not None:
            timer.cancel()
        await portal.drain()
        await simulator.stop()
        await bus.stop()


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="USB portal session demo (simulated broker).")
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory that contains config.yaml/secrets.yaml (default: built-in settings).",
    )
    parser.add_argument(
        "--access-mode",
        choices=[mode.value for mode in AccessMode],
        default=AccessMode.ALL.value,
        help="Which devices to ask for (default: all).",
    )
    parser.add_argument(
        "--device",
        dest="candidates",
        action="append",
        type=parse_candidate,
        default=[],
        metavar="VID:PID",
        help="Candidate device to ask for; may be repeated.",
    )
    parser.add_argument("--parent", default=None, help="Parent window handle, e.g. x11:1a00007.")
    parser.add_argument("--reason", default=None, help="Reason shown by the broker.")
    parser.add_argument(
        "--policy",
        choices=["grant", "deny", "fail", "silent"],
        default=None,
        help="Override the simulator policy from the configuration.",
    )
    parser.add_argument(
        "--plug", action="append", default=[], metavar="ID", help="Device to hot-plug."
    )
    parser.add_argument(
        "--unplug", action="append", default=[], metavar="ID", help="Device to unplug."
    )
    parser.add_argument(
        "--remote-close",
        action="store_true",
        help="Let the broker close the session instead of the client.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Cancel the request if the broker has not answered after this many seconds.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Python logging level (default: from configuration, INFO).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        config = ConfigService(config_dir=args.config_dir)
        if args.policy is not None:
            config.apply_changes({"simulator": {"policy": args.policy}})
    except ConfigError as exc:
        configure_logging(args.log_level or "INFO")
        LOGGER.error("Configuration failed: %s", exc)
        return EXIT_CONFIG
    snapshot = config.snapshot
    configure_logging(args.log_level or snapshot.logging.level, snapshot.logging)

    try:
        asyncio.run(
            run_demo(
                snapshot,
                access_mode=AccessMode(args.access_mode),
                candidates=args.candidates or None,
                parent_handle=args.parent,
                reason=args.reason,
                plug=args.plug,
                unplug=args.unplug,
                remote_close=args.remote_close,
                timeout=args.timeout,
            )
        )
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return EXIT_OK
    except (Denied, CallerCancelled) as exc:
        LOGGER.warning("Session request refused: %s", exc)
        return EXIT_REFUSED
    except PortalError as exc:
        LOGGER.error("Session request failed (%s): %s", exc.code, exc)
        return EXIT_FAILURE
    except Exception:  # pragma: no cover - surfaced to operator
        LOGGER.exception("USB portal demo crashed.")
        return EXIT_FAILURE
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = ["configure_logging", "main", "parse_args", "run_demo"]
