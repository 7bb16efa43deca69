"""Tests for the demo CLI entrypoint."""

from __future__ import annotations

import argparse
from pathlib import Path

import pytest

from usbportal.core.config import ConfigSnapshot, LoggingSettings
from usbportal.entrypoint import (
    EXIT_CONFIG,
    EXIT_FAILURE,
    EXIT_OK,
    EXIT_REFUSED,
    configure_logging,
    main,
    parse_args,
    parse_candidate,
    run_demo,
)
from usbportal.usb.candidate import DeviceCandidate
from usbportal.usb.request import AccessMode
from usbportal.usb.session import SessionState


def test_parse_candidate_reads_lsusb_ids() -> None:
    assert parse_candidate("046d:c52b") == DeviceCandidate(vendor_id=0x046D, product_id=0xC52B)
    for bad in ("046d", "zzzz:0001", "10000:0001"):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_candidate(bad)


def test_parse_args_defaults() -> None:
    args = parse_args([])
    assert args.access_mode == "all"
    assert args.candidates == []
    assert args.policy is None
    assert args.timeout is None


def test_main_grants_session(sample_config_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--config-dir", str(sample_config_dir)]) == EXIT_OK
    output = capsys.readouterr().out
    assert "granted" in output
    assert "board" in output and "keyboard" in output
    assert "is closed" in output


def test_main_listed_devices_filters_offer(
    sample_config_dir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = main(
        [
            "--config-dir",
            str(sample_config_dir),
            "--access-mode",
            "listed-devices",
            "--device",
            "0483:374e",
        ]
    )
    output = capsys.readouterr().out
    assert exit_code == EXIT_OK
    assert "board:" in output
    assert "keyboard" not in output


def test_main_hotplug_and_remote_close(
    sample_config_dir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = main(
        [
            "--config-dir",
            str(sample_config_dir),
            "--plug",
            "mouse",
            "--unplug",
            "keyboard",
            "--remote-close",
        ]
    )
    output = capsys.readouterr().out
    assert exit_code == EXIT_OK
    after = output.split("After device events:", 1)[1]
    assert "mouse" in after
    assert "keyboard" not in after
    assert "is closed" in after


def test_main_maps_denial_and_timeout_to_refused(sample_config_dir: Path) -> None:
    assert main(["--config-dir", str(sample_config_dir), "--policy", "deny"]) == EXIT_REFUSED
    assert (
        main(["--config-dir", str(sample_config_dir), "--policy", "silent", "--timeout", "0.05"])
        == EXIT_REFUSED
    )


def test_main_maps_broker_failure(sample_config_dir: Path) -> None:
    assert main(["--config-dir", str(sample_config_dir), "--policy", "fail"]) == EXIT_FAILURE


def test_main_reports_configuration_errors(tmp_path: Path) -> None:
    assert main(["--config-dir", str(tmp_path)]) == EXIT_CONFIG


@pytest.mark.asyncio
async def test_run_demo_with_builtin_settings(capsys: pytest.CaptureFixture[str]) -> None:
    session = await run_demo(
        ConfigSnapshot(),
        access_mode=AccessMode.ALL,
        candidates=None,
        parent_handle="x11:1a00007",
        reason="demo",
    )
    assert session is not None
    assert session.state is SessionState.CLOSED
    assert "(no devices)" in capsys.readouterr().out


def test_configure_logging_attaches_rotating_file(tmp_path: Path) -> None:
    import logging
    import logging.handlers

    log_file = tmp_path / "logs" / "usbportal.log"
    settings = LoggingSettings(file=log_file, max_mb=1, backup_count=1)
    root = logging.getLogger()
    try:
        configure_logging("INFO", settings)
        configure_logging("INFO", settings)
        handlers = [
            handler
            for handler in root.handlers
            if isinstance(handler, logging.handlers.RotatingFileHandler)
            and Path(handler.baseFilename) == log_file.resolve()
        ]
        assert len(handlers) == 1
        assert log_file.parent.is_dir()
    finally:
        for handler in list(root.handlers):
            if isinstance(handler, logging.handlers.RotatingFileHandler):
                root.removeHandler(handler)
                handler.close()
