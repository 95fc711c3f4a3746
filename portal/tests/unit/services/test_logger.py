"""Tests for the shared logging shim."""

from __future__ import annotations

import logging

from portal import logger


def test_log_joins_parts_and_appends_metadata(caplog) -> None:
    caplog.set_level(logging.INFO, logger="portal")

    logger.log("dashboard", "opened", None, tables=["executions"])

    assert any(message.startswith("dashboard opened |") for message in caplog.messages)
    assert any("executions" in message for message in caplog.messages)


def test_log_without_metadata_is_plain(caplog) -> None:
    caplog.set_level(logging.INFO, logger="portal")

    logger.log("  selection changed  ")

    assert "selection changed" in caplog.messages
