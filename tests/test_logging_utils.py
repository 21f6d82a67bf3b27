from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

from stackpilot import logging_utils
from stackpilot.config import LoggingSettings
from stackpilot.utils.masking import SECRETS, SecretRegistry


@patch("stackpilot.logging_utils.logging.basicConfig")
def test_configure_logging_stream_only(mock_basic_config: MagicMock) -> None:
    logging_utils.configure_logging(LoggingSettings(level="debug"))

    kwargs = mock_basic_config.call_args.kwargs
    assert kwargs["force"] is True
    assert kwargs["level"] == logging.DEBUG
    assert len(kwargs["handlers"]) == 1
    assert any(
        isinstance(f, logging_utils.SecretRedactingFilter) for f in kwargs["handlers"][0].filters
    )


@patch("stackpilot.logging_utils.logging.basicConfig")
@patch("stackpilot.logging_utils.logging.FileHandler", side_effect=OSError("permission denied"))
@patch("stackpilot.logging_utils._logger")
def test_configure_logging_file_handler_error(
    mock_logger: MagicMock,
    _mock_file_handler: MagicMock,
    mock_basic_config: MagicMock,
) -> None:
    logging_utils.configure_logging(LoggingSettings(file="./logs/stackpilot.log"))

    mock_logger.warning.assert_called_once()
    assert len(mock_basic_config.call_args.kwargs["handlers"]) == 1


@patch("stackpilot.logging_utils.load_settings")
@patch("stackpilot.logging_utils.logging.basicConfig")
def test_configure_logging_defaults_to_loaded_settings(
    _mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
) -> None:
    mock_load_settings.return_value = MagicMock(logging=LoggingSettings())

    logging_utils.configure_logging()

    mock_load_settings.assert_called_once()


def test_get_logger_auto_configures(monkeypatch) -> None:
    monkeypatch.setattr(logging_utils, "_logging_configured", False)

    calls = {"count": 0}

    def fake_configure() -> None:
        calls["count"] += 1
        monkeypatch.setattr(logging_utils, "_logging_configured", True)

    monkeypatch.setattr(logging_utils, "configure_logging", fake_configure)

    logger = logging_utils.get_logger("test.logger")
    assert logger.name == "test.logger"
    assert calls["count"] == 1


def test_redacting_filter_scrubs_registered_secret() -> None:
    registry = SecretRegistry()
    registry.register("hunter2-pass")
    record = logging.LogRecord(
        "stackpilot", logging.INFO, __file__, 1, "logging in with %s", ("hunter2-pass",), None
    )

    assert logging_utils.SecretRedactingFilter(registry).filter(record) is True
    assert record.getMessage() == "logging in with ***"


def test_redacting_filter_leaves_clean_records_alone() -> None:
    SECRETS.register("hunter2-pass")
    record = logging.LogRecord("stackpilot", logging.INFO, __file__, 1, "value %d", (3,), None)

    logging_utils.SecretRedactingFilter().filter(record)

    assert record.args == (3,)
    assert record.getMessage() == "value 3"
