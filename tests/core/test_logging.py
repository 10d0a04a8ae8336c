#!/usr/bin/env python3
"""Tests for the structured logger."""

import io
import logging
import threading

import pytest

from sthub.core.logging import (
    LogLevel,
    Logger,
    configure_logging,
    get_logger,
    set_global_logger,
)


@pytest.fixture
def stream():
    return io.StringIO()


@pytest.fixture
def logger(stream, request):
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    return Logger(f"sthub.test.{request.node.name}", level=LogLevel.DEBUG, handlers=[handler])


class TestLogger:
    """Tests for Logger."""

    def test_plain_message(self, logger, stream):
        logger.info("Listening")
        assert stream.getvalue() == "INFO Listening\n"

    def test_context_is_appended(self, logger, stream):
        logger.warning("Rewrite failed", path="/a", status=500)
        assert stream.getvalue() == "WARNING Rewrite failed | path=/a status=500\n"

    def test_add_context(self, logger, stream):
        with logger.add_context(request_id="7f3a"):
            with logger.add_context(method="GET"):
                logger.debug("Handling")
            logger.debug("Done")
        logger.debug("Outside")

        lines = stream.getvalue().splitlines()
        assert lines == [
            "DEBUG Handling | request_id=7f3a method=GET",
            "DEBUG Done | request_id=7f3a",
            "DEBUG Outside",
        ]

    def test_context_is_thread_local(self, logger, stream):
        def worker():
            logger.info("From thread")

        with logger.add_context(request_id="main"):
            thread = threading.Thread(target=worker)
            thread.start()
            thread.join()

        assert stream.getvalue() == "INFO From thread\n"

    def test_level_filtering(self, logger, stream):
        logger.set_level("ERROR")
        logger.info("hidden")
        logger.error("shown")

        assert stream.getvalue() == "ERROR shown\n"
        assert logger.get_level() == LogLevel.ERROR
        assert not logger.is_enabled_for(LogLevel.WARNING)

    def test_invalid_level(self, logger):
        with pytest.raises(KeyError):
            logger.set_level("LOUD")

    def test_exception(self, logger, stream):
        try:
            raise ValueError("bad value")
        except ValueError as e:
            logger.exception("Request failed", e, path="/x")

        output = stream.getvalue()
        assert output.startswith(
            "ERROR Request failed | path=/x exception_type=ValueError exception_message=bad value"
        )
        assert "Traceback" in output

    def test_does_not_propagate(self, logger):
        assert logger.logger.propagate is False


class TestRegistry:
    """Tests for the logger registry."""

    def test_get_logger_returns_same_instance(self):
        assert get_logger("sthub.test.registry") is get_logger("sthub.test.registry")

    def test_set_global_logger(self, stream):
        custom = Logger("sthub.test.custom", handlers=[logging.StreamHandler(stream)])
        set_global_logger(custom)
        assert get_logger("sthub.test.custom") is custom

    def test_configure_logging(self, tmp_path):
        log_file = tmp_path / "sthub.log"
        configure_logging("DEBUG", str(log_file))
        try:
            logger = get_logger("sthub.server")
            assert logger.get_level() == LogLevel.DEBUG
            logger.debug("written", port=8080)
            for handler in logger.logger.handlers:
                handler.flush()

            assert "written | port=8080" in log_file.read_text()
        finally:
            for name in ("sthub", "sthub.cli", "sthub.main", "sthub.rewrite",
                         "sthub.server", "sthub.config"):
                registered = get_logger(name)
                for handler in list(registered.logger.handlers):
                    if isinstance(handler, logging.FileHandler):
                        registered.remove_handler(handler)
                        handler.close()
            configure_logging("INFO")

    def test_configure_logging_invalid_level(self):
        with pytest.raises(KeyError):
            configure_logging("CHATTY")
