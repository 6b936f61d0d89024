"""Pytest configuration for the kubeseed test suite."""
import logging

import pytest

from kubeseed.config import set_config
from kubeseed.logging import AUDIT_LOGGER


@pytest.fixture(autouse=True)
def reset_settings():
    set_config(None)
    yield
    set_config(None)


@pytest.fixture(autouse=True)
def reset_logging():
    # CLI invocations attach handlers bound to the runner's temporary streams.
    loggers = [logging.getLogger("kubeseed"), logging.getLogger(AUDIT_LOGGER)]
    saved = [(lg, list(lg.handlers), lg.level, lg.propagate) for lg in loggers]
    yield
    for lg, handlers, level, propagate in saved:
        for handler in lg.handlers:
            if handler not in handlers:
                handler.close()
        lg.handlers = handlers
        lg.setLevel(level)
        lg.propagate = propagate
