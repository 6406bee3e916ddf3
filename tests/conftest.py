import io

import pytest
import structlog


@pytest.fixture
def sink() -> io.StringIO:
    return io.StringIO()


@pytest.fixture(autouse=True)
def reset_structlog():
    # configure_logging binds loggers to the streams of the test that ran it
    yield
    structlog.reset_defaults()
