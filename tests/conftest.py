import sys

import pytest
import structlog
from structlog._config import BoundLoggerLazyProxy


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Keep logging configured by one test (e.g. CLI runs that bind to a
    temporary stderr) from leaking into later tests."""
    yield
    structlog.reset_defaults()
    # Drop loggers cached on first use by module-level proxies.
    for name, module in list(sys.modules.items()):
        if not name.startswith("gateway_assistant"):
            continue
        for value in list(vars(module).values()):
            if isinstance(value, BoundLoggerLazyProxy):
                value.__dict__.pop("bind", None)
