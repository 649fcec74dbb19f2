"""Entry point for ``python -m gateway_assistant.gateway``."""

import asyncio

from gateway_assistant.config import Config, set_config
from gateway_assistant.gateway.server import run_worker
from gateway_assistant.logging import configure_logging


def main() -> None:
    config = Config.load()
    set_config(config)
    configure_logging()
    try:
        asyncio.run(run_worker(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
