"""Entry point for the relay.

Usage::

    python -m otp_relay
"""

from __future__ import annotations

import uvicorn

from .api import create_app
from .config import RelayConfig
from .logging import setup_logging
from .service import CodeService


def main() -> None:
    config = RelayConfig()
    setup_logging(json=config.log_json, level=config.log_level)

    service = CodeService(config)
    app = create_app(service)
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="warning",
        log_config=None,
    )


if __name__ == "__main__":
    main()
