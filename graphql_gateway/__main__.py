# Copyright 2021-present Kensho Technologies, LLC.
"""Serve the gateway: python -m graphql_gateway, configured through GRAPHQL_GATEWAY_CONFIG."""
import logging

import uvicorn

from .config import get_gateway_config
from .gateway import load_gateway_extensions
from .server import create_app


def main() -> None:
    """Load the configuration and serve the gateway until interrupted."""
    config = get_gateway_config()
    logging.basicConfig(
        level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    extensions = None
    if config.extensions is not None:
        extensions = load_gateway_extensions(config.extensions)
    app = create_app(config, extensions=extensions)
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
