# clipindex – Local hybrid retrieval for saved items
# Copyright (c) 2026 The clipindex authors.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Entry point: python -m clipindex

Opens both indexes and serves the HTTP API. A failed model load is not
fatal: the API comes up with keyword search only and /health reports
"semantic_ready": false.
"""
import uvicorn
from loguru import logger

from .config import Config
from .health import HealthTracker
from .logger import setup_logging
from .manager import IndexManager
from .web import create_web_app


def main():
    config = Config.load()
    setup_logging(config.log_level, config.log_file)

    health = HealthTracker()
    manager = IndexManager(config, health=health)

    logger.info(f"Opening indexes in {config.data_path} ...")
    result = manager.initialize()
    if not result["lexical"]:
        logger.error(f"Lexical index unavailable: {result['error']}")
    logger.info(f"Done: {result}")

    app = create_web_app(manager, config)
    logger.info(f"Web API on http://{config.web_host}:{config.web_port}")
    try:
        uvicorn.run(app, host=config.web_host, port=config.web_port, log_level="warning")
    finally:
        manager.close()


if __name__ == "__main__":
    main()
