#!/usr/bin/env python3
"""
Bookshelf MCP Server
Personal book recommendations behind a GitHub-federated OAuth flow

Logging goes to stderr only; stdout stays free for process supervisors
that capture it.
"""

import logging
import sys

# Configure logging to stderr only
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

__all__ = ["main"]


def main() -> None:
    """Run the Bookshelf MCP server over streamable HTTP."""
    import uvicorn
    from dotenv import load_dotenv

    from .app import create_app
    from .config import load_config
    from .errors import ConfigurationError

    load_dotenv()

    try:
        config = load_config()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    logging.getLogger().setLevel(config.log_level.upper())
    logger.info(f"Starting Bookshelf MCP server on {config.host}:{config.port}")
    logger.debug(f"Configuration: {config.to_dict()}")

    try:
        app = create_app(config)
        server = uvicorn.Server(
            uvicorn.Config(
                app=app,
                host=config.host,
                port=config.port,
                log_level="warning",  # Reduce uvicorn logging, let our logger handle it
                access_log=False,
            )
        )
        logger.info(f"Session endpoint ready on http://{config.host}:{config.port}/mcp")
        server.run()
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
    except Exception:
        logger.exception("Server error")
        raise
