# mcp_main.py
from loguru import logger

from txray_indexer.config import IndexerConfig
from txray_indexer.mcp_server import create_server


def serve(config: IndexerConfig | None = None):
    config = config or IndexerConfig.from_env()
    mcp = create_server(config)
    logger.info(f"[api] serving on {config.host}:{config.port}")
    mcp.run(transport="http", host=config.host, port=config.port)


if __name__ == "__main__":
    serve()
