"""Allow running the command server with: python -m modelserver"""

import argparse
import os

import uvicorn

from modelserver.config import Config


def main() -> None:
    cfg = Config.load()
    parser = argparse.ArgumentParser(description="Serve model commands over HTTP")
    parser.add_argument("--host", default=cfg.host, help=f"bind address (default: {cfg.host})")
    parser.add_argument("--port", type=int, default=cfg.port, help=f"bind port (default: {cfg.port})")
    parser.add_argument(
        "--app",
        default="modelserver.squeezenet:app",
        help="ASGI app to serve, as module:attribute",
    )
    args = parser.parse_args()

    # The lifespan reloads Config, so the startup log reports the real address.
    os.environ["MODELSERVER_HOST"] = args.host
    os.environ["MODELSERVER_PORT"] = str(args.port)

    uvicorn.run(
        args.app,
        host=args.host,
        port=args.port,
        log_level=cfg.log_level.lower(),
    )


if __name__ == "__main__":
    main()
