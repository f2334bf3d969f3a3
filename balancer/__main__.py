import argparse
import logging
import os

import uvicorn

from .app import create_app
from .config import load_balancer_config

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def main():
    parser = argparse.ArgumentParser(description="Load balancer in front of the UUID replicas.")
    parser.add_argument(
        "--config",
        default=os.environ.get("BALANCER_CONFIG", "config.yaml"),
        help="YAML file with a 'balancer' section (default: config.yaml).",
    )
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    args = parser.parse_args()

    logging.basicConfig(format=LOG_FORMAT, level=args.log_level.upper())
    config = load_balancer_config(args.config)
    logging.getLogger("balancer").info(
        "balancing %d upstream(s) on %s:%d", len(config.upstreams), config.listen_host, config.listen_port
    )

    uvicorn.run(create_app(config), host=config.listen_host, port=config.listen_port)


if __name__ == "__main__":
    main()
