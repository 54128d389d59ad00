# votequeue/results/__main__.py

import asyncio

from votequeue.config import Settings, configure_logging
from votequeue.results.broadcaster import build_broadcaster


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    try:
        asyncio.run(build_broadcaster(settings).run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
