# votequeue/worker/__main__.py

import logging
import sys

from votequeue.config import Settings, configure_logging
from votequeue.worker.consumer import build_worker

logger = logging.getLogger('votequeue.worker')


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    try:
        build_worker(settings).run_forever()
    except KeyboardInterrupt:
        return 0
    except Exception:
        logger.exception("Worker crashed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
