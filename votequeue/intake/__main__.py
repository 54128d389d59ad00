# votequeue/intake/__main__.py

from votequeue.config import Settings, configure_logging
from votequeue.intake import create_app


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    app = create_app(settings)
    app.run(host=settings.intake_host, port=settings.intake_port)


if __name__ == "__main__":
    main()
