import sys
from logging.config import dictConfig

dictConfig(
    {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "[%(asctime)s] %(levelname)s:%(name)s:%(module)s:%(funcName)s: %(message)s",
            },
        },
        "handlers": {
            "stdout.handler": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "level": "DEBUG",
                "formatter": "default",
            },
        },
        "loggers": {
            # The challenge responders log every request they serve
            "werkzeug": {"level": "INFO"},
            "urllib3": {"level": "INFO"},
        },
        "root": {"level": "DEBUG", "handlers": ["stdout.handler"]},
    }
)

from netsec_acme import cli  # noqa: E402

sys.exit(cli.main())
