"""Entry point for ``python -m edgetop``."""

from collections.abc import Sequence

from edgetop.app import EdgetopApp
from edgetop.config import close_logging, configure_logging, parse_args


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for edgetop application."""
    settings = parse_args(argv)
    handler = configure_logging(settings)
    try:
        app = EdgetopApp(settings)
        app.run()
    finally:
        close_logging(handler)


if __name__ == "__main__":
    main()
