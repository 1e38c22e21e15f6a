"""Entry point for ``python -m podfleet``."""

from podfleet.cli.main import main


if __name__ == "__main__":
    main()
