"""Entry point for ``python -m turingpi``."""

from turingpi.cli.main import main


if __name__ == "__main__":
    main()
