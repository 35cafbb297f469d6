"""Entry point for running the helper as a module."""

from .cli import main


if __name__ == "__main__":
    main()
