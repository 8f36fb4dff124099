"""Entry point for ``python -m ormconsole``."""

from ormconsole.cli import main

if __name__ == "__main__":
    main()
