"""Allow running as ``python -m webchat``."""

from .cli import main

if __name__ == "__main__":
    main()
