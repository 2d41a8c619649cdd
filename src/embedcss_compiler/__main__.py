"""Entry point for ``python -m embedcss_compiler``."""

from .cli import main

if __name__ == "__main__":
    main()
