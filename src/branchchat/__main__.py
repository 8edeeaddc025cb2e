"""Entry point for ``python -m branchchat``."""

import sys

from branchchat.cli import main

if __name__ == "__main__":
    sys.exit(main())
