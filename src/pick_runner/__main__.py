"""Allow ``python -m pick_runner``."""

import sys

from pick_runner.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
