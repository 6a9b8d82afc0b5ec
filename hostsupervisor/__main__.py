"""
Entry point for running the supervisor via `python -m hostsupervisor`.
"""

import sys

from .main import main

if __name__ == "__main__":
    sys.exit(main())
