"""Run the host supervisor."""

import sys

from hostsupervisor.main import main

if __name__ == "__main__":
    sys.exit(main())
