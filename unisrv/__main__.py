"""
unisrv CLI entry point.
"""

import sys

from unisrv_client.main import main

if __name__ == "__main__":
    sys.exit(main())
