#!/usr/bin/env python3
"""
lanup Main Entry Point

Runs the lanup command line interface from a source checkout without
installing the package:

    python main.py start --watch

Installed copies use the ``lanup`` console script instead.

License: MIT
"""

import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from lanup.cli import main


if __name__ == "__main__":
    sys.exit(main())
