#!/usr/bin/env python
"""
Run Sync Script
Command-line entry point for one incremental sync run.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from jsm_sync.cli import main


if __name__ == '__main__':
    main()
