#!/usr/bin/env python3
"""
ZFS Installer

This script installs Ubuntu on a ZFS boot pool and root pool, optionally
encrypted, from a live session.
"""

import sys
from zfsinstall.main import main

if __name__ == "__main__":
    sys.exit(main())
