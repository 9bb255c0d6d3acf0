#!/usr/bin/env python3
"""
Rheinpegel CLI entrypoint.

Usage:
    python -m rheinpegel [options]
    rheinpegel [options]  # if installed via pip

See --help for available options.
"""

from __future__ import annotations

import sys

from rheinpegel import main

if __name__ == "__main__":
    sys.exit(main())
