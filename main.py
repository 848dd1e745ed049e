#!/usr/bin/env python3
"""
s3usage - Main entry point.

Usage:
    python main.py --db usage.duckdb collect
    python main.py --db usage.duckdb list --year 2025 --month 1
    python main.py --db usage.duckdb history my-bucket
    python main.py --db usage.duckdb prune --confirm
"""

import sys

from s3usage.cli import main

if __name__ == '__main__':
    sys.exit(main())
