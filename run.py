#!/usr/bin/env python3
"""Run one backup cycle and exit with its status"""
import sys
from pgkeeper.cli import main

if __name__ == '__main__':
    # Exit code 0 unless configuration, enumeration or an unexpected error failed the cycle
    sys.exit(main())
