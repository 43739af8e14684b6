#!/usr/bin/env python3
"""
Entry script for bitcoin-alerts.
Delegates to the modular bitcoinalerts package.
"""

from bitcoinalerts.cli import main

if __name__ == "__main__":
    main()
