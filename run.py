#!/usr/bin/env python3
"""Convenience runner for the ChargeQuest discovery core.

Usage:
    python run.py sync
    python run.py simulate fixes.json --player alice --auto-claim
    python run.py status --player alice
"""
import sys

from charge_quest.main import main

if __name__ == "__main__":
    sys.exit(main())
