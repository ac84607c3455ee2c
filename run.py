#!/usr/bin/env python3
"""Convenience runner for the Strava challenge tracker.

Usage:
    python run.py serve
    python run.py collect
"""
import sys

from strava_challenge.main import main

if __name__ == "__main__":
    sys.exit(main())
