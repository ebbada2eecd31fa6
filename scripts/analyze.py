#!/usr/bin/env python3
"""Summarise paper-trading results from the JSONL trade logs.

Equivalent to ``pumpsignal analyze``; extra arguments are passed through.
"""
from __future__ import annotations

import sys

from pumpsignal.main import main

if __name__ == "__main__":
    raise SystemExit(main(["analyze", *sys.argv[1:]]))
