#!/usr/bin/env python3
"""Replay a synthetic pump.fun market through the engine.

Equivalent to ``pumpsignal simulate``; arguments go to the subcommand, so
global options such as ``--config`` use ``PUMPSIGNAL_CONFIG`` instead.
"""
from __future__ import annotations

import sys

from pumpsignal.main import main

if __name__ == "__main__":
    raise SystemExit(main(["simulate", *sys.argv[1:]]))
