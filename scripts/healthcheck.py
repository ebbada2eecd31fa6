#!/usr/bin/env python3
"""Probe a running engine's health endpoint.

Exits non-zero when the server is unreachable or reports anything but ``ok``.
"""
from __future__ import annotations

import argparse
import asyncio
import os

import aiohttp


async def probe(url: str, timeout: float) -> tuple[bool, str]:
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.get(url) as resp:
                if resp.status != 200:
                    return False, f"HTTP {resp.status}"
                body = await resp.json()
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        return False, str(exc) or type(exc).__name__
    status = body.get("status")
    return status == "ok", f"status={status} uptime={body.get('uptime', 0):.0f}s"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--url",
        default=f"http://127.0.0.1:{os.getenv('HEALTH_PORT') or os.getenv('PORT') or 3000}/health",
    )
    parser.add_argument("--timeout", type=float, default=5.0)
    args = parser.parse_args(argv)
    ok, message = asyncio.run(probe(args.url, args.timeout))
    print(f"{'PASS' if ok else 'FAIL'} {args.url} {message}")
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
