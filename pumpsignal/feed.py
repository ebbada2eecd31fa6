"""Live pump.fun purchase feed over Solana RPC.

Subscribes to program logs over websocket, resolves each candidate buy with
``getTransaction`` over HTTP and hands a :class:`~pumpsignal.types.Transaction`
to the engine callback.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import aiohttp
import websockets
from cachetools import TTLCache

from .config import PUMP_FUN_PROGRAM_ID, RuntimeConfig
from .jsonutil import JSONDecodeError, dumps, loads
from .logging_utils import warn_once_per
from .types import MalformedTransaction, Transaction

logger = logging.getLogger(__name__)

__all__ = [
    "SolanaBuyFeed",
    "extract_mint",
    "is_buy_logs",
    "parse_buy_transaction",
]

LAMPORTS_PER_SOL = 1_000_000_000
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"

_MINT_LOG_RE = re.compile(r"mint: ([A-Za-z0-9]{32,44})")

TransactionCallback = Callable[[Transaction], Awaitable[None]]


def is_buy_logs(logs: Iterable[str]) -> bool:
    """Logs mention a buy instruction and never a sell."""
    text = " ".join(str(line) for line in logs).lower()
    return "buy" in text and "sell" not in text


def _account_keys(result: Dict[str, Any]) -> List[str]:
    message = (result.get("transaction") or {}).get("message") or {}
    keys: List[str] = []
    for entry in message.get("accountKeys") or []:
        if isinstance(entry, str):
            keys.append(entry)
        elif isinstance(entry, dict) and isinstance(entry.get("pubkey"), str):
            keys.append(entry["pubkey"])
    return keys


def extract_mint(result: Dict[str, Any], logs: Iterable[str] = ()) -> Optional[str]:
    """Best-effort mint address for a pump.fun buy.

    Post-trade token balances are checked first, then pump.fun vanity
    addresses among the account keys, then a ``mint: <address>`` log line.
    """
    meta = result.get("meta") or {}
    for balance in meta.get("postTokenBalances") or []:
        mint = balance.get("mint") if isinstance(balance, dict) else None
        if isinstance(mint, str) and mint != WRAPPED_SOL_MINT:
            return mint
    for key in _account_keys(result)[1:]:
        if key.endswith("pump"):
            return key
    for line in list(logs) + list(meta.get("logMessages") or []):
        match = _MINT_LOG_RE.search(str(line))
        if match:
            return match.group(1)
    return None


def parse_buy_transaction(
    response: Dict[str, Any],
    signature: str,
    logs: Iterable[str] = (),
    *,
    min_amount: float = 0.001,
    now: Optional[float] = None,
) -> Optional[Transaction]:
    """Turn a ``getTransaction`` response into a purchase, or ``None``.

    The fee payer is taken as the buyer and its SOL balance drop as the
    amount spent.
    """
    result = response.get("result") if isinstance(response, dict) else None
    if not isinstance(result, dict):
        return None
    meta = result.get("meta") or {}
    if meta.get("err"):
        return None
    keys = _account_keys(result)
    pre = meta.get("preBalances") or []
    post = meta.get("postBalances") or []
    if not keys or not pre or not post:
        return None
    amount = (pre[0] - post[0]) / LAMPORTS_PER_SOL
    if amount < min_amount:
        return None
    mint = extract_mint(result, logs)
    if mint is None:
        return None
    block_time = result.get("blockTime")
    timestamp = float(block_time) if block_time else (time.time() if now is None else now)
    try:
        return Transaction(
            token=mint,
            timestamp=timestamp,
            buyer=keys[0],
            amount=amount,
            signature=signature,
        ).validate()
    except MalformedTransaction as exc:
        logger.debug("unusable transaction %s: %s", signature, exc)
        return None


class SolanaBuyFeed:
    """Reconnecting ``logsSubscribe`` client for the pump.fun program."""

    def __init__(
        self,
        callback: TransactionCallback,
        *,
        ws_url: str,
        http_url: str,
        program_id: str = PUMP_FUN_PROGRAM_ID,
        max_reconnect_attempts: int = 10,
        backoff_base: float = 1.0,
        tx_timeout: float = 10.0,
        min_amount: float = 0.001,
        on_connection_change: Callable[[bool], None] | None = None,
        dedup_ttl: float = 600.0,
    ) -> None:
        self._callback = callback
        self.ws_url = ws_url
        self.http_url = http_url
        self.program_id = program_id
        self.max_reconnect_attempts = max_reconnect_attempts
        self.backoff_base = backoff_base
        self.tx_timeout = tx_timeout
        self.min_amount = min_amount
        self._on_connection_change = on_connection_change
        self._seen: TTLCache = TTLCache(maxsize=20_000, ttl=dedup_ttl)
        self._stopping = asyncio.Event()
        self.connected = False
        self.reconnect_attempts = 0
        self.transactions_emitted = 0

    @classmethod
    def from_config(cls, callback: TransactionCallback, runtime: RuntimeConfig, **kwargs: Any) -> "SolanaBuyFeed":
        return cls(
            callback,
            ws_url=runtime.rpc_ws_url,
            http_url=runtime.rpc_http_url,
            program_id=runtime.program_id,
            max_reconnect_attempts=runtime.feed_max_reconnect_attempts,
            backoff_base=runtime.feed_backoff_base,
            tx_timeout=runtime.feed_tx_timeout,
            min_amount=runtime.feed_min_buy_amount,
            **kwargs,
        )

    def _set_connected(self, value: bool) -> None:
        self.connected = value
        if self._on_connection_change is not None:
            self._on_connection_change(value)

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_base * (2 ** max(0, attempt - 1))

    def subscribe_message(self, request_id: int = 1) -> str:
        return dumps(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "method": "logsSubscribe",
                "params": [{"mentions": [self.program_id]}, {"commitment": "confirmed"}],
            }
        )

    async def _fetch_transaction(self, session: aiohttp.ClientSession, signature: str) -> Dict[str, Any]:
        body = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getTransaction",
            "params": [
                signature,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": "confirmed",
                },
            ],
        }
        timeout = aiohttp.ClientTimeout(total=self.tx_timeout)
        async with session.post(self.http_url, json=body, timeout=timeout) as resp:
            resp.raise_for_status()
            return await resp.json(loads=loads)

    async def handle_message(self, raw: str | bytes, session: aiohttp.ClientSession) -> Optional[Transaction]:
        """Process one websocket frame; returns the emitted transaction if any."""
        try:
            message = loads(raw)
        except JSONDecodeError:
            return None
        if not isinstance(message, dict) or message.get("method") != "logsNotification":
            return None
        value = ((message.get("params") or {}).get("result") or {}).get("value") or {}
        signature = value.get("signature")
        logs = value.get("logs") or []
        if not isinstance(signature, str) or value.get("err"):
            return None
        if signature in self._seen or not is_buy_logs(logs):
            return None
        self._seen[signature] = True

        try:
            response = await self._fetch_transaction(session, signature)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            warn_once_per(60.0, "feed_fetch", "getTransaction failed for %s: %s", signature, exc, logger=logger)
            return None
        tx = parse_buy_transaction(response, signature, logs, min_amount=self.min_amount)
        if tx is None:
            return None
        self.transactions_emitted += 1
        await self._callback(tx)
        return tx

    async def _next_message(self, ws: Any, stop_wait: asyncio.Future) -> Optional[str | bytes]:
        """Next websocket frame, or ``None`` once :meth:`stop` has been called."""
        recv = asyncio.ensure_future(ws.recv())
        try:
            await asyncio.wait({recv, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            recv.cancel()
            raise
        if not recv.done():
            recv.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await recv
            return None
        return recv.result()

    async def _session(self) -> None:
        async with websockets.connect(self.ws_url, ping_interval=20, ping_timeout=20) as ws, \
                aiohttp.ClientSession() as session:
            await ws.send(self.subscribe_message())
            self.reconnect_attempts = 0
            self._set_connected(True)
            logger.info("subscribed to %s logs via %s", self.program_id, self.ws_url)
            stop_wait = asyncio.ensure_future(self._stopping.wait())
            try:
                while True:
                    raw = await self._next_message(ws, stop_wait)
                    if raw is None:
                        break
                    try:
                        await self.handle_message(raw, session)
                    except Exception:
                        logger.exception("failed to handle feed message")
            finally:
                stop_wait.cancel()

    async def run(self) -> None:
        """Stream until :meth:`stop` is called or reconnects are exhausted."""
        while not self._stopping.is_set():
            try:
                await self._session()
            except (OSError, websockets.WebSocketException, asyncio.TimeoutError) as exc:
                logger.warning("feed connection lost: %s", exc)
            finally:
                if self.connected:
                    self._set_connected(False)
            if self._stopping.is_set():
                break
            self.reconnect_attempts += 1
            if self.reconnect_attempts > self.max_reconnect_attempts:
                logger.error("feed gave up after %d reconnect attempts", self.max_reconnect_attempts)
                break
            delay = self.backoff_delay(self.reconnect_attempts)
            logger.info("reconnecting feed in %.1fs (attempt %d)", delay, self.reconnect_attempts)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)

    def stop(self) -> None:
        self._stopping.set()
