# votequeue/results/broadcaster.py

"""
Results broadcaster.

Polls the tally store on a fixed interval and pushes the vote counts to every
connected viewer over WebSocket. Viewers get a welcome message on connect and
then every snapshot published after that; nothing is replayed.

Messages are JSON objects of the form {"event": <name>, "data": <payload>}.
The `scores` event carries the counts as a JSON-encoded string.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, Optional, Set

import websockets
from sqlalchemy.exc import SQLAlchemyError
from websockets.exceptions import ConnectionClosed

from votequeue.database.store import TallyStore
from votequeue.errors import StoreUnavailable
from votequeue.operations.retry import RetryPolicy
from votequeue.security.credentials import credential_from_settings

logger = logging.getLogger(__name__)

WELCOME = {"text": "Welcome!"}


def collect_scores(counts: Dict[str, int], choices: Iterable[str]) -> Dict[str, int]:
    """Counts per choice, with every configured choice present."""
    scores = {choice: 0 for choice in choices}
    for choice, count in counts.items():
        scores[choice] = int(count)
    return scores


class ResultsBroadcaster:
    def __init__(self, store, choices=('a', 'b'), interval: float = 1.0,
                 host: str = "0.0.0.0", port: int = 4000):
        self.store = store
        self.choices = tuple(choices)
        self.interval = interval
        self.host = host
        self.port = port
        self.clients: Set[Any] = set()

    async def run(self) -> None:
        """Serve viewers and publish a snapshot every interval, forever."""
        async with websockets.serve(self._handle_client, self.host, self.port,
                                    ping_interval=20, ping_timeout=10):
            logger.info(f"App running on ws://{self.host}:{self.port}")
            while True:
                await self.publish_once()
                await asyncio.sleep(self.interval)

    async def publish_once(self) -> Optional[Dict[str, int]]:
        """Query the store and broadcast the scores. Returns None when the cycle is skipped."""
        if self.store.needs_credential_refresh():
            await asyncio.to_thread(self.store.refresh_credentials)
        if not self.store.is_open:
            opened = await asyncio.to_thread(self.store.try_open)
            if not opened:
                return None
        try:
            counts = await asyncio.to_thread(self.store.count_by_choice)
        except (StoreUnavailable, SQLAlchemyError) as e:
            logger.error(f"Error performing query: {e}")
            return None

        scores = collect_scores(counts, self.choices)
        await self.broadcast("scores", json.dumps(scores))
        return scores

    async def _handle_client(self, websocket, path=None) -> None:
        self.clients.add(websocket)
        client_addr = getattr(websocket, "remote_address", None)
        logger.info(f"Viewer connected: {client_addr}")

        try:
            await self._send_to_client(websocket, "message", WELCOME)
            async for message in websocket:
                await self._handle_message(websocket, message)
        except ConnectionClosed:
            logger.info(f"Viewer disconnected: {client_addr}")
        finally:
            self.clients.discard(websocket)

    async def _handle_message(self, websocket, message: str) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from viewer: {message!r}")
            return
        if not isinstance(data, dict):
            logger.warning(f"Unexpected message from viewer: {message!r}")
            return

        event = data.get("event")
        if event == "subscribe":
            # acknowledged only, scores go to every connected viewer
            channel = str(data.get("channel", ""))
            await self._send_to_client(websocket, "subscribed", {"channel": channel})
        elif event == "ping":
            await self._send_to_client(websocket, "pong", None)
        else:
            logger.warning(f"Unknown event from viewer: {event}")

    async def _send_to_client(self, websocket, event: str, data: Any) -> None:
        try:
            await websocket.send(json.dumps({"event": event, "data": data}))
        except ConnectionClosed as e:
            logger.info(f"Failed to send to viewer: {e}")

    async def broadcast(self, event: str, data: Any) -> None:
        if not self.clients:
            return

        message = json.dumps({"event": event, "data": data})
        disconnected = set()

        for client in list(self.clients):
            try:
                await client.send(message)
            except ConnectionClosed:
                disconnected.add(client)

        for client in disconnected:
            self.clients.discard(client)


def build_broadcaster(settings) -> ResultsBroadcaster:
    store = TallyStore.from_settings(
        settings,
        credential=credential_from_settings(settings),
        retry_policy=RetryPolicy.from_settings(settings),
    )
    return ResultsBroadcaster(
        store,
        choices=settings.choices.keys(),
        interval=settings.results_interval,
        host=settings.results_host,
        port=settings.results_port,
    )
