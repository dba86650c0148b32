from __future__ import annotations

import asyncio
import logging
import signal
from urllib.parse import parse_qs, urlsplit

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from .config import RelayRuntimeConfig
from .connection import QueuedConnection
from .constants import CLOSE_POLICY_VIOLATION, ENCODING_CBOR, ENCODING_JSON, Q_ENCODING
from .service import RelayService


class RelayServer:
    """WebSocket transport for :class:`RelayService`.

    Clients connect with ``ws://host:port/?userId=<identity>`` (the parameter
    name is configurable) and optionally ``&encoding=cbor``.
    """

    def __init__(self, config: RelayRuntimeConfig, service: RelayService | None = None) -> None:
        self.config = config
        self.service = service or RelayService(config)
        self.log = logging.getLogger("sigrelay.server")
        self._server: Server | None = None

    @property
    def port(self) -> int | None:
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    def _handshake_params(self, ws: ServerConnection) -> tuple[str | None, str]:
        path = ws.request.path if ws.request is not None else ""
        query = parse_qs(urlsplit(path).query, keep_blank_values=True)
        identity = (query.get(self.config.identity_param) or [None])[0]
        encoding = (query.get(Q_ENCODING) or [ENCODING_JSON])[0].strip().lower()
        return identity, encoding

    async def handler(self, ws: ServerConnection) -> None:
        raw_identity, encoding = self._handshake_params(ws)
        if encoding not in (ENCODING_JSON, ENCODING_CBOR):
            self.log.warning("Rejecting connection with encoding=%r", encoding)
            await ws.close(code=CLOSE_POLICY_VIOLATION, reason="unsupported encoding")
            return

        conn = QueuedConnection(encoding=encoding, max_queue=self.config.outbound_queue_size)
        reason = self.service.open_connection(conn, raw_identity)
        if reason is not None:
            await ws.close(code=CLOSE_POLICY_VIOLATION, reason=reason)
            return

        self.log.debug("Accepted conn=%s remote=%s", conn.conn_id, ws.remote_address)
        writer = asyncio.create_task(
            conn.drain(ws.send, on_sent=lambda n: self.service.stats_manager.inc("bytes_out", n)),
            name=f"sigrelay-writer-{conn.conn_id}",
        )
        try:
            async for data in ws:
                self.service.handle_frame(conn, data)
        except ConnectionClosed as e:
            self.log.debug("Connection lost conn=%s code=%s", conn.conn_id, e.rcvd and e.rcvd.code)
        except Exception:
            self.log.exception("Handler failed conn=%s", conn.conn_id)
        finally:
            self.service.close_connection(conn)
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)

    async def start(self) -> Server:
        ping_interval = float(self.config.ping_interval_s) or None
        ping_timeout = float(self.config.ping_timeout_s) or None
        self.service.start()
        self._server = await serve(
            self.handler,
            self.config.host,
            int(self.config.port),
            ping_interval=ping_interval,
            ping_timeout=ping_timeout,
            max_size=int(self.config.max_frame_bytes),
        )
        self.log.info("Listening on ws://%s:%s/", self.config.host, self.port)
        return self._server

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        self.service.stop()

    async def serve_until(self, stop: asyncio.Event) -> None:
        await self.start()
        try:
            await stop.wait()
        finally:
            await self.stop()

    def run_forever(self) -> None:
        async def _main() -> None:
            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, stop.set)
                except NotImplementedError:
                    # add_signal_handler is unavailable on Windows event loops.
                    signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))
            await self.serve_until(stop)

        asyncio.run(_main())
