import asyncio

from sigrelay.codec import decode
from sigrelay.connection import QueuedConnection


def test_full_queue_drops_instead_of_blocking() -> None:
    async def scenario() -> None:
        conn = QueuedConnection(max_queue=2)
        assert conn.send({"event": "a"})
        assert conn.send({"event": "b"})
        assert conn.send({"event": "c"}) is False

    asyncio.run(scenario())


def test_drain_writes_in_order_until_closed() -> None:
    async def scenario() -> None:
        conn = QueuedConnection(encoding="cbor", max_queue=8)
        written: list[bytes] = []
        sizes: list[int] = []

        async def write(data) -> None:
            written.append(data)

        task = asyncio.create_task(conn.drain(write, on_sent=sizes.append))
        conn.send({"event": "one"})
        conn.send({"event": "two"})
        await asyncio.sleep(0)
        conn.close()
        await asyncio.wait_for(task, 1.0)

        assert [decode(d)["event"] for d in written] == ["one", "two"]
        assert sizes == [len(d) for d in written]
        assert conn.send({"event": "late"}) is False

    asyncio.run(scenario())


def test_close_on_full_queue_still_stops_writer() -> None:
    async def scenario() -> None:
        conn = QueuedConnection(max_queue=1)
        conn.send({"event": "pending"})
        conn.close()

        async def write(data) -> None:
            pass

        await asyncio.wait_for(conn.drain(write), 1.0)

    asyncio.run(scenario())


def test_unencodable_event_is_refused_and_writer_keeps_going() -> None:
    async def scenario() -> None:
        conn = QueuedConnection(max_queue=8)
        written: list[str] = []

        async def write(data) -> None:
            written.append(data)

        task = asyncio.create_task(conn.drain(write))
        # JSON has no form for raw bytes.
        assert conn.send({"event": "negotiation-offer", "offer": b"\x01\x02"}) is False
        assert conn.send({"event": "call-end", "from": "alice"}) is True
        await asyncio.sleep(0)
        conn.close()
        await asyncio.wait_for(task, 1.0)

        assert [decode(d)["event"] for d in written] == ["call-end"]

    asyncio.run(scenario())


def test_send_from_worker_thread_reaches_the_writer() -> None:
    async def scenario() -> None:
        conn = QueuedConnection(max_queue=8)
        got = asyncio.Event()
        written: list[str] = []

        async def write(data) -> None:
            written.append(data)
            got.set()

        task = asyncio.create_task(conn.drain(write))
        assert await asyncio.to_thread(conn.send, {"event": "new-message"}) is True
        await asyncio.wait_for(got.wait(), 1.0)
        conn.close()
        await asyncio.wait_for(task, 1.0)

        assert [decode(d)["event"] for d in written] == ["new-message"]

    asyncio.run(scenario())


def test_bytes_out_counts_utf8_bytes() -> None:
    async def scenario() -> None:
        conn = QueuedConnection(max_queue=8)
        sizes: list[int] = []

        async def write(data) -> None:
            pass

        task = asyncio.create_task(conn.drain(write, on_sent=sizes.append))
        conn.send({"event": "new-message", "text": "héllo"})
        await asyncio.sleep(0)
        conn.close()
        await asyncio.wait_for(task, 1.0)

        assert sizes == [len('{"event":"new-message","text":"héllo"}'.encode("utf-8"))]

    asyncio.run(scenario())
