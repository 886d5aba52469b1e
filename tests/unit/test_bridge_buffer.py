from __future__ import annotations

from conftest import FakeConnection

from live_transcription_agent.stt.base import ProviderConfig
from live_transcription_agent.streaming.bridge_buffer import BridgeBuffer


def _replayed(buf: BridgeBuffer) -> list[bytes]:
    conn = FakeConnection(config=ProviderConfig())
    conn.make_ready()
    buf.replay(conn)
    return conn.sent


def test_budget_follows_sample_format() -> None:
    assert BridgeBuffer(seconds=3, sample_rate=16000, sample_width=2).max_bytes == 96_000
    assert BridgeBuffer(seconds=0.5, sample_rate=8000, sample_width=2).max_bytes == 8_000


def test_append_evicts_oldest_whole_chunks() -> None:
    buf = BridgeBuffer(seconds=1, sample_rate=10, sample_width=1)  # 10 байт
    buf.append(b"aaaa")
    buf.append(b"bbbb")
    buf.append(b"cccc")
    assert _replayed(buf) == [b"bbbb", b"cccc"]
    assert buf.size_bytes == 8
    assert len(buf) == 2


def test_single_oversized_chunk_is_not_kept() -> None:
    buf = BridgeBuffer(seconds=1, sample_rate=4, sample_width=1)
    buf.append(b"123456")
    assert _replayed(buf) == []
    assert buf.size_bytes == 0


def test_empty_chunks_ignored_and_clear() -> None:
    buf = BridgeBuffer(seconds=1, sample_rate=100, sample_width=1)
    buf.append(b"")
    buf.append(b"x")
    assert len(buf) == 1
    buf.clear()
    assert _replayed(buf) == []
    assert buf.size_bytes == 0


def test_replay_writes_in_order_and_keeps_content() -> None:
    buf = BridgeBuffer(seconds=1, sample_rate=100, sample_width=1)
    for chunk in (b"1", b"22", b"333"):
        buf.append(chunk)

    conn = FakeConnection(config=ProviderConfig())
    conn.make_ready()
    assert buf.replay(conn) == 6
    assert conn.sent == [b"1", b"22", b"333"]
    # replay не опустошает буфер: он нужен и следующему рестарту
    assert _replayed(buf) == [b"1", b"22", b"333"]
