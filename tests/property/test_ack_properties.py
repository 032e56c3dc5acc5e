"""确认机制的性质测试（Property-based）。

核心不变量：
1. ack_flags 第 i 位置位 ⇔ ack_id - i - 1 已收到 (含 u16 回绕)
2. 任意收包顺序下，每个可靠负载恰好交付一次
3. 对端按 ack_flags 确认后，被覆盖的待确认包全部移除
"""

from __future__ import annotations

import sys
from pathlib import Path

_project_root = str(Path(__file__).resolve().parents[2])
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from hypothesis import given, settings
from hypothesis import strategies as st

from hazel.config import HazelConfig
from hazel.connection import Connection, ReceiveHistory
from hazel.packets import Acknowledge, Reliable

u16 = st.integers(min_value=0, max_value=0xFFFF)


def _config() -> HazelConfig:
    return HazelConfig(max_retries=8, receive_history_size=1024)


# ---------------------------------------------------------------------------
# 性质 1: ack_flags 与接收历史一致
# ---------------------------------------------------------------------------


@given(ack_id=u16, received=st.sets(st.integers(min_value=1, max_value=8)))
@settings(max_examples=300)
def test_ack_flags_match_history(ack_id: int, received: set[int]) -> None:
    history = ReceiveHistory()
    for distance in received:
        history.add((ack_id - distance) & 0xFFFF)
    flags = history.ack_flags(ack_id)
    for bit in range(8):
        assert bool(flags & (1 << bit)) == ((bit + 1) in received)


# ---------------------------------------------------------------------------
# 性质 2: 重复包只交付一次
# ---------------------------------------------------------------------------


@given(order=st.lists(st.integers(min_value=1, max_value=20), max_size=60))
@settings(max_examples=200)
def test_reliable_delivered_once(order: list[int]) -> None:
    conn = Connection(lambda data: None, config=_config(), clock=lambda: 0.0)
    delivered = []
    for ack_id in order:
        payload = conn.datagram_received(Reliable(ack_id=ack_id, data=bytes([ack_id])).to_bytes())
        if payload is not None:
            delivered.append(payload[0])
    assert sorted(delivered) == sorted(set(order))


# ---------------------------------------------------------------------------
# 性质 3: 确认移除待确认包
# ---------------------------------------------------------------------------


@given(count=st.integers(min_value=1, max_value=9), flags=st.integers(min_value=0, max_value=0xFF))
@settings(max_examples=200)
def test_acknowledge_clears_covered_pending(count: int, flags: int) -> None:
    conn = Connection(lambda data: None, config=_config(), clock=lambda: 0.0)
    sent = [conn.send_reliable(b"x") for _ in range(count)]
    ack = Acknowledge(ack_id=sent[-1], ack_flags=flags)
    conn.datagram_received(ack.to_bytes())
    covered = set(ack.acked_ids())
    for ack_id in sent:
        assert (ack_id in conn.pending) == (ack_id not in covered)
