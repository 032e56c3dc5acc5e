"""
事件总线测试
"""

from game.events import EventBus, EventEmitter, EventType, GameEvent


class TestGameEvent:
    def test_shortcuts(self):
        event = GameEvent(EventType.CHAT_MESSAGE, {"player_id": 3, "message": "hi"})
        assert event.player_id == 3
        assert event.message == "hi"
        assert event.reason is None
        assert GameEvent(EventType.CONNECTED).message == ""

    def test_net_id(self):
        assert GameEvent(EventType.OBJECT_DESTROYED, {"net_id": 11}).net_id == 11


class TestEventBus:
    """EventBus 测试"""

    def setup_method(self):
        self.bus = EventBus(max_history=3)

    def test_subscribe_and_emit(self):
        received = []
        self.bus.subscribe(EventType.GAME_STARTED, received.append)
        self.bus.emit(EventType.GAME_STARTED, game_id=None)
        self.bus.emit(EventType.PLAYER_LEFT, player_id=1)
        assert [e.event_type for e in received] == [EventType.GAME_STARTED]

    def test_priority_order(self):
        order = []
        self.bus.subscribe(EventType.CONNECTED, lambda e: order.append("low"), priority=0)
        self.bus.subscribe(EventType.CONNECTED, lambda e: order.append("high"), priority=10)
        self.bus.emit(EventType.CONNECTED)
        assert order == ["high", "low"]

    def test_global_handlers_run_first(self):
        order = []
        self.bus.subscribe(EventType.CONNECTED, lambda e: order.append("typed"), priority=100)
        self.bus.subscribe_all(lambda e: order.append("global"))
        self.bus.emit(EventType.CONNECTED)
        assert order == ["global", "typed"]

    def test_failing_handler_isolated(self):
        received = []

        def broken(event):
            raise RuntimeError("boom")

        self.bus.subscribe(EventType.CONNECTED, broken, priority=1)
        self.bus.subscribe(EventType.CONNECTED, received.append)
        self.bus.emit(EventType.CONNECTED)
        assert len(received) == 1

    def test_same_priority_keeps_order(self):
        order = []
        for name in ("a", "b", "c"):
            self.bus.subscribe(EventType.CONNECTED, lambda e, n=name: order.append(n))
        self.bus.emit(EventType.CONNECTED)
        assert order == ["a", "b", "c"]

    def test_unsubscribe_one_type(self):
        received = []
        self.bus.subscribe(EventType.CONNECTED, received.append)
        self.bus.subscribe(EventType.DISCONNECTED, received.append)
        self.bus.unsubscribe(EventType.CONNECTED, received.append)
        self.bus.emit(EventType.CONNECTED)
        self.bus.emit(EventType.DISCONNECTED)
        assert [e.event_type for e in received] == [EventType.DISCONNECTED]

    def test_unsubscribe(self):
        received = []
        self.bus.subscribe(EventType.CONNECTED, received.append)
        self.bus.subscribe_all(received.append)
        self.bus.unsubscribe_all(received.append)
        self.bus.emit(EventType.CONNECTED)
        assert received == []

    def test_history_bounded(self):
        for i in range(5):
            self.bus.emit(EventType.PLAYER_JOINED, player_id=i)
        history = self.bus.get_history(10)
        assert [e.player_id for e in history] == [2, 3, 4]

    def test_clear(self):
        received = []
        self.bus.subscribe(EventType.CONNECTED, received.append)
        self.bus.clear()
        self.bus.emit(EventType.CONNECTED)
        assert received == []


class TestEventEmitter:
    def test_emit_without_bus(self):
        assert EventEmitter().emit(EventType.CONNECTED) is None

    def test_emit_with_bus(self):
        bus = EventBus()
        emitter = EventEmitter()
        emitter.set_event_bus(bus)
        event = emitter.emit(EventType.CONNECTED, address=("127.0.0.1", 22023))
        assert bus.get_history(1) == [event]

