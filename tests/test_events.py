"""Tests for the event emitter."""

from agits_kernel.core.events import EventEmitter


class TestEventEmitter:
    def setup_method(self):
        self.emitter = EventEmitter()

    def test_delivers_arguments_in_registration_order(self):
        received = []
        self.emitter.on("tick", lambda n: received.append(("first", n)))
        self.emitter.on("tick", lambda n: received.append(("second", n)))

        delivered = self.emitter.emit("tick", 3)

        assert delivered == 2
        assert received == [("first", 3), ("second", 3)]

    def test_emit_without_listeners(self):
        assert self.emitter.emit("nobody_listens", 1, 2) == 0

    def test_failing_listener_is_isolated(self):
        received = []

        def broken(_payload):
            raise RuntimeError("listener bug")

        self.emitter.on("update", broken)
        self.emitter.on("update", received.append)

        delivered = self.emitter.emit("update", "payload")

        assert delivered == 1
        assert received == ["payload"]

    def test_off(self):
        received = []
        self.emitter.on("update", received.append)

        assert self.emitter.off("update", received.append) is True
        assert self.emitter.off("update", received.append) is False
        assert self.emitter.listener_count("update") == 0

        self.emitter.emit("update", "ignored")
        assert received == []

    def test_listener_may_unsubscribe_itself(self):
        calls = []

        def once(value):
            calls.append(value)
            self.emitter.off("update", once)

        self.emitter.on("update", once)
        self.emitter.emit("update", 1)
        self.emitter.emit("update", 2)

        assert calls == [1]
