import threading

from workflows.events import Reply
from workflows.messaging import InMemoryMessenger


class TestCapture:
    """Tests for per-context message capture."""

    def test_captured_messages_bypass_outbox(self):
        messenger = InMemoryMessenger()
        messenger.notify(2, "before")

        with messenger.capture() as captured:
            messenger.reply(5, Reply("hello"))
            messenger.notify(6, "ping")

        assert [(m.actor_id, m.kind) for m in captured] == [(5, "reply"), (6, "notification")]
        assert [m.text for m in messenger.drain()] == ["before"]

    def test_nested_capture_restores_outer(self):
        messenger = InMemoryMessenger()

        with messenger.capture() as outer:
            with messenger.capture() as inner:
                messenger.notify(1, "inner")
            messenger.notify(1, "outer")

        assert [m.text for m in inner] == ["inner"]
        assert [m.text for m in outer] == ["outer"]
        assert messenger.outbox == []

    def test_concurrent_captures_are_isolated(self):
        messenger = InMemoryMessenger()
        barrier = threading.Barrier(2)
        results = {}

        def request(actor_id):
            with messenger.capture() as captured:
                barrier.wait(timeout=5)
                for n in range(50):
                    messenger.notify(actor_id, f"{actor_id}-{n}")
                barrier.wait(timeout=5)
            results[actor_id] = captured

        workers = [threading.Thread(target=request, args=(actor_id,)) for actor_id in (1, 2)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=5)

        assert {m.actor_id for m in results[1]} == {1}
        assert {m.actor_id for m in results[2]} == {2}
        assert len(results[1]) == len(results[2]) == 50
        assert messenger.outbox == []
