"""
Unit tests for the batch consumer: batch application, fallback and flushing.
"""

import threading

import pytest

from txn_pipeline.batch import BatchConfig
from txn_pipeline.broker.channels import ChannelPool
from txn_pipeline.codec import encode
from txn_pipeline.consumer import BatchApplier, BatchConsumer, ConsumeWorker


@pytest.fixture
def pairs(make_txn, fake_delivery):
    def _pairs(ids, **overrides):
        out = []
        for i in ids:
            t = make_txn(i, **overrides)
            out.append((t, fake_delivery(encode(t), message_id=i)))
        return out

    return _pairs


class TestBatchApplier:
    def test_duplicate_inside_batch(self, context, fake_store, pairs):
        store = fake_store()
        items = pairs(["A", "B", "C", "A", "D"])

        BatchApplier(store, context).apply(items)

        s = context.snapshot()
        assert (s.processed, s.duplicate, s.error) == (4, 1, 0)
        assert all(d.acked for _, d in items)
        assert len(store.rows) == 4

    def test_counts_add_up_to_batch_size(self, context, fake_store, pairs):
        store = fake_store()
        applier = BatchApplier(store, context)
        applier.apply(pairs(["A", "B"]))
        applier.apply(pairs(["B", "C", "D"]))

        s = context.snapshot()
        assert s.processed + s.duplicate == 5
        assert (s.processed, s.duplicate) == (4, 1)

    def test_same_id_twice_is_stored_once(self, context, fake_store, pairs):
        store = fake_store()
        applier = BatchApplier(store, context)
        applier.apply(pairs(["A"]))
        applier.apply(pairs(["A"], amount=999.0, name="Someone Else"))

        assert len(store.rows) == 1
        assert store.rows["A"].amount == 250.75
        s = context.snapshot()
        assert (s.processed, s.duplicate) == (1, 1)

    def test_batch_failure_falls_back_per_record(self, context, fake_store, pairs):
        store = fake_store(fail_batch=True, fail_ids={"A", "C", "E"})
        items = pairs(["A", "B", "C", "D", "E"])

        BatchApplier(store, context).apply(items)

        by_id = {t.id: d for t, d in items}
        for i in ("A", "C", "E"):
            assert by_id[i].requeued is True
            assert not by_id[i].acked
        for i in ("B", "D"):
            assert by_id[i].acked
            assert by_id[i].requeued is None
        s = context.snapshot()
        assert (s.processed, s.duplicate, s.error) == (2, 0, 3)
        assert store.one_calls == ["A", "B", "C", "D", "E"]

    def test_fallback_counts_already_stored_as_duplicate(self, context, fake_store, pairs):
        store = fake_store()
        BatchApplier(store, context).apply(pairs(["A"]))
        store.fail_batch = True

        BatchApplier(store, context).apply(pairs(["A", "B"]))

        s = context.snapshot()
        assert (s.processed, s.duplicate) == (2, 1)

    def test_ack_failure_does_not_stop_the_batch(self, context, fake_store, make_txn, fake_delivery):
        store = fake_store()
        t1, t2 = make_txn("A"), make_txn("B")
        broken = fake_delivery(encode(t1), "A", fail_settle=True)
        ok = fake_delivery(encode(t2), "B")

        BatchApplier(store, context).apply([(t1, broken), (t2, ok)])

        assert ok.acked
        assert context.snapshot().processed == 2

    def test_empty_batch_is_a_noop(self, context, fake_store):
        store = fake_store()
        BatchApplier(store, context).apply([])
        assert store.batch_calls == []


class TestConsumeWorker:
    def _worker(self, context, store, cfg, clock=None):
        return ConsumeWorker(0, ChannelPool(lambda _w: None), store, context, batch_config=cfg, clock=clock)

    def test_flushes_when_full(self, context, fake_store, fake_consume_channel, pairs):
        store = fake_store()
        deliveries = [d for _, d in pairs(["A", "B", "C", "D", "E"])]
        ch = fake_consume_channel(deliveries)

        self._worker(context, store, BatchConfig(max_size=2, max_age=3600)).consume(ch)

        # two full batches, then the remainder flushed when the stream closed
        assert store.batch_calls == [2, 2, 1]
        assert all(d.acked for d in deliveries)
        assert context.snapshot().processed == 5

    def test_flushes_on_age_before_size(
        self, context, fake_store, fake_consume_channel, fake_clock, pairs
    ):
        events = []
        store = fake_store(events=events)
        d1, d2 = [d for _, d in pairs(["A", "B"])]
        ch = fake_consume_channel([d1, d2, None, None, None], clock=fake_clock, events=events)

        self._worker(
            context, store, BatchConfig(max_size=100, max_age=2.0), clock=fake_clock
        ).consume(ch)

        assert events == ["batch:2", "closed"]
        assert d1.acked and d2.acked

    def test_wait_is_bounded_by_batch_age(
        self, context, fake_store, fake_consume_channel, fake_clock, pairs
    ):
        store = fake_store()
        (d1,) = [d for _, d in pairs(["A"])]
        ch = fake_consume_channel([d1, None], clock=fake_clock)

        self._worker(
            context, store, BatchConfig(max_size=100, max_age=0.25), clock=fake_clock
        ).consume(ch)

        assert ch.timeouts[1] == pytest.approx(0.25)
        assert store.batch_calls == [1]

    def test_malformed_message_is_acked_and_dropped(
        self, context, fake_store, fake_consume_channel, fake_delivery, pairs
    ):
        store = fake_store()
        bad = fake_delivery(b'{"id": "broken"', message_id="broken")
        (good,) = [d for _, d in pairs(["A"])]
        ch = fake_consume_channel([bad, good])

        self._worker(context, store, BatchConfig(max_size=10, max_age=60)).consume(ch)

        assert bad.acked and bad.requeued is None
        assert "broken" not in store.rows
        s = context.snapshot()
        assert (s.processed, s.error) == (1, 1)

    def test_stop_flushes_buffer(self, context, fake_store, fake_delivery, pairs):
        store = fake_store()
        deliveries = [d for _, d in pairs(["A", "B", "C"])]
        stop = threading.Event()

        class StoppingChannel:
            def next_delivery(self, timeout):
                if deliveries:
                    return deliveries.pop(0)
                stop.set()
                return None

            def close(self):
                pass

        ConsumeWorker(
            0,
            ChannelPool(lambda _w: StoppingChannel()),
            store,
            context,
            batch_config=BatchConfig(max_size=100, max_age=60),
            stop=stop,
        ).run()

        assert store.batch_calls == [3]
        assert context.snapshot().processed == 3


class TestBatchConsumer:
    def test_pool_consumes_with_private_channels(
        self, context, fake_store, fake_consume_channel, pairs, waiter
    ):
        store = fake_store()
        all_deliveries = []
        channels = []

        def factory(worker_id):
            ds = [d for _, d in pairs([f"W{worker_id}-{i}" for i in range(7)])]
            all_deliveries.extend(ds)
            ch = fake_consume_channel(ds)
            channels.append(ch)
            return ch

        consumer = BatchConsumer(
            context, ChannelPool(factory), store, workers=3, batch_config=BatchConfig(max_size=3, max_age=60)
        )
        consumer.start()
        assert waiter(lambda: consumer.workers_alive() == 0)
        consumer.stop()

        assert len(store.rows) == 21
        assert all(d.acked for d in all_deliveries)
        assert all(ch.closed for ch in channels)
        assert context.snapshot().processed == 21
        assert context.healthy

    def test_setup_failure_marks_unhealthy(self, context, fake_store, waiter):
        def broken(_w):
            raise ConnectionError("no broker")

        consumer = BatchConsumer(context, ChannelPool(broken), fake_store(), workers=2)
        consumer.start()
        assert waiter(lambda: consumer.workers_alive() == 0)
        consumer.stop()
        assert not context.healthy
