from db.trace_queue import TraceQueue
from processors.trace import enqueue_trace, get_trace
from processors.worker import handle_message, run_worker


class TestHandleMessage:
    def test_malformed_payload_is_acked(self, ctx, queue):
        message_id = queue.send({'not_a_trace': True})
        message = queue.receive()

        assert handle_message(ctx, message) is True
        assert queue.stats()['done'] == 1
        assert message.id == message_id

    def test_failure_is_retried(self, ctx, queue):
        trace_id = enqueue_trace(ctx, {'hotspot_id': 'missing', 'anchor': 'Miles'})['trace_id']
        message = queue.receive()

        assert handle_message(ctx, message) is False
        assert queue.stats()['pending'] == 1
        assert get_trace(ctx, trace_id)['status'] == 'failed'


class TestRunWorker:
    def test_processes_queued_traces(self, ctx, scenario):
        trace_ids = [
            enqueue_trace(ctx, {'hotspot_id': scenario['hotspot_id'], 'anchor': 'Miles'})['trace_id']
            for _ in range(3)
        ]

        counts = run_worker(ctx, workers=2, idle_timeout=0, poll_interval=0.01)

        assert counts == {'received': 3, 'acked': 3, 'failed': 0}
        assert all(get_trace(ctx, t)['status'] == 'done' for t in trace_ids)
        assert ctx.queue.stats()['done'] == 3

    def test_failing_trace_is_dead_lettered(self, ctx):
        trace_id = enqueue_trace(ctx, {'hotspot_id': 'missing', 'anchor': 'Miles'})['trace_id']

        counts = run_worker(ctx, workers=1, idle_timeout=0, poll_interval=0.01)

        assert counts['received'] == ctx.queue.max_attempts
        assert counts['failed'] == ctx.queue.max_attempts
        assert ctx.queue.stats()['dead'] == 1
        record = get_trace(ctx, trace_id)
        assert record['status'] == 'failed'
        assert record['retries'] == ctx.queue.max_attempts

    def test_max_messages(self, ctx, scenario):
        for _ in range(2):
            enqueue_trace(ctx, {'hotspot_id': scenario['hotspot_id'], 'anchor': 'Miles'})

        counts = run_worker(ctx, workers=1, max_messages=1, poll_interval=0.01)

        assert counts['received'] == 1
        assert ctx.queue.stats()['pending'] == 1

    def test_stale_failure_leaves_newer_delivery_alone(self, database, ctx):
        ctx.queue = TraceQueue(database, lease_seconds=0, max_attempts=5, retry_delay_seconds=0)
        enqueue_trace(ctx, {'hotspot_id': 'missing', 'anchor': 'Miles'})
        stale = ctx.queue.receive()
        current = ctx.queue.receive()

        assert handle_message(ctx, stale) is False
        assert ctx.queue.stats()['leased'] == 1
        assert ctx.queue.ack(current.id, attempts=current.attempts) is True
