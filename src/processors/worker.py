"""
Queue consumer for trace jobs.

Deliveries are independent: each one runs a single trace end-to-end in its
own pool thread with its own database session.
"""

import time
from concurrent.futures import ThreadPoolExecutor, FIRST_COMPLETED, wait
from typing import Optional
from db.models import MessageStatus
from db.trace_queue import QueueMessage
from processors.context import TraceContext
from processors.trace import process_trace_message


def handle_message(ctx: TraceContext, message: QueueMessage) -> bool:
    """
    Process one delivery and settle it on the queue.

    Success (including a dropped malformed payload) acknowledges the
    message. Any exception signals a retry; the queue dead-letters the
    message once it runs out of attempts. Settlements carry the delivery's
    attempt count, so a worker whose lease was taken over cannot settle the
    newer delivery.

    Returns:
        True if the message was processed successfully
    """
    try:
        process_trace_message(ctx, message.body)
    except Exception as e:
        status = ctx.queue.retry(message.id, str(e) or e.__class__.__name__, attempts=message.attempts)
        if status is None:
            print(f"  ✗ Message {message.id} failed after its lease was taken over (attempt {message.attempts})")
        elif status == MessageStatus.DEAD:
            print(f"  ✗ Message {message.id} dead-lettered after {message.attempts} attempts")
        else:
            print(f"  ✗ Message {message.id} will be retried (attempt {message.attempts})")
        return False

    if not ctx.queue.ack(message.id, attempts=message.attempts):
        print(f"  ✗ Message {message.id} ack ignored, lease was taken over (attempt {message.attempts})")
    return True


def run_worker(ctx: TraceContext, workers: int = 3, max_messages: Optional[int] = None,
               idle_timeout: Optional[float] = None, poll_interval: float = 1.0) -> dict:
    """
    Consume the trace queue with a bounded thread pool.

    Args:
        ctx: Trace context (its queue is required)
        workers: Maximum deliveries processed at the same time
        max_messages: Stop after receiving this many messages (None = no limit)
        idle_timeout: Stop after this many seconds without a deliverable
            message and nothing in flight (None = run forever)
        poll_interval: Sleep between empty polls

    Returns:
        Dict with received, acked and failed counts
    """
    if ctx.queue is None:
        raise ValueError("run_worker requires a queue")

    counts = {'received': 0, 'acked': 0, 'failed': 0}
    in_flight = set()
    idle_since = time.monotonic()

    def settle(done):
        for future in done:
            in_flight.discard(future)
            if future.result():
                counts['acked'] += 1
            else:
                counts['failed'] += 1

    with ThreadPoolExecutor(max_workers=workers) as executor:
        while True:
            if max_messages is not None and counts['received'] >= max_messages:
                break

            if len(in_flight) >= workers:
                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                settle(done)
                continue

            message = ctx.queue.receive()
            if message is None:
                if in_flight:
                    done, _ = wait(in_flight, timeout=poll_interval, return_when=FIRST_COMPLETED)
                    settle(done)
                    idle_since = time.monotonic()
                    continue
                if idle_timeout is not None and time.monotonic() - idle_since >= idle_timeout:
                    break
                time.sleep(poll_interval)
                continue

            idle_since = time.monotonic()
            counts['received'] += 1
            print(f"→ Message {message.id}: {message.body} (attempt {message.attempts})")
            in_flight.add(executor.submit(handle_message, ctx, message))

        if in_flight:
            done, _ = wait(in_flight)
            settle(done)

    return counts
