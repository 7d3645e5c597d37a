"""
Table-backed trace job queue with at-least-once delivery.

A received message is leased for a visibility timeout. If the worker neither
acknowledges nor retries it before the lease expires, the message becomes
deliverable again, so a slow run may be processed twice concurrently.
Messages that keep failing are dead-lettered after max_attempts deliveries.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from sqlalchemy import or_, and_, update
from .database import Database
from .models import TraceMessage, MessageStatus


@dataclass
class QueueMessage:
    """A delivered message."""
    id: int
    body: Dict[str, Any]
    attempts: int


class TraceQueue:
    """Queue of trace job references."""

    def __init__(self, database: Database, lease_seconds: int = 300, max_attempts: int = 5,
                 retry_delay_seconds: float = 5.0):
        """
        Args:
            database: Database holding the trace_messages table
            lease_seconds: Visibility timeout of a delivered message
            max_attempts: Deliveries after which a failing message is dead-lettered
            retry_delay_seconds: Base backoff before a failed message is redelivered
        """
        self.database = database
        self.lease_seconds = lease_seconds
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds

    def send(self, body: Dict[str, Any]) -> int:
        """Enqueue a message body and return its id."""
        session = self.database.get_session()
        try:
            message = TraceMessage(body=body, status=MessageStatus.PENDING, available_at=datetime.utcnow())
            session.add(message)
            session.commit()
            return message.id
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def receive(self) -> Optional[QueueMessage]:
        """
        Lease the oldest deliverable message.

        Deliverable means pending and past its available_at, or leased with
        an expired lease (redelivery). Claiming is a compare-and-set on the
        row so concurrent receivers never lease the same delivery twice. An
        expired lease that already used max_attempts deliveries is
        dead-lettered instead of leased again.

        Returns:
            QueueMessage or None if nothing is deliverable
        """
        session = self.database.get_session()
        try:
            lost_races = 0
            while lost_races < 5:
                now = datetime.utcnow()
                candidate = (
                    session.query(TraceMessage)
                    .filter(or_(
                        and_(TraceMessage.status == MessageStatus.PENDING, TraceMessage.available_at <= now),
                        and_(TraceMessage.status == MessageStatus.LEASED, TraceMessage.leased_until <= now),
                    ))
                    .order_by(TraceMessage.available_at, TraceMessage.id)
                    .first()
                )
                if candidate is None:
                    return None
                message_id, body = candidate.id, candidate.body
                status, attempts = candidate.status, candidate.attempts
                exhausted = status == MessageStatus.LEASED and attempts >= self.max_attempts

                claim = (
                    update(TraceMessage)
                    .where(TraceMessage.id == message_id)
                    .where(TraceMessage.status == status)
                    .where(TraceMessage.attempts == attempts)
                )
                if exhausted:
                    claim = claim.values(
                        status=MessageStatus.DEAD,
                        leased_until=None,
                        last_error=f"lease expired after {attempts} deliveries",
                        updated_at=now
                    )
                else:
                    claim = claim.values(
                        status=MessageStatus.LEASED,
                        attempts=TraceMessage.attempts + 1,
                        leased_until=now + timedelta(seconds=self.lease_seconds),
                        updated_at=now
                    )
                claimed = session.execute(claim)
                session.commit()

                if claimed.rowcount == 1 and not exhausted:
                    return QueueMessage(id=message_id, body=body, attempts=attempts + 1)
                if claimed.rowcount != 1:
                    # Lost the race to another receiver
                    lost_races += 1
                session.expire_all()
            return None
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ack(self, message_id: int, attempts: Optional[int] = None) -> bool:
        """
        Acknowledge a delivery; the message is never redelivered.

        With attempts, only that delivery may settle the message: a late ack
        from a worker whose lease was taken over is ignored.

        Returns:
            False if the settlement was stale and ignored
        """
        session = self.database.get_session()
        try:
            settled = session.execute(
                self._settle(message_id, attempts)
                .values(status=MessageStatus.DONE, leased_until=None, updated_at=datetime.utcnow())
            )
            session.commit()
            return settled.rowcount == 1
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def retry(self, message_id: int, error: str = None, attempts: Optional[int] = None) -> Optional[MessageStatus]:
        """
        Signal a failed delivery.

        The message is made deliverable again after an exponential backoff,
        or dead-lettered once it has been delivered max_attempts times.
        Stale settlements (message no longer leased, or leased by a later
        delivery than attempts) are ignored.

        Returns:
            The resulting MessageStatus (PENDING or DEAD), or None if ignored
        """
        session = self.database.get_session()
        try:
            message = session.query(TraceMessage).filter_by(id=message_id).first()
            if message is None or message.status != MessageStatus.LEASED:
                return None
            if attempts is not None and message.attempts != attempts:
                return None

            now = datetime.utcnow()
            delivered = message.attempts
            values = {'last_error': (error or '')[:2000] or None, 'leased_until': None, 'updated_at': now}
            if delivered >= self.max_attempts:
                status = MessageStatus.DEAD
            else:
                status = MessageStatus.PENDING
                delay = self.retry_delay_seconds * (2 ** max(delivered - 1, 0))
                values['available_at'] = now + timedelta(seconds=delay)

            settled = session.execute(self._settle(message_id, delivered).values(status=status, **values))
            session.commit()
            return status if settled.rowcount == 1 else None
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def stats(self) -> Dict[str, int]:
        """Message counts per status."""
        session = self.database.get_session()
        try:
            counts = {status.value: 0 for status in MessageStatus}
            for message_status, in session.query(TraceMessage.status).all():
                counts[message_status.value] += 1
            return counts
        finally:
            session.close()

    def _settle(self, message_id: int, attempts: Optional[int]):
        stmt = (
            update(TraceMessage)
            .where(TraceMessage.id == message_id)
            .where(TraceMessage.status == MessageStatus.LEASED)
        )
        if attempts is not None:
            stmt = stmt.where(TraceMessage.attempts == attempts)
        return stmt
