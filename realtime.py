"""
In-process change feed for transactions and conversations.

Routes publish after a mutation commits; the SSE endpoint streams every
event on a channel to its subscribers. Each subscriber owns a bounded
queue; when it is full the oldest event is dropped, since clients re-read
the authoritative row on any event anyway.
"""
import json
import logging
import queue
import threading
from datetime import datetime

from constants import REALTIME_QUEUE_SIZE, REALTIME_KEEPALIVE_SECONDS

logger = logging.getLogger(__name__)

CHANNEL_KINDS = ('transaction', 'conversation')


def transaction_channel(txn_id):
    return f"transaction:{txn_id}"


def conversation_channel(conversation_id):
    return f"conversation:{conversation_id}"


class Subscription:
    def __init__(self, feed, channel, maxsize):
        self.feed = feed
        self.channel = channel
        self.queue = queue.Queue(maxsize=maxsize)

    def put(self, event):
        while True:
            try:
                self.queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self.queue.get_nowait()
                except queue.Empty:
                    pass

    def get(self, timeout=None):
        """Next event, or None if nothing arrived within `timeout` seconds."""
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self):
        self.feed.unsubscribe(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class ChangeFeed:
    def __init__(self, maxsize=REALTIME_QUEUE_SIZE):
        self.maxsize = maxsize
        self._lock = threading.Lock()
        self._subscribers = {}

    def subscribe(self, channel):
        sub = Subscription(self, channel, self.maxsize)
        with self._lock:
            self._subscribers.setdefault(channel, set()).add(sub)
        return sub

    def unsubscribe(self, sub):
        with self._lock:
            subs = self._subscribers.get(sub.channel)
            if subs is not None:
                subs.discard(sub)
                if not subs:
                    del self._subscribers[sub.channel]

    def subscriber_count(self, channel):
        with self._lock:
            return len(self._subscribers.get(channel, ()))

    def publish(self, channel, event_type, payload=None):
        """Deliver an event to every live subscriber. Returns how many got it."""
        event = {
            'channel': channel,
            'type': event_type,
            'payload': payload or {},
            'at': datetime.utcnow().isoformat(),
        }
        with self._lock:
            subs = list(self._subscribers.get(channel, ()))
        for sub in subs:
            sub.put(event)
        if subs:
            logger.debug(f"REALTIME: {event_type} on {channel} to {len(subs)} subscriber(s)")
        return len(subs)


feed = ChangeFeed()


def publish_transaction(txn, event_type='UPDATE'):
    """Fan out a transaction change on its own channel and its conversation's."""
    payload = {
        'id': txn.id,
        'status': txn.status,
        'payment_method': txn.payment_method,
        'fulfillment_method': txn.fulfillment_method,
    }
    feed.publish(transaction_channel(txn.id), event_type, payload)
    if txn.conversation_id:
        feed.publish(conversation_channel(txn.conversation_id), event_type,
                     dict(payload, table='transactions'))


def publish_message(message):
    feed.publish(conversation_channel(message.conversation_id), 'INSERT', {
        'table': 'messages',
        'id': message.id,
        'type': message.type,
        'transaction_id': message.transaction_id,
    })


def format_sse(event):
    return f"data: {json.dumps(event)}\n\n"


def stream(subscription, keepalive=REALTIME_KEEPALIVE_SECONDS, max_events=None):
    """
    Yield Server-Sent Events for a subscription until the client goes away.

    A comment line is sent every `keepalive` seconds of silence.
    """
    sent = 0
    try:
        yield ": connected\n\n"
        while max_events is None or sent < max_events:
            event = subscription.get(timeout=keepalive)
            if event is None:
                yield ": keepalive\n\n"
                continue
            yield format_sse(event)
            sent += 1
    finally:
        subscription.close()
