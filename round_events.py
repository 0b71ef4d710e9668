"""
Round Change Notifications
==========================

Publishes committed inserts, updates and deletes of security rounds to
in-process subscribers (the manager dashboard stream). Changes are
collected at flush time and only delivered after the transaction commits;
a rollback discards them.
"""

import itertools
import json
import logging
import queue
import threading

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger('secure_rounds_app.events')

_PENDING_KEY = 'pending_round_events'


class RoundEventBus:
    """Subscription registry for security round changes"""

    def __init__(self, round_model=None):
        self.round_model = round_model
        self._subscribers = {}
        self._handles = itertools.count(1)
        self._lock = threading.Lock()
        self._bound = False

    def bind(self, round_model):
        """Start listening to ORM session events for ``round_model``"""
        self.round_model = round_model
        if self._bound:
            return
        event.listen(Session, 'before_flush', self._collect_deleted)
        event.listen(Session, 'after_flush', self._collect)
        event.listen(Session, 'after_commit', self._dispatch)
        event.listen(Session, 'after_soft_rollback', self._discard)
        self._bound = True

    def unbind(self):
        if not self._bound:
            return
        event.remove(Session, 'before_flush', self._collect_deleted)
        event.remove(Session, 'after_flush', self._collect)
        event.remove(Session, 'after_commit', self._dispatch)
        event.remove(Session, 'after_soft_rollback', self._discard)
        self._bound = False

    def subscribe(self, callback):
        """
        Register ``callback(action, round_dict)``

        Returns:
            int: Handle for ``unsubscribe``
        """
        with self._lock:
            handle = next(self._handles)
            self._subscribers[handle] = callback
        return handle

    def unsubscribe(self, handle):
        with self._lock:
            self._subscribers.pop(handle, None)

    def stream(self, accept=None, heartbeat_seconds=15.0):
        """
        Server-sent events for round changes

        Yields an opening comment once subscribed, then one ``data:`` frame
        per change that ``accept(action, round_dict)`` allows, with a
        keep-alive comment whenever nothing arrives for ``heartbeat_seconds``.
        The subscription ends when the generator is closed.
        """
        inbox = queue.Queue()
        handle = self.subscribe(lambda action, payload: inbox.put((action, payload)))
        try:
            yield ': connected\n\n'
            while True:
                try:
                    action, payload = inbox.get(timeout=heartbeat_seconds)
                except queue.Empty:
                    yield ': keep-alive\n\n'
                    continue
                if accept is not None and not accept(action, payload):
                    continue
                yield f'data: {json.dumps({"action": action, "round": payload})}\n\n'
        finally:
            self.unsubscribe(handle)

    @property
    def subscriber_count(self):
        return len(self._subscribers)

    def publish(self, action, payload):
        with self._lock:
            callbacks = list(self._subscribers.values())
        for callback in callbacks:
            try:
                callback(action, payload)
            except Exception as e:
                logger.warning(f'Round event subscriber failed: {e}')

    def _collect_deleted(self, session, flush_context, instances):
        # Deleted rows are snapshotted while they can still be loaded
        if self.round_model is None:
            return
        pending = session.info.setdefault(_PENDING_KEY, [])
        for obj in session.deleted:
            if isinstance(obj, self.round_model):
                pending.append(('DELETE', obj.to_dict()))

    def _collect(self, session, flush_context):
        if self.round_model is None:
            return
        pending = session.info.setdefault(_PENDING_KEY, [])
        for action, objects in (('INSERT', session.new), ('UPDATE', session.dirty)):
            for obj in objects:
                if isinstance(obj, self.round_model):
                    pending.append((action, obj.to_dict()))

    def _dispatch(self, session):
        pending = session.info.pop(_PENDING_KEY, [])
        for action, payload in pending:
            self.publish(action, payload)

    def _discard(self, session, previous_transaction):
        session.info.pop(_PENDING_KEY, None)
