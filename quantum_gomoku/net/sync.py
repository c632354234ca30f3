"""
Replication of game state through a shared document store.

A room is one document: the whole GameState written as a flat dict, plus a
`connections` map of presence flags that is maintained separately from
state writes. There is no merging. The last full document written wins,
and every subscriber receives every committed document in commit order.
"""
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Dict, Optional


logger = logging.getLogger(__name__)


class SyncError(Exception):
    """A store operation failed (network or service error)."""


class SyncAdapter(ABC):
    """Interface the engine uses to talk to a shared document store."""

    @abstractmethod
    def read(self, room_id) -> Optional[Dict[str, Any]]:
        """
        Fetch the room document, including `connections`.

        Returns:
            dict or None: None if the room does not exist
        """

    @abstractmethod
    def write(self, room_id, document):
        """Replace the room's state fields. `connections` is left as it is."""

    @abstractmethod
    def set_presence(self, room_id, client_id, present):
        """Set or clear one participant's presence flag."""

    @abstractmethod
    def subscribe(self, room_id, callback) -> Callable[[], None]:
        """
        Deliver the room document to `callback` now and after every change.

        Returns:
            callable: Stops delivery when called
        """


def compact(value):
    """
    Strip a JSON value the way hosted document stores do.

    None values and empty containers disappear. A list with holes comes back
    as a dict keyed by index strings.
    """
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            item = compact(item)
            if item is not None:
                result[key] = item
        return result or None

    if isinstance(value, list):
        items = [compact(item) for item in value]
        if not any(item is not None for item in items):
            return None
        if all(item is not None for item in items):
            return items
        return {str(i): item for i, item in enumerate(items) if item is not None}

    return value


class InMemoryDocumentStore(SyncAdapter):
    """
    Process-local document store.

    Documents are copied through JSON and compacted on every write, so
    readers see the same sparse shapes a hosted store would return.
    Delivery is synchronous and in commit order.
    """

    def __init__(self):
        self._rooms = {}
        self._subscribers = defaultdict(list)
        self.fail_reads = False
        self.fail_writes = False
        self.fail_presence = False
        self.writes = 0

    def read(self, room_id):
        if self.fail_reads:
            raise SyncError(f"read of room {room_id} failed")
        return self._snapshot(room_id)

    def write(self, room_id, document):
        if self.fail_writes:
            raise SyncError(f"write to room {room_id} failed")

        stored = compact(json.loads(json.dumps(document))) or {}
        stored.pop('connections', None)
        connections = self._rooms.get(room_id, {}).get('connections')
        if connections:
            stored['connections'] = connections

        self._rooms[room_id] = stored
        self.writes += 1
        logger.debug("Room %s written (%d writes)", room_id, self.writes)
        self._publish(room_id)

    def set_presence(self, room_id, client_id, present):
        if self.fail_writes or self.fail_presence:
            raise SyncError(f"presence update in room {room_id} failed")

        room = self._rooms.setdefault(room_id, {})
        connections = room.setdefault('connections', {})
        if present:
            connections[client_id] = True
        else:
            connections.pop(client_id, None)
        if not connections:
            del room['connections']
        self._publish(room_id)

    def subscribe(self, room_id, callback):
        self._subscribers[room_id].append(callback)
        callback(self._snapshot(room_id))

        def unsubscribe():
            if callback in self._subscribers[room_id]:
                self._subscribers[room_id].remove(callback)

        return unsubscribe

    def delete(self, room_id):
        """Drop a room, as an administrator would."""
        self._rooms.pop(room_id, None)
        self._publish(room_id)

    def _snapshot(self, room_id):
        room = self._rooms.get(room_id)
        if not room:
            return None
        return json.loads(json.dumps(room))

    def _publish(self, room_id):
        snapshot = self._snapshot(room_id)
        for callback in list(self._subscribers[room_id]):
            callback(snapshot)
