"""Publishing of service events to Redis streams."""

import json
from collections.abc import Mapping


class RedisStreamPublisher:
    """Appends events to Redis streams, each as a single ``payload`` field."""

    def __init__(self, client):
        self.client = client

    def publish(self, stream, payload):
        """Append ``payload`` to ``stream`` and return the new entry id.

        A mapping payload is encoded as JSON; a string is sent unchanged.
        Errors from the client propagate to the caller.
        """
        if isinstance(payload, Mapping):
            payload = json.dumps(dict(payload))
        elif not isinstance(payload, str):
            raise TypeError("payload must be a string or a mapping")
        entry_id = self.client.xadd(stream, {"payload": payload})
        if isinstance(entry_id, bytes):
            entry_id = entry_id.decode()
        return entry_id