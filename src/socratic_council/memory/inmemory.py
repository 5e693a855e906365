"""
In-memory implementation of the Transcript Store for Socratic Council.

Useful for tests, the CLI and any embedding that exports transcripts at the
end of a session instead of persisting them incrementally.
"""

import json
from copy import deepcopy
from typing import Dict, List, Optional

from socratic_council.memory.base import TranscriptStore
from socratic_council.protocol.message import Message, ParticipantId


class InMemoryTranscriptStore(TranscriptStore):
    """
    In-memory implementation of the Transcript Store.

    Stored messages are deep copies, so later mutation by the caller does not
    leak into the store.
    """

    def __init__(self):
        """Initialize the in-memory store."""
        self._messages: Dict[str, Dict[str, Message]] = {}
        self._order: Dict[str, List[str]] = {}

    async def store_message(self, session_id: str, message: Message) -> bool:
        """Store a message in memory."""
        session = self._messages.setdefault(session_id, {})
        if message.id in session:
            return False
        session[message.id] = deepcopy(message)
        self._order.setdefault(session_id, []).append(message.id)
        return True

    async def update_message(self, session_id: str, message: Message) -> bool:
        """Replace an existing message."""
        session = self._messages.get(session_id)
        if session is None or message.id not in session:
            return False
        session[message.id] = deepcopy(message)
        return True

    async def get_message(self, session_id: str, message_id: str) -> Optional[Message]:
        """Retrieve a message by its ID."""
        # Return a deep copy to prevent modifications
        return deepcopy(self._messages.get(session_id, {}).get(message_id))

    async def get_session_messages(self,
                                   session_id: str,
                                   participant_id: Optional[ParticipantId] = None,
                                   limit: Optional[int] = None,
                                   offset: Optional[int] = None) -> List[Message]:
        """Retrieve messages from a specific session."""
        session = self._messages.get(session_id, {})
        messages = [session[mid] for mid in self._order.get(session_id, [])]

        if participant_id is not None:
            messages = [m for m in messages if m.participant_id == participant_id]

        # Apply offset and limit
        if offset is not None:
            messages = messages[offset:]
        if limit is not None:
            messages = messages[:limit]

        return [deepcopy(m) for m in messages]

    async def export_session(self, session_id: str) -> str:
        """Export the session as JSON."""
        messages = await self.get_session_messages(session_id)
        return json.dumps(
            {
                "session_id": session_id,
                "messages": [m.model_dump(mode="json") for m in messages],
            },
            indent=2,
        )

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session from memory."""
        if session_id not in self._messages:
            return False
        del self._messages[session_id]
        self._order.pop(session_id, None)
        return True
