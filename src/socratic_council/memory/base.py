"""
Base Transcript Store interface for Socratic Council.

The orchestration core owns no durable state; finalized messages are handed
to a transcript store collaborator, which is responsible for persistence and
export.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from socratic_council.protocol.message import Message, ParticipantId


class TranscriptStore(ABC):
    """
    Abstract base class for transcript storage implementations.

    A session writes each finalized message exactly once through
    ``store_message``; annotations added later go through ``update_message``.
    """

    @abstractmethod
    async def store_message(self, session_id: str, message: Message) -> bool:
        """
        Store a finalized message.

        Args:
            session_id: The session the message belongs to
            message: The message to store

        Returns:
            True if storage was successful, False otherwise
        """
        pass

    @abstractmethod
    async def update_message(self, session_id: str, message: Message) -> bool:
        """
        Replace a stored message (used for quote/reaction annotations).

        Returns:
            True if the message existed and was updated, False otherwise
        """
        pass

    @abstractmethod
    async def get_message(self, session_id: str, message_id: str) -> Optional[Message]:
        """Retrieve a message by its ID."""
        pass

    @abstractmethod
    async def get_session_messages(self,
                                   session_id: str,
                                   participant_id: Optional[ParticipantId] = None,
                                   limit: Optional[int] = None,
                                   offset: Optional[int] = None) -> List[Message]:
        """
        Retrieve messages from a session in transcript order.

        Args:
            session_id: The session to read
            participant_id: Optional author filter
            limit: Maximum number of messages to retrieve
            offset: Number of messages to skip

        Returns:
            List of messages
        """
        pass

    @abstractmethod
    async def export_session(self, session_id: str) -> str:
        """Export a session transcript as a JSON document."""
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and all its messages."""
        pass
