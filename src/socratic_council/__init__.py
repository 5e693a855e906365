"""
Socratic Council

Orchestration engine for a five-member discussion council: priority-auction
turn scheduling, conflict detection, duo-logues, whispers and bounded
conversational memory.
"""

__version__ = "0.1.0"
