"""
Cost Ledger for Socratic Council.

Accumulates token usage per participant and estimates spend from the pricing
table collaborator.
"""

import logging
from typing import Dict, Iterable, Optional

from pydantic import BaseModel, Field

from socratic_council.ledger.pricing import PricingTable
from socratic_council.protocol.message import COUNCIL_ORDER, ParticipantId, TokenUsage

TOKENS_PER_UNIT = 1_000_000


class ParticipantCost(BaseModel):
    """Running usage and estimated spend for one participant."""

    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    estimated_usd: float = 0.0
    pricing_available: bool = Field(default=True, description="False once any usage could not be priced")


class CostSnapshot(BaseModel):
    """Immutable view of the ledger."""

    participants: Dict[ParticipantId, ParticipantCost] = Field(default_factory=dict)
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_reasoning_tokens: int = 0
    total_estimated_usd: float = 0.0


class CostLedger:
    """
    Per-participant and session-wide usage ledger.

    Tokens are always counted. Spend is only added when the model has a known
    rate; otherwise the participant is marked ``pricing_available=False``.
    """

    def __init__(self, pricing: Optional[PricingTable] = None, participants: Iterable[ParticipantId] = COUNCIL_ORDER):
        self.pricing = pricing or PricingTable()
        self._participants: Dict[ParticipantId, ParticipantCost] = {pid: ParticipantCost() for pid in participants}
        self._total = CostSnapshot()
        self.logger = logging.getLogger("socratic_council.ledger")

    def record_usage(self, participant_id: ParticipantId, tokens: TokenUsage, model_id: Optional[str]) -> float:
        """
        Record token usage for a participant.

        Args:
            participant_id: Who consumed the tokens
            tokens: Reported input/output/reasoning tokens
            model_id: Model used, looked up in the pricing table

        Returns:
            The USD amount added (0.0 when no rate is known)
        """
        entry = self._participants.setdefault(participant_id, ParticipantCost())

        entry.input_tokens += tokens.input
        entry.output_tokens += tokens.output
        entry.reasoning_tokens += tokens.reasoning
        self._total.total_input_tokens += tokens.input
        self._total.total_output_tokens += tokens.output
        self._total.total_reasoning_tokens += tokens.reasoning

        rates = self.pricing.rates_for(model_id)
        if rates is None:
            entry.pricing_available = False
            self.logger.debug(f"No pricing for model {model_id!r}; {participant_id.value} spend not estimated")
            return 0.0

        usd = (
            (tokens.input / TOKENS_PER_UNIT) * rates.input_per_million
            + (tokens.output / TOKENS_PER_UNIT) * rates.output_per_million
            + (tokens.reasoning / TOKENS_PER_UNIT) * rates.reasoning_per_million
        )
        entry.estimated_usd += usd
        self._total.total_estimated_usd += usd
        return usd

    def participant(self, participant_id: ParticipantId) -> ParticipantCost:
        return self._participants.get(participant_id, ParticipantCost()).model_copy()

    @property
    def total_usd(self) -> float:
        return self._total.total_estimated_usd

    def snapshot(self) -> CostSnapshot:
        snapshot = self._total.model_copy()
        snapshot.participants = {pid: cost.model_copy() for pid, cost in self._participants.items()}
        return snapshot

    def reset(self) -> None:
        self._participants = {pid: ParticipantCost() for pid in self._participants}
        self._total = CostSnapshot()
