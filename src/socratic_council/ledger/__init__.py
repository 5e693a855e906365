"""
Cost accounting for Socratic Council

Per-participant token usage and estimated spend, priced through a pluggable
pricing table.
"""

from socratic_council.ledger.cost import CostLedger, CostSnapshot, ParticipantCost
from socratic_council.ledger.pricing import DEFAULT_PRICING, ModelPricing, PricingTable

__all__ = ["CostLedger", "CostSnapshot", "ParticipantCost", "DEFAULT_PRICING", "ModelPricing", "PricingTable"]
