"""
Pricing table collaborator.

Maps a model id to per-million-token rates. A model without a known rate is a
valid state: the ledger still counts its tokens but cannot estimate spend.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class ModelPricing(BaseModel):
    """USD per one million tokens."""

    input_per_million: float = Field(default=0.0, ge=0)
    output_per_million: float = Field(default=0.0, ge=0)
    reasoning_per_million: float = Field(default=0.0, ge=0)

    @property
    def is_priced(self) -> bool:
        return bool(self.input_per_million or self.output_per_million or self.reasoning_per_million)


DEFAULT_PRICING: Dict[str, ModelPricing] = {
    # OpenAI
    "gpt-5.2-pro": ModelPricing(input_per_million=2.50, output_per_million=10.00, reasoning_per_million=15.00),
    "gpt-5.2": ModelPricing(input_per_million=5.00, output_per_million=15.00),
    "gpt-4.1": ModelPricing(input_per_million=2.00, output_per_million=8.00),
    "gpt-4.1-mini": ModelPricing(input_per_million=0.40, output_per_million=1.60),
    "gpt-4o": ModelPricing(input_per_million=2.50, output_per_million=10.00),
    "gpt-4o-mini": ModelPricing(input_per_million=0.15, output_per_million=0.60),
    "o3": ModelPricing(input_per_million=10.00, output_per_million=40.00, reasoning_per_million=40.00),
    "o4-mini": ModelPricing(input_per_million=1.10, output_per_million=4.40, reasoning_per_million=4.40),
    # Anthropic
    "claude-opus-4-6": ModelPricing(input_per_million=5.00, output_per_million=25.00),
    "claude-opus-4-5": ModelPricing(input_per_million=5.00, output_per_million=25.00),
    "claude-sonnet-4-5": ModelPricing(input_per_million=3.00, output_per_million=15.00),
    "claude-haiku-4-5": ModelPricing(input_per_million=1.00, output_per_million=5.00),
    # Google
    "gemini-3-pro-preview": ModelPricing(input_per_million=2.00, output_per_million=12.00),
    "gemini-2.5-pro": ModelPricing(input_per_million=1.25, output_per_million=10.00),
    "gemini-2.5-flash": ModelPricing(input_per_million=0.30, output_per_million=2.50),
    # DeepSeek
    "deepseek-reasoner": ModelPricing(input_per_million=0.55, output_per_million=2.19, reasoning_per_million=2.19),
    "deepseek-chat": ModelPricing(input_per_million=0.27, output_per_million=1.10),
    # Kimi
    "kimi-k2.5": ModelPricing(input_per_million=0.60, output_per_million=3.00),
    "kimi-k2-thinking": ModelPricing(input_per_million=0.60, output_per_million=2.50, reasoning_per_million=2.50),
}


class PricingTable:
    """Lookup of model pricing, optionally extended or overridden per instance."""

    def __init__(self, pricing: Optional[Dict[str, ModelPricing]] = None, include_defaults: bool = True):
        self._pricing: Dict[str, ModelPricing] = dict(DEFAULT_PRICING) if include_defaults else {}
        if pricing:
            self._pricing.update(pricing)

    def rates_for(self, model_id: Optional[str]) -> Optional[ModelPricing]:
        """Return the rates for a model, or None when no usable rate is known."""
        if not model_id:
            return None
        pricing = self._pricing.get(model_id)
        if pricing is None or not pricing.is_priced:
            return None
        return pricing

    def set_rates(self, model_id: str, pricing: ModelPricing) -> None:
        self._pricing[model_id] = pricing
