"""
Configuration for Socratic Council.

Session settings and the binding registry that decides which council members
currently have a usable completion service (credential plus model).
"""

import os
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from socratic_council.protocol.message import (
    COUNCIL_ORDER,
    DEFAULT_PARTICIPANTS,
    ParticipantConfig,
    ParticipantId,
)

PROVIDER_KEY_VARS: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "kimi": "KIMI_API_KEY",
}

# OpenAI-compatible endpoints for providers served through the OpenAI SDK
DEFAULT_BASE_URLS: Dict[str, Optional[str]] = {
    "openai": None,
    "anthropic": None,
    "google": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "deepseek": "https://api.deepseek.com/v1",
    "kimi": "https://api.moonshot.cn/v1",
}


class SessionConfig(BaseModel):
    """Configuration for a council session."""

    topic: str = Field(..., description="Discussion topic")
    max_turns: int = Field(default=50, ge=1, description="Turn limit")
    speakers_per_turn: int = Field(default=1, ge=1, le=5, description="Top-K speakers dispatched per turn")
    bidding_dwell_ms: int = Field(default=0, ge=0, description="How long a bidding round is held visible")
    inter_turn_delay_ms: int = Field(default=500, ge=0, description="Pause between turns")
    idle_timeout_ms: int = Field(default=60000, gt=0, description="Max silence between streamed chunks")
    hard_timeout_ms: int = Field(default=90000, gt=0, description="Max total request duration")
    chunk_flush_interval_ms: int = Field(default=55, ge=0, description="Minimum interval between chunk events")
    memory_window: int = Field(default=20, ge=1, description="Messages in each participant's context")
    conflict_threshold: int = Field(default=75, ge=0, le=100, description="Raw score that counts as conflict")
    conflict_window: int = Field(default=12, ge=2, description="Messages per pair considered by the detector")
    duologue_turns: int = Field(default=3, ge=0, description="Length of a conflict duo-logue")
    whisper_bid_bonus: int = Field(default=8, ge=0, description="Bid bonus carried by conflict whispers")
    whisper_log_size: int = Field(default=20, ge=1, description="Whispers kept in the observer log")
    error_log_size: int = Field(default=50, ge=1, description="Errors kept in the session error log")
    fairness_enabled: bool = Field(default=False, description="Apply speaking-balance adjustments to bids")
    seed: Optional[int] = Field(None, description="Seed for the bidding random source")


class ProviderCredential(BaseModel):
    """Credential and endpoint for one provider."""

    provider: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model_override: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


class BindingRegistry:
    """
    Answers which participants have a usable completion binding and which
    model each uses.
    """

    def __init__(
        self,
        credentials: Optional[Mapping[str, ProviderCredential]] = None,
        participants: Optional[Mapping[ParticipantId, ParticipantConfig]] = None,
    ):
        self.credentials: Dict[str, ProviderCredential] = dict(credentials or {})
        self.participants: Dict[ParticipantId, ParticipantConfig] = dict(participants or DEFAULT_PARTICIPANTS)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        participants: Optional[Mapping[ParticipantId, ParticipantConfig]] = None,
    ) -> "BindingRegistry":
        """
        Build a registry from environment variables.

        Reads ``<PROVIDER>_API_KEY``, optional ``<PROVIDER>_BASE_URL`` and
        optional ``SOCRATIC_COUNCIL_<PROVIDER>_MODEL`` for every provider.
        """
        env = os.environ if environ is None else environ
        credentials = {}
        for provider, key_var in PROVIDER_KEY_VARS.items():
            prefix = provider.upper()
            credentials[provider] = ProviderCredential(
                provider=provider,
                api_key=env.get(key_var),
                base_url=env.get(f"{prefix}_BASE_URL", DEFAULT_BASE_URLS.get(provider)),
                model_override=env.get(f"SOCRATIC_COUNCIL_{prefix}_MODEL"),
            )
        return cls(credentials=credentials, participants=participants)

    def config_for(self, participant_id: ParticipantId) -> Optional[ParticipantConfig]:
        """Participant config with any model override applied."""
        config = self.participants.get(participant_id)
        if config is None:
            return None
        credential = self.credentials.get(config.provider)
        if credential is not None and credential.model_override:
            return config.model_copy(update={"model": credential.model_override})
        return config

    def credential_for(self, participant_id: ParticipantId) -> Optional[ProviderCredential]:
        config = self.participants.get(participant_id)
        if config is None:
            return None
        return self.credentials.get(config.provider)

    def is_usable(self, participant_id: ParticipantId) -> bool:
        config = self.config_for(participant_id)
        credential = self.credential_for(participant_id)
        return bool(config and config.model and credential and credential.is_usable)

    def model_for(self, participant_id: ParticipantId) -> Optional[str]:
        config = self.config_for(participant_id)
        return config.model if config else None

    def usable(self) -> List[ParticipantId]:
        """Usable participants in fixed council order."""
        return [pid for pid in COUNCIL_ORDER if self.is_usable(pid)]
