"""
Feature toggles resolved once per request and passed to services as a value,
never read from module-level mutable state inside business logic.
"""

from dataclasses import dataclass

from pullup_trainer.config import settings
from pullup_trainer.core.errors import FeatureDisabledError

AI_GENERATION = "ai_generation"


@dataclass(frozen=True)
class FeatureFlags:
    ai_generation_enabled: bool = True

    def require(self, feature: str) -> None:
        if feature == AI_GENERATION and not self.ai_generation_enabled:
            raise FeatureDisabledError(feature)


def get_feature_flags() -> FeatureFlags:
    """FastAPI dependency: snapshot of toggles for the current request."""
    return FeatureFlags(ai_generation_enabled=settings.ai_generation_enabled)
