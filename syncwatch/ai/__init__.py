"""AI enrichment and batch analysis backed by a local Ollama model."""

from syncwatch.ai.models import ActionType, ActionRecommendation, EnrichmentEvent

__all__ = [
    "ActionType",
    "ActionRecommendation",
    "EnrichmentEvent",
]
