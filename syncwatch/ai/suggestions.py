"""AI suggestion and action-recommendation generation for single alerts."""

import logging
from typing import Optional

from syncwatch.ai.models import ActionRecommendation
from syncwatch.ai.prompts import (
    build_action_prompt,
    build_fallback_recommendation,
    build_suggestion_prompt,
)
from syncwatch.alerts.models import AlertType, AlertSeverity
from syncwatch.config import Settings
from syncwatch.detection.models import PrSnapshot, TaskSnapshot
from syncwatch.tools.ollama import OllamaClient

logger = logging.getLogger(__name__)


class SuggestionService:
    """Turns an alert (plus optional PR/task context) into model output."""

    def __init__(self, client: OllamaClient, settings: Settings):
        self._client = client
        self._settings = settings

    async def generate_alert_suggestion(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        pr: Optional[PrSnapshot] = None,
        task: Optional[TaskSnapshot] = None,
    ) -> Optional[str]:
        """Natural-language suggestion, or None when the model is unavailable."""
        prompt = build_suggestion_prompt(alert_type, severity, pr, task)
        response = await self._client.generate_text(prompt)
        if response is None:
            return None
        logger.debug(f"AI generated suggestion for {alert_type.value} alert")
        return response.strip()

    async def generate_action_recommendation(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        pr: Optional[PrSnapshot] = None,
        task: Optional[TaskSnapshot] = None,
    ) -> ActionRecommendation:
        """Model recommendation, or the deterministic template when the model gives nothing usable."""
        prompt = build_action_prompt(
            alert_type, severity, pr, task,
            include_action_reference=not self._settings.ollama_system_prompt_baked,
        )
        response = await self._client.generate_json(prompt, self._settings.analysis_max_tokens)
        recommendation = ActionRecommendation.parse(response)
        if recommendation is not None:
            logger.debug(
                f"AI generated action recommendation: {recommendation.action_type.value} "
                f"(confidence: {recommendation.confidence})"
            )
            return recommendation

        logger.warning(f"AI action recommendation unavailable for {alert_type.value}, using template fallback")
        return build_fallback_recommendation(alert_type, pr, task)
