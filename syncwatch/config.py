"""
Runtime configuration.

Values come from the environment (optionally seeded from a .env file at the
project root) and are collected into a single Settings object that is built
once at startup and handed to the components that need it.
"""

import os
from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from dotenv import load_dotenv

project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_list(name: str) -> list[str]:
    value = os.getenv(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    """Configuration surface consumed by the service."""
    # Persistence
    database_url: str = f"sqlite:///{project_root / 'syncwatch.db'}"
    db_echo: bool = False

    # GitHub
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"
    github_repositories: list[str] = []
    github_merged_lookback_hours: int = 24

    # Jira
    jira_base_url: Optional[str] = None
    jira_api_user: Optional[str] = None
    jira_api_token: Optional[str] = None
    jira_jql: str = "statusCategory != Done ORDER BY updated DESC"

    # Asana
    asana_access_token: Optional[str] = None
    asana_api_url: str = "https://app.asana.com/api/1.0"
    asana_project_ids: list[str] = []  # empty: every project of every workspace

    # Linear
    linear_api_key: Optional[str] = None
    linear_api_url: str = "https://api.linear.app/graphql"

    # Scheduling (seconds)
    detection_interval: int = 300
    detection_initial_delay: int = 60
    task_sync_interval: int = 300
    task_sync_initial_delay: int = 10
    reconciliation_interval: int = 1800
    reconciliation_initial_delay: int = 120

    # Detection rules
    stale_pr_days: int = 7

    # Inference
    ai_enabled: bool = False
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3"
    ollama_timeout_seconds: int = 30
    ollama_max_tokens: int = 500
    ollama_system_prompt_baked: bool = False
    analysis_max_tokens: int = 1500
    analysis_batch_size: int = 5
    enrichment_queue_size: int = 100

    @property
    def github_enabled(self) -> bool:
        return bool(self.github_token and self.github_repositories)

    @property
    def jira_enabled(self) -> bool:
        return bool(self.jira_base_url and self.jira_api_user and self.jira_api_token)

    @property
    def asana_enabled(self) -> bool:
        return bool(self.asana_access_token)

    @property
    def linear_enabled(self) -> bool:
        return bool(self.linear_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        repositories = _env_list("GITHUB_REPOSITORIES")
        # Single-repo setups only set GITHUB_OWNER/GITHUB_REPO
        owner, repo = os.getenv("GITHUB_OWNER"), os.getenv("GITHUB_REPO")
        if not repositories and owner and repo:
            repositories = [f"{owner}/{repo}"]

        defaults = {name: field.default for name, field in cls.model_fields.items()}
        model = os.getenv("OLLAMA_MODEL", defaults["ollama_model"])

        return cls(
            database_url=os.getenv("DATABASE_URL", defaults["database_url"]),
            db_echo=_env_bool("DB_ECHO"),
            github_token=os.getenv("GITHUB_TOKEN"),
            github_api_url=os.getenv("GITHUB_API_URL", defaults["github_api_url"]).rstrip("/"),
            github_repositories=repositories,
            github_merged_lookback_hours=_env_int("GITHUB_MERGED_LOOKBACK_HOURS", defaults["github_merged_lookback_hours"]),
            jira_base_url=os.getenv("JIRA_BASE_URL"),
            jira_api_user=os.getenv("JIRA_API_USER"),
            jira_api_token=os.getenv("JIRA_API_TOKEN"),
            jira_jql=os.getenv("JIRA_JQL", defaults["jira_jql"]),
            asana_access_token=os.getenv("ASANA_ACCESS_TOKEN"),
            asana_api_url=os.getenv("ASANA_API_URL", defaults["asana_api_url"]).rstrip("/"),
            asana_project_ids=_env_list("ASANA_PROJECT_IDS"),
            linear_api_key=os.getenv("LINEAR_API_KEY"),
            linear_api_url=os.getenv("LINEAR_API_URL", defaults["linear_api_url"]),
            detection_interval=_env_int("DETECTION_INTERVAL_SECONDS", defaults["detection_interval"]),
            detection_initial_delay=_env_int("DETECTION_INITIAL_DELAY_SECONDS", defaults["detection_initial_delay"]),
            task_sync_interval=_env_int("TASK_SYNC_INTERVAL_SECONDS", defaults["task_sync_interval"]),
            task_sync_initial_delay=_env_int("TASK_SYNC_INITIAL_DELAY_SECONDS", defaults["task_sync_initial_delay"]),
            reconciliation_interval=_env_int("RECONCILIATION_INTERVAL_SECONDS", defaults["reconciliation_interval"]),
            reconciliation_initial_delay=_env_int(
                "RECONCILIATION_INITIAL_DELAY_SECONDS", defaults["reconciliation_initial_delay"]
            ),
            stale_pr_days=_env_int("STALE_PR_DAYS", defaults["stale_pr_days"]),
            ai_enabled=_env_bool("AI_ENABLED"),
            ollama_url=os.getenv("OLLAMA_URL", defaults["ollama_url"]).rstrip("/"),
            ollama_model=model,
            ollama_timeout_seconds=_env_int("OLLAMA_TIMEOUT_SECONDS", defaults["ollama_timeout_seconds"]),
            ollama_max_tokens=_env_int("OLLAMA_MAX_TOKENS", defaults["ollama_max_tokens"]),
            # Custom Modelfiles named syncwatch-* ship the system prompt already
            ollama_system_prompt_baked=_env_bool("OLLAMA_SYSTEM_PROMPT_BAKED", model.startswith("syncwatch")),
            analysis_max_tokens=_env_int("AI_ANALYSIS_MAX_TOKENS", defaults["analysis_max_tokens"]),
            analysis_batch_size=_env_int("AI_ANALYSIS_BATCH_SIZE", defaults["analysis_batch_size"]),
            enrichment_queue_size=_env_int("ENRICHMENT_QUEUE_SIZE", defaults["enrichment_queue_size"]),
        )
