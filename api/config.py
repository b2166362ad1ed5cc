"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Detection rule sync service configuration."""

    app_name: str = "Detection Rule Sync Service"
    version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    # GitHub rule repository (token optional: public access without it)
    github_api_url: str = "https://api.github.com"
    github_owner: str = "elastic"
    github_repo: str = "detection-rules"
    github_token: str | None = None
    rules_path: str = "rules"
    rule_file_extension: str = ".toml"
    max_rule_files: int = 1000
    request_timeout: float = 30
    http_retry_attempts: int = 3

    # Elasticsearch
    elastic_url: str | None = None
    elastic_api_key: str | None = None
    elastic_timeout: float = 60
    rules_index: str = "elastic-security-rules"
    sync_state_index: str = "elastic-rule-sync-state"

    # Batching against the public API rate limits
    sync_batch_size: int = 5
    sync_batch_delay: float = 2.0

    model_config = {"env_prefix": "RULESYNC_"}


settings = Settings()
