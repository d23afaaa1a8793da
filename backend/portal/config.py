from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Proposal Portal API"
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    public_base_url: str = "http://localhost:3000"
    cors_origins: str = "http://localhost:3000"
    cors_allow_credentials: bool = True
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"

    auth_secret_key: str = "change-me-in-production"
    auth_algorithm: str = "HS256"
    auth_token_ttl_seconds: int = 8 * 60 * 60

    aws_region: str = "us-east-1"
    # Some regions only allow on-demand invocation through an inference profile ID (e.g. `eu.amazon.nova-pro-v1:0`).
    bedrock_model_id: str = "amazon.nova-pro-v1:0"
    bedrock_embedding_model_id: str = "amazon.titan-embed-text-v2:0"
    embedding_mode: str = "hash"  # hash|bedrock
    embedding_dim: int = 256
    agent_temperature: float = 0.1
    agent_max_tokens: int = 4096

    # MVP default is sqlite.
    database_url: str = "sqlite:///./portal.db"

    novelty_candidate_pool: int = 100
    novelty_similarity_threshold: float = 0.9
    auto_reject_threshold: int = 65
    max_revision_requests: int = 2

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = "no-reply@proposal-portal.local"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
