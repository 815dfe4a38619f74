"""Configuration settings for NewsPassID."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from newspassid.identity.identifiers import DEFAULT_ID_PATTERN


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Ingestion backend ────────────────────────────────────────────────────
    # Root folder for every stored record (events, mappings, segment sources)
    id_folder: str = "newspassid"

    # Object storage: "local" writes under storage_local_root, "s3" uses the bucket
    storage_backend: Literal["local", "s3"] = "local"
    storage_bucket: str | None = None
    storage_local_root: str = "./data"

    # Bound on every storage call made while handling a request
    storage_timeout_seconds: float = 5.0

    # Identifiers accepted by the handler (must capture a "namespace" group)
    id_pattern: str = DEFAULT_ID_PATTERN

    # Second path component: the identifier's namespace, or the literal "publisher"
    path_layout: Literal["namespace", "publisher"] = "namespace"

    # Segment source: one table per namespace, or one per (domain, identifier)
    segment_source_scope: Literal["namespace", "identifier"] = "namespace"

    ingest_path: str = "/newspassid"

    # ── Client ───────────────────────────────────────────────────────────────
    namespace: str = "publisher"
    endpoint_url: str = "http://localhost:8000/newspassid"
    storage_key: str = "newspassid"
    local_store_url: str = "sqlite+aiosqlite:///./newspassid_client.db"
    local_store_echo: bool = False

    # Upper bound on waiting for the page consent API callback
    consent_timeout_ms: int = 500
    request_timeout_seconds: float = 10.0

    inject_meta_tags: bool = True

    # How backend segments combine with publisher-declared ones: server | merge | publisher
    segment_policy: Literal["server", "merge", "publisher"] = "server"

    # Delay before the shim issues its default set_id() after attach
    shim_default_delay_ms: int = 50


settings = Settings()
