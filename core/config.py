"""Retrieval engine configuration via Pydantic settings."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenAI
    openai_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    llm_model: str = "gpt-4o-mini"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 100
    embedding_timeout: float = 30.0

    # Content repository
    content_dir: str = "content"

    # Segmenter
    chunk_max_size: int = 500
    chunk_overlap: int = 50
    chunk_min_size: int = 100
    chunk_keep_short: bool = False

    # Retrieval
    top_k: int = 5
    min_similarity: float = 0.3
    max_context_tokens: int = 2000
    use_offline: bool = False

    # Penalty fusion channel sizes
    penalty_top_k: int = 3
    penalty_guide_top_k: int = 2

    # Confidence tiers
    high_confidence: float = 0.7
    medium_confidence: float = 0.4

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
