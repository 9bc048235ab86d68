import os
from typing import Optional


def get_setting(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return an environment setting with an optional default."""
    return os.getenv(name, default)


def get_required_setting(name: str) -> str:
    """Return a required environment setting or raise a ValueError."""
    value = os.getenv(name)
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value


def get_database_url() -> str:
    """
    Return the database URL for SQLAlchemy.
    Defaults to a local SQLite file for development if not provided.
    """
    return os.getenv("DATABASE_URL") or os.getenv("POSTGRES_CONNECTION_STRING") or "sqlite:///./data/app.db"


def get_openai_settings() -> dict:
    """
    OpenAI settings shared by chat, vision and embedding calls.
    The API key is optional here; callers decide whether to require it.
    """
    return {
        "api_key": os.getenv("OPENAI_API_KEY"),
        "base_url": (os.getenv("OPENAI_BASE_URL") or "https://api.openai.com/v1").rstrip("/"),
        "model": os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        "vision_model": os.getenv("OPENAI_VISION_MODEL", "gpt-4o"),
    }


def get_graph_settings() -> dict:
    """Facebook/Instagram Graph API settings."""
    facebook_verify = os.getenv("FACEBOOK_VERIFY_TOKEN") or "facebook_verify_token_123"
    return {
        "version": os.getenv("GRAPH_API_VERSION", "v23.0"),
        "app_id": os.getenv("FACEBOOK_APP_ID"),
        "app_secret": os.getenv("FACEBOOK_APP_SECRET"),
        "page_id": os.getenv("FACEBOOK_PAGE_ID"),
        "page_access_token": os.getenv("FACEBOOK_PAGE_ACCESS_TOKEN"),
        "instagram_access_token": os.getenv("INSTAGRAM_ACCESS_TOKEN"),
        "facebook_verify_token": facebook_verify,
        "instagram_verify_token": os.getenv("INSTAGRAM_VERIFY_TOKEN") or facebook_verify,
    }


def get_pinecone_settings() -> dict:
    """
    Pinecone settings. index_url is the data-plane host of the serverless index
    (no trailing slash); control_url is used to ensure indexes exist.
    """
    return {
        "api_key": os.getenv("PINECONE_API_KEY"),
        "index_url": (os.getenv("PINECONE_INDEX_URL") or "").rstrip("/") or None,
        "control_url": (os.getenv("PINECONE_CONTROL_URL") or "https://api.pinecone.io").rstrip("/"),
    }


def get_storage_settings() -> dict:
    """Object storage used for uploaded prompt files."""
    return {
        "base_url": (os.getenv("STORAGE_BASE_URL") or "").rstrip("/") or None,
        "api_key": os.getenv("STORAGE_API_KEY"),
        "bucket": os.getenv("PROMPT_FILES_BUCKET", "prompt-files"),
    }
