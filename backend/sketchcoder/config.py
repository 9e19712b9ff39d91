from pydantic_settings import BaseSettings
from functools import lru_cache
import os


class Settings(BaseSettings):
    anthropic_api_key: str = ""
    supabase_url: str = ""
    supabase_key: str = ""

    # Model defaults
    analysis_model: str = "claude-sonnet-4-5-20250929"
    generation_model: str = "claude-sonnet-4-5-20250929"
    analysis_max_tokens: int = 2000
    generation_max_tokens: int = 3000
    analysis_temperature: float = 0.1
    generation_temperature: float = 0.7
    request_timeout: float = 45.0  # seconds, per model call

    # Version history persistence: "memory", "file" or "supabase"
    history_backend: str = "memory"
    history_dir: str = os.path.join(os.path.dirname(__file__), "..", "..", "data", "histories")
    supabase_table: str = "version_histories"

    # Preview sandbox
    transpiler: str = "babel"  # "babel" (in-sandbox) or "esbuild" (CLI)
    esbuild_bin: str = "esbuild"
    preview_asset_dir: str = os.path.join(os.path.dirname(__file__), "..", "..", "data", "preview-assets")
    react_url: str = "https://unpkg.com/react@18/umd/react.production.min.js"
    react_dom_url: str = "https://unpkg.com/react-dom@18/umd/react-dom.production.min.js"
    babel_url: str = "https://unpkg.com/@babel/standalone@7/babel.min.js"
    render_timeout: float = 15.0  # seconds
    render_cache_size: int = 64
    viewport_width: int = 1280
    viewport_height: int = 800
    max_source_chars: int = 200_000

    # Sketch uploads
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_image_types: list[str] = ["image/jpeg", "image/png", "image/webp"]
    image_max_width: int = 1600
    image_quality: int = 85

    # Logging
    debug: bool = False
    log_level: str = "INFO"
    # Regexes; matching log records are dropped by the logging filter
    log_suppress_patterns: list[str] = []

    class Config:
        # Look for .env in the repo root (two levels up from backend/sketchcoder/)
        _env_path = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file = _env_path if os.path.exists(_env_path) else None
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()
