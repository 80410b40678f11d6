from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # App
    app_name: str = "NaviCare"
    debug: bool = False

    # Database (SQLite by default; holds the saved-provider key-value entries)
    database_url: str = "sqlite:///./navicare.db"

    # AI - Gemini
    google_api_key: Optional[str] = None
    gemini_model: str = "gemini-3-flash-preview"
    tts_model: str = "gemini-2.5-flash-preview-tts"

    # Speech output: the TTS model returns 16-bit PCM at this rate / channel count
    speech_voice: str = "Kore"
    speech_sample_rate: int = 24000
    speech_channels: int = 1
    # Playback counts as over this long after the clip's own duration if the client never reports the end
    speech_end_grace_seconds: float = 2.0

    # In-memory assessment sessions are dropped after this much inactivity
    session_timeout_minutes: int = 30

    # Provider search
    provider_search_count: int = 5
    # Applied when the extraction step leaves `verified` out of a record
    provider_verified_default: bool = True

    # Saved providers: one JSON array per client under this key
    saved_providers_key: str = "navicare_saved_providers"

    # LangSmith Monitoring
    langchain_tracing_v2: bool = True
    langchain_api_key: Optional[str] = None
    langchain_project: str = "navicare"

    class Config:
        env_file = ".env"


settings = Settings()
