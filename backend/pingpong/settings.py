from typing import Dict

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	# Feedback model; short JSON answers only, so the lite model is enough
	gemini_model: str = Field(default="gemini-2.5-flash-lite", validation_alias="GEMINI_MODEL")
	gemini_tts_model: str = Field(default="gemini-2.5-flash-preview-tts", validation_alias="GEMINI_TTS_MODEL")
	gemini_tts_voice: str = Field(default="Kore", validation_alias="GEMINI_TTS_VOICE")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")
	backend_timeout_seconds: float = Field(default=30.0, validation_alias="BACKEND_TIMEOUT_SECONDS")

	# Speech-to-Text
	speech_language: str = Field(default="en-US", validation_alias="SPEECH_LANGUAGE")
	speech_timeout_seconds: float = Field(default=15.0, validation_alias="SPEECH_TIMEOUT_SECONDS")
	# Recording window per turn
	capture_seconds: float = Field(default=5.0, validation_alias="CAPTURE_SECONDS")

	# Rewards: default threshold plus optional per-level overrides, e.g. {"3": 8}
	reward_major_threshold: int = Field(default=6, validation_alias="REWARD_MAJOR_THRESHOLD")
	reward_thresholds: Dict[int, int] = Field(default_factory=dict, validation_alias="REWARD_THRESHOLDS")
	# Role-play scenes default to "every line answered"
	roleplay_major_threshold: int | None = Field(default=None, validation_alias="ROLEPLAY_MAJOR_THRESHOLD")

	# Question/answer CSV per level, e.g. https://example.com/level{level}.csv
	level_csv_url_template: str | None = Field(default=None, validation_alias="LEVEL_CSV_URL_TEMPLATE")

	feedback_language: str = Field(default="Japanese", validation_alias="FEEDBACK_LANGUAGE")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
