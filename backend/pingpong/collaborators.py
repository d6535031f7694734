"""External capabilities the turn orchestrator depends on.

The orchestrator only sees these protocols; concrete implementations talk to
Google Speech-to-Text and Gemini. Any of them may be missing, in which case
the orchestrator falls back to text-only, locally judged turns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .gemini_client import GeminiClient
from .settings import Settings, settings as default_settings
from .speech_client import GoogleSpeechTranscriber

logger = logging.getLogger(__name__)


class Transcriber(Protocol):
	async def transcribe(self, audio: bytes) -> str: ...


class TextGenerator(Protocol):
	async def generate(self, prompt: str) -> str: ...


class SpeechSynthesizer(Protocol):
	async def synthesize(self, text: str) -> bytes: ...


class AudioRecorder(Protocol):
	"""Microphone capture owned by the embedding application."""

	async def start(self) -> None: ...

	async def stop(self) -> bytes: ...


@dataclass
class Collaborators:
	transcriber: Optional[Transcriber] = None
	generator: Optional[TextGenerator] = None
	synthesizer: Optional[SpeechSynthesizer] = None
	_gemini: Optional[GeminiClient] = None

	async def aclose(self) -> None:
		if self._gemini is not None:
			await self._gemini.aclose()


def build_collaborators(config: Optional[Settings] = None) -> Collaborators:
	config = config or default_settings
	transcriber = GoogleSpeechTranscriber(
		language_code=config.speech_language,
		timeout=config.speech_timeout_seconds,
	)
	if not config.gemini_api_key:
		logger.warning("GEMINI_API_KEY is not configured; feedback will use built-in defaults, no speech output")
		return Collaborators(transcriber=transcriber)
	gemini = GeminiClient(
		config.gemini_api_key,
		model=config.gemini_model,
		tts_model=config.gemini_tts_model,
		voice=config.gemini_tts_voice,
	)
	return Collaborators(transcriber=transcriber, generator=gemini, synthesizer=gemini, _gemini=gemini)
