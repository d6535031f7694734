from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Optional

from google.cloud import speech_v1p1beta1 as speech
from google.api_core.exceptions import GoogleAPIError

from .errors import RecognitionFailed
from .settings import settings

logger = logging.getLogger(__name__)


def dedupe_transcript(text: str) -> str:
	"""Collapse repeated 1–3 word phrases and extra whitespace in a transcript.

	Speech recognition often repeats phrases where interim and final results
	overlap ("I play I play baseball"), which would make an exact match fail.

	Args:
		text: Raw transcript text that may contain repeated phrases

	Returns:
		Cleaned transcript with duplicates removed and normalized whitespace
	"""
	s = re.sub(r"\s+", " ", text or "").strip()
	if not s:
		return s
	patterns = [
		(r"\b(\w+\s+\w+\s+\w+)(?:\s+\1\b)+", r"\1"),
		(r"\b(\w+\s+\w+)(?:\s+\1\b)+", r"\1"),
		(r"\b(\w+)(?:\s+\1\b)+", r"\1"),
	]
	for pat, rep in patterns:
		s = re.sub(pat, rep, s, flags=re.IGNORECASE)
	return re.sub(r"\s+", " ", s).strip()


class GoogleSpeechTranscriber:
	"""Transcribes short learner recordings with Google Cloud Speech-to-Text.

	The client is created lazily so that a missing credential only fails the
	turn that needs it, not application startup.
	"""

	def __init__(
		self,
		*,
		language_code: Optional[str] = None,
		timeout: Optional[float] = None,
		client: Any = None,
	) -> None:
		self.language_code = language_code or settings.speech_language
		self.timeout = timeout if timeout is not None else settings.speech_timeout_seconds
		self._client = client

	def _get_client(self) -> Any:
		if self._client is None:
			try:
				self._client = speech.SpeechClient()
			except Exception as e:
				raise RecognitionFailed(f"Speech recognition unavailable: {e}") from e
		return self._client

	def _recognize(self, audio_content: bytes) -> str:
		client = self._get_client()
		audio = speech.RecognitionAudio(content=audio_content)
		config = speech.RecognitionConfig(
			language_code=self.language_code,
			model="default",
			profanity_filter=True,
			enable_automatic_punctuation=True,
			use_enhanced=True,
		)
		try:
			response = client.recognize(config=config, audio=audio, timeout=self.timeout)
		except GoogleAPIError as e:
			raise RecognitionFailed(f"Speech recognition API error: {e}") from e
		except Exception as e:
			raise RecognitionFailed(f"Speech recognition failed: {e}") from e
		parts = [r.alternatives[0].transcript for r in response.results if r.alternatives]
		return " ".join(p.strip() for p in parts if p and p.strip())

	async def transcribe(self, audio: bytes) -> str:
		if not audio:
			# Nothing was recorded: the learner simply said nothing
			return ""
		# The Google client is blocking; keep the event loop free while it runs
		text = await asyncio.to_thread(self._recognize, audio)
		cleaned = dedupe_transcript(text)
		logger.debug("transcribed %d bytes -> %r", len(audio), cleaned)
		return cleaned
