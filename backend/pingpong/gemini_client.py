from __future__ import annotations
import base64
import io
import logging
import wave
import httpx
from typing import Any, Dict, Optional
from .errors import BackendUnavailable
from .settings import settings

logger = logging.getLogger(__name__)

# Gemini TTS returns raw 16-bit mono PCM at 24 kHz
_TTS_SAMPLE_RATE = 24000


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		model: Optional[str] = None,
		tts_model: Optional[str] = None,
		voice: Optional[str] = None,
		http_client: Optional[httpx.AsyncClient] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.tts_model = tts_model or settings.gemini_tts_model
		self.voice = voice or settings.gemini_tts_voice
		self.provider = settings.gemini_provider
		# AI Studio takes the key as a query parameter, Vertex as a header
		self._auth_in_query = self.provider != "vertex"
		self._client = http_client or httpx.AsyncClient(timeout=settings.backend_timeout_seconds)

	def _endpoint(self, model: str) -> str:
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			return (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{model}:generateContent"
			)
		return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

	async def generate(self, prompt: str) -> str:
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		data = await self._post(self.model, payload)
		try:
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (KeyError, IndexError, TypeError) as err:
			raise BackendUnavailable(f"Unexpected Gemini response: {str(data)[:200]}") from err

	async def synthesize(self, text: str) -> bytes:
		payload: Dict[str, Any] = {
			"contents": [{"parts": [{"text": text}]}],
			"generationConfig": {
				"responseModalities": ["AUDIO"],
				"speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": self.voice}}},
			},
		}
		data = await self._post(self.tts_model, payload)
		try:
			encoded = data["candidates"][0]["content"]["parts"][0]["inlineData"]["data"]
			pcm = base64.b64decode(encoded)
		except (KeyError, IndexError, TypeError, ValueError) as err:
			raise BackendUnavailable("Gemini TTS response carried no audio") from err
		return _pcm_to_wav(pcm)

	async def _post(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		try:
			r = await self._client.post(self._endpoint(model), params=params, headers=headers, json=payload)
			r.raise_for_status()
			return r.json()
		except httpx.HTTPStatusError as http_err:
			logger.warning("Gemini %s returned HTTP %s", model, http_err.response.status_code)
			raise BackendUnavailable(f"Gemini returned HTTP {http_err.response.status_code}") from http_err
		except httpx.RequestError as net_err:
			logger.warning("Gemini %s request failed: %s", model, net_err)
			raise BackendUnavailable(f"Gemini request failed: {net_err}") from net_err
		except ValueError as err:
			raise BackendUnavailable("Gemini returned a non-JSON body") from err

	async def aclose(self) -> None:
		await self._client.aclose()


def _pcm_to_wav(pcm: bytes) -> bytes:
	buf = io.BytesIO()
	with wave.open(buf, "wb") as wav:
		wav.setnchannels(1)
		wav.setsampwidth(2)
		wav.setframerate(_TTS_SAMPLE_RATE)
		wav.writeframes(pcm)
	return buf.getvalue()
