"""Shared fixtures: small graphs and fake collaborators, no network."""

from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from pingpong.collaborators import Collaborators
from pingpong.errors import BackendUnavailable, RecognitionFailed
from pingpong.graph import GraphStore

# start -> gate; the gate leads to the boss, which needs the treasure's key
SMALL_QUEST = [
	{"id": "start", "role": "normal", "prompt": "Hello!", "transitions": ["gate"], "expected_utterance": "I play baseball"},
	{"id": "treasure", "role": "treasure", "prompt": "A chest!", "transitions": ["gate"], "expected_utterance": "I have a key"},
	{"id": "gate", "role": "gate", "prompt": "A gate.", "transitions": ["boss"], "expected_utterance": "Open the gate"},
	{
		"id": "boss",
		"role": "boss",
		"prompt": "Boss!",
		"transitions": ["goal"],
		"challenges": ["I like coffee", "I live in Tokyo", "I read books"],
	},
	{"id": "goal", "role": "goal", "prompt": "Clear!"},
]


@pytest.fixture
def small_graph() -> GraphStore:
	return GraphStore.from_dicts(SMALL_QUEST, name="small")


class FakeTranscriber:
	def __init__(self, texts: Optional[List[str]] = None, *, fail: bool = False) -> None:
		self.texts = list(texts or [])
		self.fail = fail
		self.calls = 0

	async def transcribe(self, audio: bytes) -> str:
		self.calls += 1
		if self.fail:
			raise RecognitionFailed("recognizer offline")
		return self.texts.pop(0) if self.texts else ""


class FakeGenerator:
	def __init__(self, replies: Optional[List[str]] = None, *, fail: bool = False) -> None:
		self.replies = list(replies or [])
		self.fail = fail
		self.prompts: List[str] = []

	async def generate(self, prompt: str) -> str:
		self.prompts.append(prompt)
		if self.fail:
			raise BackendUnavailable("HTTP 503")
		return self.replies.pop(0) if self.replies else '{"feedback": "ok", "speech": "Nice!"}'


class FakeSynthesizer:
	def __init__(self, *, fail: bool = False) -> None:
		self.fail = fail
		self.texts: List[str] = []

	async def synthesize(self, text: str) -> bytes:
		self.texts.append(text)
		if self.fail:
			raise BackendUnavailable("TTS down")
		return b"RIFF" + text.encode()


class FakeRecorder:
	def __init__(self, audio: bytes = b"pcm", *, fail_start: bool = False) -> None:
		self.audio = audio
		self.fail_start = fail_start
		self.started = 0
		self.stopped = 0

	async def start(self) -> None:
		if self.fail_start:
			raise OSError("no microphone")
		self.started += 1

	async def stop(self) -> bytes:
		self.stopped += 1
		return self.audio


class ScriptedRecorder(FakeRecorder):
	"""Returns the next utterance as "audio"; pair with EchoTranscriber."""

	def __init__(self, utterances: List[str]) -> None:
		super().__init__()
		self.utterances = list(utterances)

	async def stop(self) -> bytes:
		self.stopped += 1
		return self.utterances.pop(0).encode() if self.utterances else b""


class EchoTranscriber:
	async def transcribe(self, audio: bytes) -> str:
		await asyncio.sleep(0)
		return audio.decode()


@pytest.fixture
def collaborators() -> Collaborators:
	return Collaborators(transcriber=FakeTranscriber(), generator=FakeGenerator(), synthesizer=FakeSynthesizer())
