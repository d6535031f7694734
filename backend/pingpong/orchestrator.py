"""
Turn Orchestrator
=================

Drives one learner through a quest or role-play graph, one turn at a time:

	prompt -> capture -> recognize -> judge -> transition -> respond

The transition rules live in :func:`step`, a pure function from
(graph, state, recognized text) to the next state. :class:`TurnOrchestrator`
sequences the external collaborators around it (recorder, recognizer, text
generator, speech synthesizer) and owns the session's state and transcript.

Judging is always local exact matching. Generated feedback is advisory text;
it never changes a transition. Anything that would stall the loop (no audio,
recognizer down, backend down, unparseable output) leaves the learner on the
same node with another try.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import List, Literal, Optional, Tuple

from .collaborators import AudioRecorder, Collaborators
from .errors import (
	BackendUnavailable,
	CaptureInProgress,
	CaptureUnavailable,
	RecognitionFailed,
	SessionCompleted,
	TurnFailure,
	TurnInProgress,
)
from .graph import BossNode, GraphStore, Node, NodeId, TreasureNode, expected_utterance_for
from .matcher import matches, normalize
from .rewards import RewardPolicy, RewardTier
from .sanitizer import GeneratedPayload, sanitize_and_parse
from .session import Outcome, Phase, SessionState, Turn, TurnFeedback, TurnResult
from .settings import settings

logger = logging.getLogger(__name__)

Mode = Literal["quest", "roleplay"]

DEFAULT_FEEDBACK = {
	True: TurnFeedback(feedback="Well done!", speech="Great job!"),
	False: TurnFeedback(feedback="Almost. Listen and try once more.", speech="Try again!"),
}


# ============================================================================
# TRANSITION RULES
# ============================================================================

@dataclass(frozen=True)
class StepResult:
	state: SessionState
	expected: str
	judged: bool
	correct: bool
	redirected: bool = False


def _choose_transition(node: Node, branch: Optional[NodeId]) -> NodeId:
	if branch is None:
		return node.transitions[0]
	if branch not in node.transitions:
		raise ValueError(f"'{branch}' is not a transition of node '{node.id}'")
	return branch


def _apply_gate(graph: GraphStore, target: NodeId, has_key: bool) -> Tuple[NodeId, bool]:
	if isinstance(graph.node_for(target), BossNode) and not has_key:
		return graph.key_node_for(target), True
	return target, False


def step(
	graph: GraphStore,
	state: SessionState,
	recognized: str,
	*,
	branch: Optional[NodeId] = None,
) -> StepResult:
	"""Apply one judged (or pass-through) turn to ``state``.

	Args:
		graph: Validated graph the session runs on
		state: State at the start of the turn
		recognized: Recognized learner utterance; empty counts as a miss
		branch: Optional transition to take when the node forks; the first
			transition is used otherwise

	Returns:
		StepResult with the new state and the judgement that produced it

	Raises:
		SessionCompleted: If the state is already on the goal
		ValueError: If ``branch`` is not one of the node's transitions
	"""
	if state.current_node_id == graph.goal_id:
		raise SessionCompleted("Session already reached the goal")
	node = graph.node_for(state.current_node_id)
	expected = expected_utterance_for(node, state.boss_hits)

	if not normalize(expected):
		# Nothing to answer here: move on without scoring
		has_key = state.has_key or isinstance(node, TreasureNode)
		target, redirected = _apply_gate(graph, _choose_transition(node, branch), has_key)
		new_state = state.model_copy(update={"current_node_id": target, "has_key": has_key})
		return StepResult(new_state, expected="", judged=False, correct=False, redirected=redirected)

	turn_index = state.turn_index + 1
	if not matches(recognized, expected):
		return StepResult(state.model_copy(update={"turn_index": turn_index}), expected, judged=True, correct=False)

	score = state.score + 1
	has_key = state.has_key
	boss_hits = state.boss_hits
	if isinstance(node, BossNode):
		boss_hits += 1
		target = graph.goal_id if boss_hits >= graph.required_boss_hits else node.id
	else:
		has_key = has_key or isinstance(node, TreasureNode)
		target = _choose_transition(node, branch)
	target, redirected = _apply_gate(graph, target, has_key)
	new_state = state.model_copy(
		update={
			"current_node_id": target,
			"has_key": has_key,
			"score": score,
			"boss_hits": boss_hits,
			"turn_index": turn_index,
		}
	)
	return StepResult(new_state, expected, judged=True, correct=True, redirected=redirected)


# ============================================================================
# FEEDBACK PROMPTS
# ============================================================================

def _build_feedback_prompt(
	mode: Mode,
	context: str,
	expected: str,
	recognized: str,
	correct: bool,
	state: SessionState,
	language: str,
) -> str:
	verdict = "CORRECT" if correct else "NOT correct"
	if mode == "roleplay":
		return f"""
You are an English conversation partner for service-industry staff practising a role-play.
Scene: {context}
The staff member was expected to say: "{expected}"
The staff member said: "{recognized or '-'}"
An exact comparison judged this answer {verdict}. Your feedback must agree with that verdict.

Return STRICT JSON only, no markdown:
{{
  "feedback": "one short sentence in {language}",
  "speech": "the customer's short natural English reply (<= 15 words)",
  "tips": ["2-3 short tips in {language}"]
}}
""".strip()
	return f"""
You are a friendly English game master.
Write short, encouraging feedback in {language}, and a short English line for text-to-speech (<= 8 words).
An exact comparison judged the learner's answer {verdict}. Your feedback must agree with that verdict.

Quest: {context}
Quiz: Say: {expected}
User: {recognized or '-'}
LocalOK: {str(correct).lower()}
State: {json.dumps(state.model_dump())}

Return STRICT JSON only, no markdown, with keys: feedback (string), speech (string).
""".strip()


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class TurnOrchestrator:
	"""Runs one session over a graph.

	The session state is replaced only once per turn, after the response has
	been prepared; a failed turn leaves it untouched. Only one capture and one
	turn may be in flight at a time; a second one is rejected, not queued.
	"""

	def __init__(
		self,
		graph: GraphStore,
		rewards: RewardPolicy,
		*,
		collaborators: Optional[Collaborators] = None,
		mode: Mode = "quest",
		context: str = "",
		capture_seconds: Optional[float] = None,
		feedback_language: Optional[str] = None,
		session_id: Optional[str] = None,
		key: str = "",
	) -> None:
		self.graph = graph
		self.rewards = rewards
		c = collaborators or Collaborators()
		self.transcriber = c.transcriber
		self.generator = c.generator
		self.synthesizer = c.synthesizer
		self.mode = mode
		self.context = context or graph.name
		self.capture_seconds = settings.capture_seconds if capture_seconds is None else capture_seconds
		self.feedback_language = feedback_language or settings.feedback_language
		self.session_id = session_id or uuid.uuid4().hex
		self.key = key or graph.name
		self._capturing = False
		self._turn_in_flight = False
		self._stop_capture = asyncio.Event()
		self.restart()

	def restart(self) -> None:
		self.state = SessionState.initial(self.graph)
		self.transcript: List[Turn] = []
		self.phase = Phase.AWAITING_CAPTURE
		self.reward: Optional[RewardTier] = None

	# ---- views ----

	@property
	def completed(self) -> bool:
		return self.state.current_node_id == self.graph.goal_id

	@property
	def current_node(self) -> Node:
		return self.graph.node_for(self.state.current_node_id)

	def expected_utterance(self) -> str:
		return expected_utterance_for(self.current_node, self.state.boss_hits)

	def needs_answer(self) -> bool:
		return not self.completed and bool(normalize(self.expected_utterance()))

	def prompt_text(self, state: Optional[SessionState] = None) -> str:
		state = state or self.state
		node = self.graph.node_for(state.current_node_id)
		expected = expected_utterance_for(node, state.boss_hits)
		if normalize(expected):
			return f"{node.prompt} Say: {expected}"
		return node.prompt

	# ---- pipeline ----

	async def emit_prompt(self) -> Tuple[str, Optional[bytes]]:
		text = self.prompt_text()
		return text, await self._respond(text)

	async def capture(self, recorder: AudioRecorder) -> bytes:
		"""Record one answer, force-stopping after ``capture_seconds``."""
		if self.completed:
			raise SessionCompleted("Session already reached the goal")
		if self._capturing:
			raise CaptureInProgress("A recording is already in progress")
		self._capturing = True
		self._stop_capture = asyncio.Event()
		self.phase = Phase.AWAITING_CAPTURE
		recording = False
		try:
			try:
				await recorder.start()
			except Exception as e:
				raise CaptureUnavailable(f"Could not start recording: {e}") from e
			recording = True
			try:
				await asyncio.wait_for(self._stop_capture.wait(), timeout=self.capture_seconds)
			except asyncio.TimeoutError:
				pass
			recording = False
			try:
				return await recorder.stop()
			except Exception as e:
				raise CaptureUnavailable(f"Could not stop recording: {e}") from e
		finally:
			self._capturing = False
			if recording:
				# Cancelled while recording: the device must not stay open
				await self._release(recorder)

	async def _release(self, recorder: AudioRecorder) -> None:
		try:
			await recorder.stop()
		except Exception as e:
			logger.warning("Could not stop recorder for session %s: %s", self.session_id, e)

	def stop_capture_early(self) -> None:
		if self._capturing:
			self._stop_capture.set()

	async def submit(
		self,
		audio: Optional[bytes] = None,
		transcript: Optional[str] = None,
		*,
		branch: Optional[NodeId] = None,
	) -> TurnResult:
		"""Judge one answer and move the session on.

		Pass either the captured ``audio`` or an already recognized
		``transcript``. Nodes without an expected utterance need neither.
		"""
		if self.completed:
			raise SessionCompleted("Session already reached the goal")
		if self._turn_in_flight:
			raise TurnInProgress("A turn is already being processed")
		if branch is not None:
			_choose_transition(self.current_node, branch)
		self._turn_in_flight = True
		try:
			if not self.needs_answer():
				return await self._advance("", branch)
			self.phase = Phase.RECOGNIZING
			try:
				recognized = await self._recognize(audio, transcript)
			except TurnFailure as e:
				return await self._fail(e)
			self._log("learner", recognized)
			return await self._advance(recognized, branch)
		finally:
			self._turn_in_flight = False

	async def advance_unjudged(self, *, branch: Optional[NodeId] = None) -> TurnResult:
		if self.needs_answer():
			raise ValueError(f"Node '{self.state.current_node_id}' expects an answer")
		return await self.submit(branch=branch)

	async def run_turn(self, recorder: AudioRecorder, *, branch: Optional[NodeId] = None) -> TurnResult:
		if not self.needs_answer():
			return await self.submit(branch=branch)
		try:
			audio = await self.capture(recorder)
		except CaptureUnavailable as e:
			return await self._fail(e)
		return await self.submit(audio=audio, branch=branch)

	async def run(self, recorder: AudioRecorder, *, max_turns: Optional[int] = None) -> List[TurnResult]:
		"""Play the whole session from its first prompt until the goal."""
		results: List[TurnResult] = []
		await self.emit_prompt()
		while not self.completed and (max_turns is None or len(results) < max_turns):
			results.append(await self.run_turn(recorder))
		return results

	# ---- internals ----

	def _log(self, speaker: Literal["system", "learner"], text: str) -> None:
		self.transcript.append(Turn(speaker=speaker, text=text, sequence=len(self.transcript)))

	async def _recognize(self, audio: Optional[bytes], transcript: Optional[str]) -> str:
		if transcript is not None:
			return transcript.strip()
		if audio is None:
			raise CaptureUnavailable("No audio was captured")
		if self.transcriber is None:
			raise RecognitionFailed("No speech recognizer is configured")
		return (await self.transcriber.transcribe(audio)).strip()

	async def _speak(self, text: str) -> Optional[bytes]:
		if self.synthesizer is None or not text:
			return None
		try:
			return await self.synthesizer.synthesize(text)
		except BackendUnavailable as e:
			logger.warning("Speech synthesis unavailable, continuing text-only: %s", e)
			return None
		except Exception as e:
			logger.warning("Speech synthesis failed, continuing text-only: %s", e, exc_info=True)
			return None

	async def _respond(self, text: str) -> Optional[bytes]:
		self._log("system", text)
		return await self._speak(text)

	async def _generate_feedback(
		self, recognized: str, expected: str, correct: bool, state: SessionState
	) -> GeneratedPayload[TurnFeedback]:
		default = DEFAULT_FEEDBACK[correct]
		if self.generator is None:
			return GeneratedPayload(raw="", parsed=None, value=default.model_copy(deep=True), used_fallback=True)
		prompt = _build_feedback_prompt(
			self.mode, self.context, expected, recognized, correct, state, self.feedback_language
		)
		try:
			raw = await self.generator.generate(prompt)
		except BackendUnavailable as e:
			logger.warning("Feedback generation unavailable, using default: %s", e)
			return GeneratedPayload(raw="", parsed=None, value=default.model_copy(deep=True), used_fallback=True)
		payload = sanitize_and_parse(raw, default)
		value = payload.value
		# Blank strings are as useless as missing ones
		if not value.feedback.strip() or not value.speech.strip():
			value = value.model_copy(
				deep=True,
				update={
					"feedback": value.feedback.strip() or default.feedback,
					"speech": value.speech.strip() or default.speech,
				}
			)
			payload = GeneratedPayload(raw=payload.raw, parsed=payload.parsed, value=value, used_fallback=payload.used_fallback)
		return payload

	async def _advance(self, recognized: str, branch: Optional[NodeId]) -> TurnResult:
		before = self.state
		self.phase = Phase.JUDGING
		result = step(self.graph, before, recognized, branch=branch)
		self.phase = Phase.TRANSITIONING
		if result.redirected:
			logger.info("Session %s has no key; sent to '%s' instead of the boss", self.session_id, result.state.current_node_id)

		self.phase = Phase.RESPONDING
		payload: Optional[GeneratedPayload[TurnFeedback]] = None
		if result.judged:
			payload = await self._generate_feedback(recognized, result.expected, result.correct, before)
		finished = result.state.current_node_id == self.graph.goal_id
		next_prompt = self.prompt_text(result.state)
		parts = [payload.value.speech] if payload is not None else []
		parts.append(next_prompt)
		speech_text = " ".join(p.strip() for p in parts if p.strip())
		audio = await self._respond(speech_text)

		reward = self.rewards.resolve(result.state.score) if finished else None
		if not result.judged:
			outcome = Outcome.SKIPPED
		elif not result.correct:
			outcome = Outcome.RETRY
		else:
			outcome = Outcome.ADVANCED
		if finished:
			outcome = Outcome.COMPLETED

		# End of turn: the only place the session state changes
		self.state = result.state
		self.reward = reward
		self.phase = Phase.COMPLETED if finished else Phase.AWAITING_CAPTURE
		if finished:
			logger.info("Session %s completed with score %d (%s reward)", self.session_id, self.state.score, reward.value)
		return TurnResult(
			outcome=outcome,
			state=self.state,
			recognized=recognized,
			expected=result.expected,
			correct=result.correct,
			redirected=result.redirected,
			feedback=payload.value if payload is not None else None,
			used_fallback=payload.used_fallback if payload is not None else False,
			speech_text=speech_text,
			speech_audio=audio,
			next_prompt=None if finished else next_prompt,
			reward=reward,
		)

	async def _fail(self, error: TurnFailure) -> TurnResult:
		logger.warning("Turn failed in session %s: %s", self.session_id, error)
		self.phase = Phase.AWAITING_CAPTURE
		prompt = self.prompt_text()
		audio = await self._respond(prompt)
		return TurnResult(
			outcome=Outcome.FAILED,
			state=self.state,
			expected=self.expected_utterance(),
			error=str(error),
			speech_text=prompt,
			speech_audio=audio,
			next_prompt=prompt,
		)
