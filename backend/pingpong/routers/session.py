"""
Session Router
==============

Shared turn endpoints for quest and role-play sessions.

API Endpoints:
- POST /session/turn: submit one spoken (base64 audio) or typed answer
- GET /session/{session_id}: current state, phase and transcript

Sessions live in memory only. Starting a new session discards the previous
one: the app serves a single learner with one active session.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from ..collaborators import Collaborators
from ..errors import SessionCompleted, TurnInProgress
from ..levels import Catalog, LevelDefinition
from ..orchestrator import Mode, TurnOrchestrator
from ..rewards import RewardTier
from ..session import Outcome, Phase, SessionState, Turn, TurnFeedback
from ..settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/session", tags=["session"])

# Single active session, keyed by id so stale clients get a clean 404
_sessions: Dict[str, TurnOrchestrator] = {}


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_catalog(request: Request) -> Catalog:
	return request.app.state.catalog


def get_collaborators(request: Request) -> Collaborators:
	return request.app.state.collaborators


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class StartResponse(BaseModel):
	session_id: str
	mode: str
	key: str
	prompt: str
	prompt_audio_base64: Optional[str] = None
	state: SessionState


class TurnRequest(BaseModel):
	session_id: str
	# Either a transcript recognized on the client or the raw recording
	transcript: Optional[str] = None
	audio_base64: Optional[str] = None
	# Fork choice, e.g. "fork1R"; the first transition is taken otherwise
	branch: Optional[str] = None


class TurnResponse(BaseModel):
	outcome: Outcome
	finished: bool
	correct: bool
	recognized: str
	expected: str
	redirected: bool
	feedback: Optional[TurnFeedback] = None
	used_fallback: bool
	speech_text: Optional[str] = None
	speech_audio_base64: Optional[str] = None
	next_prompt: Optional[str] = None
	reward: Optional[RewardTier] = None
	error: Optional[str] = None
	state: SessionState


class SessionView(BaseModel):
	session_id: str
	mode: str
	key: str
	phase: Phase
	prompt: Optional[str] = None
	completed: bool
	reward: Optional[RewardTier] = None
	state: SessionState
	transcript: List[Turn]


def _b64(data: Optional[bytes]) -> Optional[str]:
	return base64.b64encode(data).decode("ascii") if data else None


# ============================================================================
# SESSION MANAGEMENT
# ============================================================================

async def start_session(
	definition: LevelDefinition,
	collaborators: Collaborators,
	*,
	mode: Mode,
	context: str,
) -> StartResponse:
	_sessions.clear()
	orchestrator = TurnOrchestrator(
		definition.graph,
		definition.rewards,
		collaborators=collaborators,
		mode=mode,
		context=context,
		capture_seconds=settings.capture_seconds,
		feedback_language=settings.feedback_language,
		key=definition.key,
	)
	_sessions[orchestrator.session_id] = orchestrator
	prompt, audio = await orchestrator.emit_prompt()
	logger.info("Started %s session %s on %s", mode, orchestrator.session_id, definition.graph.name)
	return StartResponse(
		session_id=orchestrator.session_id,
		mode=mode,
		key=definition.key,
		prompt=prompt,
		prompt_audio_base64=_b64(audio),
		state=orchestrator.state,
	)


def _get_session(session_id: str) -> TurnOrchestrator:
	orchestrator = _sessions.get(session_id)
	if not orchestrator:
		raise HTTPException(status_code=404, detail="Session not found or expired")
	return orchestrator


# ============================================================================
# API ENDPOINTS
# ============================================================================

@router.post("/turn", response_model=TurnResponse)
async def take_turn(req: TurnRequest):
	"""Judge one answer and advance, retry or finish the session.

	Recognition problems are not errors here: the response carries
	``outcome="failed"`` and the state is unchanged, so the learner simply
	tries again.
	"""
	orchestrator = _get_session(req.session_id)
	audio: Optional[bytes] = None
	if req.audio_base64:
		try:
			audio = base64.b64decode(req.audio_base64, validate=True)
		except (binascii.Error, ValueError):
			raise HTTPException(status_code=400, detail="audio_base64 is not valid base64")
	try:
		result = await orchestrator.submit(audio=audio, transcript=req.transcript, branch=req.branch)
	except SessionCompleted:
		raise HTTPException(status_code=409, detail="Session finished")
	except TurnInProgress:
		raise HTTPException(status_code=409, detail="A turn is already being processed")
	except ValueError as e:
		raise HTTPException(status_code=400, detail=str(e))
	return TurnResponse(
		outcome=result.outcome,
		finished=orchestrator.completed,
		correct=result.correct,
		recognized=result.recognized,
		expected=result.expected,
		redirected=result.redirected,
		feedback=result.feedback,
		used_fallback=result.used_fallback,
		speech_text=result.speech_text,
		speech_audio_base64=_b64(result.speech_audio),
		next_prompt=result.next_prompt,
		reward=result.reward,
		error=result.error,
		state=result.state,
	)


@router.get("/{session_id}", response_model=SessionView)
async def get_session(session_id: str):
	orchestrator = _get_session(session_id)
	return SessionView(
		session_id=orchestrator.session_id,
		mode=orchestrator.mode,
		key=orchestrator.key,
		phase=orchestrator.phase,
		prompt=None if orchestrator.completed else orchestrator.prompt_text(),
		completed=orchestrator.completed,
		reward=orchestrator.reward,
		state=orchestrator.state,
		transcript=list(orchestrator.transcript),
	)
