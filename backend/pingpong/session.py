from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .graph import REQUIRED_BOSS_HITS, GraphStore
from .rewards import RewardTier


class SessionState(BaseModel):
	"""Where the learner is in the graph. Replaced, never edited, between turns."""
	model_config = ConfigDict(frozen=True)

	current_node_id: str
	has_key: bool = False
	score: int = Field(default=0, ge=0)
	boss_hits: int = Field(default=0, ge=0, le=REQUIRED_BOSS_HITS)
	turn_index: int = Field(default=0, ge=0)

	@classmethod
	def initial(cls, graph: GraphStore) -> "SessionState":
		return cls(current_node_id=graph.start_id)


class Phase(str, Enum):
	AWAITING_CAPTURE = "awaiting_capture"
	RECOGNIZING = "recognizing"
	JUDGING = "judging"
	TRANSITIONING = "transitioning"
	RESPONDING = "responding"
	COMPLETED = "completed"


class Turn(BaseModel):
	model_config = ConfigDict(frozen=True)

	speaker: Literal["system", "learner"]
	text: str
	sequence: int


class TurnFeedback(BaseModel):
	"""Shape requested from the text generator for every turn."""
	feedback: str = ""
	speech: str = ""
	tips: List[str] = Field(default_factory=list)


class Outcome(str, Enum):
	ADVANCED = "advanced"
	RETRY = "retry"
	FAILED = "failed"
	SKIPPED = "skipped"
	COMPLETED = "completed"


class TurnResult(BaseModel):
	outcome: Outcome
	state: SessionState
	recognized: str = ""
	expected: str = ""
	correct: bool = False
	redirected: bool = False
	feedback: Optional[TurnFeedback] = None
	used_fallback: bool = False
	speech_text: Optional[str] = None
	speech_audio: Optional[bytes] = None
	next_prompt: Optional[str] = None
	reward: Optional[RewardTier] = None
	error: Optional[str] = None
