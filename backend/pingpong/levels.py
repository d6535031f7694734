"""
Quest Levels and Role-play Scenes
=================================

Builds the graphs sessions run on and loads them once at startup.

Quest levels share one map: two forks out of the start, a treasure holding the
key, a gate, the boss and the goal. What changes per level is the question
bank (a question/answer CSV per level, or the built-in bank) and the reward
threshold. The learner answers each question "ping-pong" style: "You play
baseball?" is answered "I play baseball?".

Role-play scenes are linear scripts: the customer says a line, the learner
answers with the staff line.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import httpx
from pydantic import BaseModel

from .errors import GraphValidationError
from .graph import (
	REQUIRED_BOSS_HITS,
	BossNode,
	GateNode,
	GoalNode,
	GraphStore,
	Node,
	NormalNode,
	TreasureNode,
)
from .rewards import RewardPolicy
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

LEVELS: List[int] = [1, 2, 3, 4, 5, 6]


class QAItem(BaseModel):
	question: str
	answer: str


# Used when no CSV is configured for a level
DEFAULT_ITEMS: List[QAItem] = [
	QAItem(question="You play baseball?", answer="Yes, I play baseball."),
	QAItem(question="You like coffee?", answer="Yes, I like coffee."),
	QAItem(question="You live in Tokyo?", answer="Yes, I live in Tokyo."),
	QAItem(question="You have a dog?", answer="Yes, I have a dog."),
	QAItem(question="You speak English?", answer="Yes, I speak English."),
	QAItem(question="You want some water?", answer="Yes, I want some water."),
	QAItem(question="You walk to school?", answer="Yes, I walk to school."),
	QAItem(question="You read books?", answer="Yes, I read books."),
]


def pingpong_transform(question: str) -> str:
	"""Turn a leading "You" into "I", keeping its case ("you" -> "i")."""
	stripped = question.lstrip()
	head = stripped[:3]
	if head.lower() != "you":
		return question
	rest = stripped[3:]
	# Whole word only: "Young" stays as it is
	if rest[:1].isalnum() or rest[:1] == "_":
		return question
	return ("I" if head[0] == "Y" else "i") + rest


def parse_items_csv(text: str) -> List[QAItem]:
	"""Read question/answer pairs from CSV text.

	The header row must contain ``question`` and ``answer`` columns (any order,
	any case). Rows missing either value are skipped.
	"""
	rows = list(csv.reader(io.StringIO(text)))
	if not rows:
		return []
	header = [h.strip().lower() for h in rows[0]]
	if "question" not in header or "answer" not in header:
		raise GraphValidationError("items CSV needs 'question' and 'answer' columns")
	qi = header.index("question")
	ai = header.index("answer")
	items: List[QAItem] = []
	for row in rows[1:]:
		q = row[qi].strip() if len(row) > qi else ""
		a = row[ai].strip() if len(row) > ai else ""
		if q and a:
			items.append(QAItem(question=q, answer=a))
	return items


# ============================================================================
# QUEST MAP
# ============================================================================

# (id, role, prompt, transitions); order is the order questions are handed out
_QUEST_MAP: List[Tuple[str, str, str, Tuple[str, ...]]] = [
	("start", "normal", "Welcome! Ready?", ("fork1L", "fork1R")),
	("fork1L", "normal", "Turn left.", ("treasure",)),
	("fork1R", "normal", "Turn right.", ("gate",)),
	("treasure", "treasure", "You found a key!", ("gate",)),
	("gate", "gate", "A gate blocks the way.", ("boss",)),
	("boss", "boss", "Final Boss! 3 short Qs.", ("goal",)),
	("goal", "goal", "Clear! Take your reward!", ()),
]

_JUDGED_ROLES = {"normal": NormalNode, "gate": GateNode, "treasure": TreasureNode}


def build_quest_graph(items: Sequence[QAItem], *, name: str = "quest") -> GraphStore:
	"""Lay a question bank over the quest map.

	Each non-boss node takes the next question in map order; the boss takes the
	three after that. A short bank is stretched by repeating the last question
	before the boss, so the boss always has three.
	"""
	if len(items) < REQUIRED_BOSS_HITS:
		raise GraphValidationError(
			f"{name}: needs at least {REQUIRED_BOSS_HITS} questions for the boss, got {len(items)}"
		)
	expected = [pingpong_transform(item.question) for item in items]
	judged_count = sum(1 for _, role, _, _ in _QUEST_MAP if role in _JUDGED_ROLES)
	# Highest index a non-boss node may use; the three after it belong to the boss
	cap = len(expected) - REQUIRED_BOSS_HITS
	boss_start = min(judged_count, cap)
	nodes: List[Node] = []
	index = 0
	for node_id, role, prompt, transitions in _QUEST_MAP:
		if role in _JUDGED_ROLES:
			utterance = expected[min(index, cap)]
			nodes.append(_JUDGED_ROLES[role](id=node_id, prompt=prompt, transitions=transitions, expected_utterance=utterance))
			index += 1
		elif role == "boss":
			challenges = tuple(expected[boss_start : boss_start + REQUIRED_BOSS_HITS])
			nodes.append(BossNode(id=node_id, prompt=prompt, transitions=transitions, challenges=challenges))
		else:
			nodes.append(GoalNode(id=node_id, prompt=prompt))
	return GraphStore(nodes, start="start", name=name)


# ============================================================================
# ROLE-PLAY SCRIPTS
# ============================================================================

# (customer line, staff answer)
ROLEPLAY_SCRIPTS: Dict[str, List[Tuple[str, str]]] = {
	"menu": [
		("Hello! We would like to eat here.", "Welcome! How many?"),
		("Two people, please.", "Here is the menu."),
		("Thank you. It is hot today.", "Would you like water?"),
		("I think we have decided.", "Are you ready to order?"),
	],
	"allergy": [
		("Excuse me, I have a food allergy.", "What are you allergic to?"),
		("I am allergic to nuts. Is this curry safe?", "This dish contains nuts."),
		("Oh no. And the omelette?", "We can remove eggs."),
	],
	"payment": [
		("We would like to pay now.", "Cash or card?"),
		("Card, please.", "Please tap your card."),
		("Done. Can I have a receipt?", "Here is your receipt."),
	],
	"directions": [
		("Excuse me, where is the station?", "Go straight, then turn left."),
		("Is it far from here?", "It takes five minutes on foot."),
		("Which exit should I use?", "Use Exit A."),
	],
}


def build_roleplay_graph(scene: str, lines: Sequence[Tuple[str, str]]) -> GraphStore:
	if not lines:
		raise GraphValidationError(f"roleplay '{scene}': script is empty")
	ids = [f"line{i + 1}" for i in range(len(lines))] + ["goal"]
	nodes: List[Node] = [
		NormalNode(id=ids[i], prompt=customer, transitions=(ids[i + 1],), expected_utterance=staff)
		for i, (customer, staff) in enumerate(lines)
	]
	nodes.append(GoalNode(id="goal", prompt="Thank you! That's the end of the conversation."))
	return GraphStore(nodes, start=ids[0], name=f"roleplay:{scene}")


# ============================================================================
# CATALOG
# ============================================================================

@dataclass(frozen=True)
class LevelDefinition:
	key: str
	graph: GraphStore
	rewards: RewardPolicy


@dataclass
class Catalog:
	quests: Dict[int, LevelDefinition] = field(default_factory=dict)
	scenes: Dict[str, LevelDefinition] = field(default_factory=dict)

	def quest(self, level: int) -> Optional[LevelDefinition]:
		return self.quests.get(level)

	def scene(self, name: str) -> Optional[LevelDefinition]:
		return self.scenes.get(name)


async def fetch_level_items(level: int, config: Settings, client: httpx.AsyncClient) -> List[QAItem]:
	template = config.level_csv_url_template
	if not template:
		return list(DEFAULT_ITEMS)
	url = template.format(level=level)
	r = await client.get(url)
	r.raise_for_status()
	items = parse_items_csv(r.text)
	logger.info("Loaded %d questions for level %d from %s", len(items), level, url)
	return items


async def load_catalog(config: Optional[Settings] = None, *, client: Optional[httpx.AsyncClient] = None) -> Catalog:
	"""Build and validate every level and scene. Any error here is fatal."""
	config = config or default_settings
	own_client = client is None
	client = client or httpx.AsyncClient(timeout=config.backend_timeout_seconds)
	catalog = Catalog()
	try:
		for level in LEVELS:
			items = await fetch_level_items(level, config, client)
			graph = build_quest_graph(items, name=f"level{level}")
			threshold = config.reward_thresholds.get(level, config.reward_major_threshold)
			catalog.quests[level] = LevelDefinition(key=str(level), graph=graph, rewards=RewardPolicy(threshold))
	finally:
		if own_client:
			await client.aclose()
	for scene, lines in ROLEPLAY_SCRIPTS.items():
		graph = build_roleplay_graph(scene, lines)
		threshold = config.roleplay_major_threshold
		if threshold is None:
			threshold = len(lines)
		catalog.scenes[scene] = LevelDefinition(key=scene, graph=graph, rewards=RewardPolicy(threshold))
	logger.info("Catalog ready: %d quest levels, %d role-play scenes", len(catalog.quests), len(catalog.scenes))
	return catalog
