"""
Quest Graph
===========

Static definition of a quest or role-play: nodes, their prompts and expected
utterances, and the edges between them. A :class:`GraphStore` is validated
once when it is built and is read-only afterwards, so one instance can be
shared by every session on the same level.

Node roles:
- normal / gate / treasure: a single expected utterance (or none, in which case
  the node is passed through without judging). Leaving a treasure grants the key.
- boss: an ordered list of REQUIRED_BOSS_HITS challenge utterances; leads only
  to the goal.
- goal: terminal, exactly one per graph.
"""

from __future__ import annotations

from collections import deque
from typing import Annotated, Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import GraphValidationError, UnknownNodeError

REQUIRED_BOSS_HITS = 3

NodeId = str


class _NodeBase(BaseModel):
	model_config = ConfigDict(frozen=True)

	id: NodeId
	prompt: str
	transitions: Tuple[NodeId, ...] = ()


class _JudgedNode(_NodeBase):
	expected_utterance: Optional[str] = None


class NormalNode(_JudgedNode):
	role: Literal["normal"] = "normal"


class GateNode(_JudgedNode):
	role: Literal["gate"] = "gate"


class TreasureNode(_JudgedNode):
	role: Literal["treasure"] = "treasure"


class BossNode(_NodeBase):
	role: Literal["boss"] = "boss"
	challenges: Tuple[str, ...]


class GoalNode(_NodeBase):
	role: Literal["goal"] = "goal"


Node = Annotated[
	Union[NormalNode, GateNode, TreasureNode, BossNode, GoalNode],
	Field(discriminator="role"),
]

_NODE_LIST = TypeAdapter(List[Node])


class GraphStore:
	"""Validated, immutable node graph for one quest level or role-play scene."""

	def __init__(
		self,
		nodes: Iterable[Node],
		*,
		start: NodeId = "start",
		name: str = "",
		required_boss_hits: int = REQUIRED_BOSS_HITS,
	) -> None:
		self.name = name
		self.start_id = start
		self.required_boss_hits = required_boss_hits
		self._nodes: Dict[NodeId, Node] = {}
		for node in nodes:
			if node.id in self._nodes:
				raise GraphValidationError(f"{self._label()}: duplicate node id '{node.id}'")
			self._nodes[node.id] = node
		self.goal_id = self._validate_structure()
		self._key_nodes = self._resolve_key_nodes()
		self._validate_reachability()

	@classmethod
	def from_dicts(cls, data: Iterable[Mapping[str, Any]], **kwargs: Any) -> "GraphStore":
		try:
			nodes = _NODE_LIST.validate_python(list(data))
		except ValidationError as exc:
			name = kwargs.get("name") or "graph"
			raise GraphValidationError(f"{name}: invalid node definition ({exc.error_count()} error(s)): {exc}") from exc
		return cls(nodes, **kwargs)

	@property
	def nodes(self) -> Tuple[Node, ...]:
		return tuple(self._nodes.values())

	def node_for(self, node_id: NodeId) -> Node:
		try:
			return self._nodes[node_id]
		except KeyError:
			raise UnknownNodeError(node_id, self.name) from None

	def key_node_for(self, boss_id: NodeId) -> NodeId:
		"""Treasure node a keyless learner is sent to instead of this boss."""
		try:
			return self._key_nodes[boss_id]
		except KeyError:
			raise UnknownNodeError(boss_id, self.name) from None

	def __contains__(self, node_id: object) -> bool:
		return node_id in self._nodes

	def __repr__(self) -> str:
		return f"GraphStore(name={self.name!r}, nodes={len(self._nodes)})"

	# ---- validation ----

	def _label(self) -> str:
		return f"graph '{self.name}'" if self.name else "graph"

	def _validate_structure(self) -> NodeId:
		if self.start_id not in self._nodes:
			raise UnknownNodeError(self.start_id, self.name)
		if isinstance(self._nodes[self.start_id], BossNode):
			raise GraphValidationError(f"{self._label()}: start node cannot be a boss")
		goals = [n.id for n in self._nodes.values() if isinstance(n, GoalNode)]
		if len(goals) != 1:
			raise GraphValidationError(f"{self._label()}: expected exactly one goal node, found {len(goals)}")
		goal_id = goals[0]
		for node in self._nodes.values():
			for target in node.transitions:
				if target not in self._nodes:
					raise UnknownNodeError(target, self.name)
				if target == node.id:
					raise GraphValidationError(f"{self._label()}: node '{node.id}' transitions to itself")
			if isinstance(node, GoalNode):
				if node.transitions:
					raise GraphValidationError(f"{self._label()}: goal node '{node.id}' has outgoing transitions")
				continue
			if not node.transitions:
				raise GraphValidationError(f"{self._label()}: node '{node.id}' has no transitions")
			if isinstance(node, BossNode):
				if any(t != goal_id for t in node.transitions):
					raise GraphValidationError(f"{self._label()}: boss '{node.id}' may only lead to the goal")
				if len(node.challenges) != self.required_boss_hits:
					raise GraphValidationError(
						f"{self._label()}: boss '{node.id}' needs {self.required_boss_hits} challenges, has {len(node.challenges)}"
					)
				if any(not c.strip() for c in node.challenges):
					raise GraphValidationError(f"{self._label()}: boss '{node.id}' has a blank challenge")
		return goal_id

	def _resolve_key_nodes(self) -> Dict[NodeId, NodeId]:
		predecessors: Dict[NodeId, List[NodeId]] = {node_id: [] for node_id in self._nodes}
		for node in self._nodes.values():
			for target in node.transitions:
				predecessors[target].append(node.id)
		keys: Dict[NodeId, NodeId] = {}
		for boss in (n for n in self._nodes.values() if isinstance(n, BossNode)):
			# Breadth-first over reversed edges: the first treasure found is the nearest one
			seen = {boss.id}
			queue = deque([boss.id])
			while queue and boss.id not in keys:
				current = queue.popleft()
				for prev in predecessors[current]:
					if prev in seen:
						continue
					if isinstance(self._nodes[prev], TreasureNode):
						keys[boss.id] = prev
						break
					seen.add(prev)
					queue.append(prev)
			if boss.id not in keys:
				raise GraphValidationError(f"{self._label()}: boss '{boss.id}' has no treasure node leading to it")
		return keys

	def _validate_reachability(self) -> None:
		seen = {self.start_id}
		queue = deque([self.start_id])
		while queue:
			for target in self._nodes[queue.popleft()].transitions:
				if target not in seen:
					seen.add(target)
					queue.append(target)
		if self.goal_id not in seen:
			raise GraphValidationError(f"{self._label()}: goal '{self.goal_id}' is not reachable from '{self.start_id}'")


def expected_utterance_for(node: Node, boss_hits: int = 0) -> str:
	"""Utterance the learner must say on ``node``.

	Boss challenges are picked by the number of hits already landed, so the
	sequence is fixed and never repeats.
	"""
	if isinstance(node, BossNode):
		return node.challenges[min(boss_hits, len(node.challenges) - 1)]
	if isinstance(node, GoalNode):
		return ""
	return node.expected_utterance or ""
