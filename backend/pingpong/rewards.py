from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RewardTier(str, Enum):
	MAJOR = "major"
	MINOR = "minor"


@dataclass(frozen=True)
class RewardPolicy:
	"""Score threshold for the reward card handed out on reaching the goal.

	Quests differ in their maximum attainable score, so each level or scene
	carries its own policy.
	"""
	major_threshold: int

	def __post_init__(self) -> None:
		if self.major_threshold < 0:
			raise ValueError("major_threshold must be >= 0")

	def resolve(self, score: int) -> RewardTier:
		return RewardTier.MAJOR if score >= self.major_threshold else RewardTier.MINOR
