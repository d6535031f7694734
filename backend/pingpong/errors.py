from __future__ import annotations


class QuestError(Exception):
	"""Base class for every error raised by the quest engine."""


# ---- Graph configuration (fatal at load time) ----

class GraphConfigurationError(QuestError):
	pass


class UnknownNodeError(GraphConfigurationError, KeyError):
	def __init__(self, node_id: str, graph: str = "") -> None:
		self.node_id = node_id
		self.graph = graph
		where = f" in graph '{graph}'" if graph else ""
		super().__init__(f"Unknown node '{node_id}'{where}")

	def __str__(self) -> str:
		return self.args[0]


class GraphValidationError(GraphConfigurationError):
	pass


# ---- Recoverable turn failures ----

class TurnFailure(QuestError):
	"""A turn could not be attempted; the session state is left untouched."""


class CaptureUnavailable(TurnFailure):
	pass


class RecognitionFailed(TurnFailure):
	pass


# ---- Rejected operations ----

class CaptureInProgress(QuestError):
	pass


class TurnInProgress(QuestError):
	pass


class SessionCompleted(QuestError):
	pass


# ---- Generative backend ----

class MalformedResponse(QuestError):
	pass


class BackendUnavailable(QuestError):
	pass
