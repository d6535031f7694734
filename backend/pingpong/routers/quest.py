from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..collaborators import Collaborators
from ..levels import LEVELS, Catalog
from .session import StartResponse, get_catalog, get_collaborators, start_session

router = APIRouter(prefix="/quest", tags=["quest"])


class StartRequest(BaseModel):
	level: int = Field(default=1, description="Quest level 1–6")


@router.get("/levels")
async def list_levels(catalog: Catalog = Depends(get_catalog)):
	return {
		"levels": [
			{"level": level, "major_threshold": d.rewards.major_threshold}
			for level, d in sorted(catalog.quests.items())
		]
	}


@router.post("/start", response_model=StartResponse)
async def start(
	req: StartRequest,
	catalog: Catalog = Depends(get_catalog),
	collaborators: Collaborators = Depends(get_collaborators),
):
	definition = catalog.quest(req.level)
	if definition is None:
		raise HTTPException(status_code=400, detail=f"level must be one of {','.join(map(str, LEVELS))}")
	return await start_session(definition, collaborators, mode="quest", context=f"PingPong English Quest, level {req.level}")
