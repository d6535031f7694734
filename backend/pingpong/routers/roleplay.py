from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..collaborators import Collaborators
from ..levels import Catalog
from .session import StartResponse, get_catalog, get_collaborators, start_session

router = APIRouter(prefix="/roleplay", tags=["roleplay"])


class StartRequest(BaseModel):
	scene: str = "menu"


@router.get("/scenes")
async def list_scenes(catalog: Catalog = Depends(get_catalog)):
	return {"scenes": sorted(catalog.scenes)}


@router.post("/start", response_model=StartResponse)
async def start(
	req: StartRequest,
	catalog: Catalog = Depends(get_catalog),
	collaborators: Collaborators = Depends(get_collaborators),
):
	scene = (req.scene or "").strip().lower()
	definition = catalog.scene(scene)
	if definition is None:
		raise HTTPException(status_code=400, detail=f"scene must be one of {','.join(sorted(catalog.scenes))}")
	return await start_session(definition, collaborators, mode="roleplay", context=scene)
