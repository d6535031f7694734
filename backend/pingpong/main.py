import logging

from fastapi import FastAPI

from .collaborators import build_collaborators
from .levels import load_catalog
from .settings import settings
from .routers import quest
from .routers import roleplay
from .routers import session

logger = logging.getLogger(__name__)

app = FastAPI(title="PingPong Quest API")
app.include_router(quest.router)
app.include_router(roleplay.router)
app.include_router(session.router)


@app.get("/info")
def root():
	return {"status": "ok", "gemini_configured": bool(settings.gemini_api_key)}


@app.on_event("startup")
async def startup_event():
	logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
	# A broken level or scene graph must stop the server here, not mid-session
	app.state.catalog = await load_catalog()
	app.state.collaborators = build_collaborators()
	logger.info("PingPong Quest ready")


@app.on_event("shutdown")
async def shutdown_event():
	collaborators = getattr(app.state, "collaborators", None)
	if collaborators is not None:
		await collaborators.aclose()
