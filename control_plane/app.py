"""
FastAPI application for the agent Control Plane.
"""
from fastapi import FastAPI

from observability.event_store import event_store
from voice_agent.config import is_openai_configured
from .config import is_livekit_configured
from .control_api import router as agents_router

app = FastAPI(title="Voice Agent Control Plane")

app.include_router(agents_router)


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "livekit_configured": is_livekit_configured(),
        "openai_configured": is_openai_configured(),
        "event_store": event_store.get_stats(),
    }
