"""
FastAPI server for the respect monitor.

Endpoints:
- GET/POST /api/refresh?subject=   run the refresh pipeline, return the view model
- GET /api/view-model?subject=     latest stored view model
- GET /api/env-check               which API keys the server can see

Usage:
    uvicorn respect_monitor.api.server:app --reload --port 8000
"""

import logging
import os
from pathlib import Path
from typing import Dict

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from respect_monitor import __version__
from respect_monitor.config.secrets import check_keys
from respect_monitor.config.subjects import UnknownSubjectError, get_subject
from respect_monitor.logging_config import configure_logging
from respect_monitor.pipeline.refresh import build_oracle, load_actor_stances, refresh_subject
from respect_monitor.pipeline.storage import JsonArrayStore, StorageError

logger = logging.getLogger(__name__)

STANCES_ENV = "RESPECT_MONITOR_STANCES"
DEFAULT_STANCES = Path("data/stances.json")
DEFAULT_SUBJECT = "small_boats"

configure_logging()

app = FastAPI(
    title="Respect Monitor API",
    description="Dominant framing, media, polling and party fit per subject",
    version=__version__,
)

# CORS for the dashboard frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class EnvCheck(BaseModel):
    keys: Dict[str, bool]
    media_source: str
    hint: str


def get_store() -> JsonArrayStore:
    return JsonArrayStore()


def get_stances():
    """Party stances from $RESPECT_MONITOR_STANCES or data/stances.json; none if absent."""
    path = Path(os.environ.get(STANCES_ENV) or DEFAULT_STANCES)
    if not path.exists():
        return []
    try:
        return load_actor_stances(path)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to load stances from {path}: {e}")
        return []


def run_refresh(subject: str) -> dict:
    try:
        oracle = build_oracle()
        view_model = refresh_subject(
            subject,
            get_store(),
            get_stances(),
            classification_oracle=oracle,
            stance_oracle=oracle,
        )
    except UnknownSubjectError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        logger.error(f"Refresh failed for {subject}: {e}")
        raise HTTPException(status_code=500, detail=f"Refresh failed: {e}")
    return view_model.to_dict()


@app.get("/api/refresh")
def refresh_get(subject: str = DEFAULT_SUBJECT):
    """Run the refresh pipeline for a subject."""
    return run_refresh(subject)


@app.post("/api/refresh")
def refresh_post(subject: str = DEFAULT_SUBJECT):
    """Run the refresh pipeline for a subject."""
    return run_refresh(subject)


@app.get("/api/view-model")
def view_model(subject: str = DEFAULT_SUBJECT):
    """Latest stored view model for a subject."""
    try:
        get_subject(subject)
        latest = get_store().get_latest("view_models", subject)
    except UnknownSubjectError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Failed to load view model: {e}")
    if latest is None:
        raise HTTPException(status_code=404, detail="No view model yet; run refresh first")
    return latest


@app.get("/api/env-check", response_model=EnvCheck)
async def env_check():
    """Which API keys are visible to the server."""
    status = check_keys()
    api_keys = [k for k in status if k != "OPENAI_API_KEY"]
    any_news = any(status[k] == "OK" for k in api_keys)
    return EnvCheck(
        keys={k: v == "OK" for k, v in status.items()},
        media_source="news_api" if any_news else "rss",
        hint=(
            "News API keys set; refresh will use the API connectors for media."
            if any_news else
            "No news API keys set; refresh will collect media from RSS feeds."
        ),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
