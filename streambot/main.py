from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import Body, FastAPI, HTTPException

from .bot import Bot
from .media import get_default_media_store
from .models import parse_event

app = FastAPI(title="Streambot API", version="0.1.0")
bots: Dict[str, Bot] = {}


def register_bot(bot: Bot) -> None:
    bots[bot.username.lower()] = bot


def get_bot(username: str) -> Bot | None:
    return bots.get(username.lower())


@app.on_event("shutdown")
async def shutdown_schedulers() -> None:
    for bot in bots.values():
        bot.shutdown()
    get_default_media_store().cleanup.shutdown()


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "time": datetime.now(timezone.utc)}


@app.get("/bots")
async def list_bots() -> List[str]:
    return sorted(bot.username for bot in bots.values())


@app.post("/bots/{username}/events")
def receive_event(username: str, payload: Any = Body(...)) -> dict:
    bot = get_bot(username)
    if bot is None:
        raise HTTPException(status_code=404, detail="bot not found")
    try:
        event = parse_event(payload)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    result = bot.receive_event(event)
    response: dict = {"category": result.category.value}
    if result.meta is not None:
        response["reply_prefix"] = result.meta.reply_prefix
        response["limit"] = result.meta.limit
    return response


@app.get("/media")
async def media_status() -> dict:
    return get_default_media_store().status()
