"""
FastAPI web service
Status, badge catalogue, quest list, evaluation, simulation and settlement routes.
The Socket.IO channel is mounted beside this app by the system.
"""

from datetime import datetime, timedelta

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from ..core.errors import SnapshotUnavailableError
from ..system import badges as badge_engine

app = FastAPI(title="Questline", version="0.3.0")

# Injected by QuestlineSystem on startup
_system_ref = None


def set_system_ref(system):
    global _system_ref
    _system_ref = system


def _not_ready() -> JSONResponse:
    return JSONResponse({"error": "system not initialized"}, status_code=503)


def _snapshot_unavailable(user_id: str) -> JSONResponse:
    return JSONResponse({"error": f"activity snapshot unavailable for {user_id}"}, status_code=503)


@app.get("/api/status")
async def get_status():
    """System status"""
    if not _system_ref:
        return _not_ready()

    return {
        "system": {
            "name": _system_ref.config.system.name,
            "version": _system_ref.config.system.version,
            "running": _system_ref.running,
            "uptime": str(datetime.now() - _system_ref.start_time) if _system_ref.start_time else None,
        },
        "channel": {
            "path": _system_ref.config.channel.path,
            "aiEnabled": _system_ref.config.quests.ai_enabled,
        },
    }


@app.get("/api/users/{user_id}/badges")
async def get_badges(user_id: str):
    """Badge catalogue with unlock state, plus the held badges"""
    if not _system_ref:
        return _not_ready()

    held = await _system_ref.db.get_badges(user_id)
    catalogue = badge_engine.describe(held)
    catalogue["held"] = [b.to_dict() for b in held]
    return catalogue


@app.get("/api/users/{user_id}/quests")
async def get_quests(user_id: str):
    """Current rule quests, server-banked ids excluded"""
    if not _system_ref:
        return _not_ready()

    result = await _system_ref.progression.evaluate_user(user_id)
    if result is None:
        return _snapshot_unavailable(user_id)
    return {
        "quests": [q.to_dict() for q in result.quests],
        "completedIds": await _system_ref.db.get_completed_quest_ids(user_id),
    }


@app.post("/api/users/{user_id}/evaluate")
async def evaluate_user(user_id: str):
    """Run both engines and persist newly earned badges"""
    if not _system_ref:
        return _not_ready()

    result = await _system_ref.progression.evaluate_user(user_id)
    if result is None:
        return _snapshot_unavailable(user_id)
    return result.to_dict()


@app.post("/api/users/{user_id}/simulate")
async def simulate_activity(user_id: str, activity: dict):
    """Record activity, then evaluate (debug)
    POST body: {"sessions": [{"duration": 1500, "startTime": "2024-05-01T07:30:00"}],
                "days": 7, "tasks": 3, "goals": 1, "mentorChats": 2}
    """
    if not _system_ref:
        return _not_ready()

    db = _system_ref.db
    try:
        sessions = [
            (
                int(s.get("duration", 0)),
                datetime.fromisoformat(s["startTime"]) if s.get("startTime") else None,
            )
            for s in activity.get("sessions", [])
        ]
        days = int(activity.get("days", 0))
        tasks = int(activity.get("tasks", 0))
        goals = int(activity.get("goals", 0))
        mentor_chats = int(activity.get("mentorChats", 0))
    except (TypeError, ValueError, AttributeError) as e:
        return JSONResponse({"error": f"invalid activity: {e}"}, status_code=400)

    await db.ensure_user(user_id)
    # "days": one 25 minute session on each of the last N days
    for offset in range(days):
        await db.record_session(user_id, 25 * 60, datetime.now() - timedelta(days=offset))
    for duration, start_time in sessions:
        await db.record_session(user_id, duration, start_time)
    for i in range(tasks):
        await db.record_task(user_id, f"Simulated task {i + 1}", completed=True)
    for i in range(goals):
        await db.record_goal(user_id, f"Simulated goal {i + 1}", completed=True)
    for _ in range(mentor_chats):
        await db.record_mentor_chat(user_id)

    result = await _system_ref.progression.evaluate_user(user_id)
    if result is None:
        return _snapshot_unavailable(user_id)
    return {"simulated": True, **result.to_dict()}


@app.post("/api/users/{user_id}/quests/complete")
async def complete_quests(user_id: str, body: dict):
    """Bank completed quest ids server-side and credit their XP
    POST body: {"questIds": ["focus-3", ...]}
    """
    if not _system_ref:
        return _not_ready()

    quest_ids = body.get("questIds")
    if not isinstance(quest_ids, list):
        return JSONResponse({"error": "questIds must be a list"}, status_code=400)

    try:
        result = await _system_ref.progression.settle(user_id, quest_ids)
    except SnapshotUnavailableError:
        return _snapshot_unavailable(user_id)
    return result.to_dict()
