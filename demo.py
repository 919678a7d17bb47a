"""
Demo simulator
Plays through one user's day against a running server, then opens the quest
channel and asks for contextual quests after a focus session.
"""

import asyncio
import os
from datetime import datetime

import httpx

from questline.client.channel import QuestChannelClient
from questline.client.store import ClientStateStore
from questline.core.config import load_config
from questline.core.errors import ChannelNotConnectedError
from questline.storage.registry import CompletedQuestRegistry

API_BASE = os.environ.get("QUESTLINE_API", "http://127.0.0.1:5000")
USER_ID = "demo-user"
TOKEN = "demo-token"

# (label, activity payload for the simulate route)
DAILY_SCENARIO = [
    ("07:30 early focus", {"sessions": [{"duration": 25 * 60, "startTime": "{today}T07:30:00"}]}),
    ("09:00 deep work", {"sessions": [{"duration": 55 * 60, "startTime": "{today}T09:00:00"}]}),
    ("10:00 inbox tasks", {"tasks": 4}),
    ("11:00 ask the mentor", {"mentorChats": 2}),
    ("13:30 pomodoro", {"sessions": [{"duration": 25 * 60, "startTime": "{today}T13:30:00"}]}),
    ("15:00 more tasks", {"tasks": 6}),
    ("16:30 goal shipped", {"goals": 1}),
    ("17:00 mentor recap", {"mentorChats": 1}),
]


def _fill_today(activity: dict) -> dict:
    today = datetime.now().date().isoformat()
    sessions = [
        {**s, "startTime": s["startTime"].replace("{today}", today)}
        for s in activity.get("sessions", [])
    ]
    return {**activity, "sessions": sessions}


async def run_demo():
    """Run the full demo"""
    print("=" * 60)
    print("  🗺️  Questline demo")
    print("  One day of activity, then the live quest channel")
    print("=" * 60)
    print()

    async with httpx.AsyncClient(timeout=30) as client:
        try:
            resp = await client.get(f"{API_BASE}/api/status")
            status = resp.json()
            print(f"  Online: {status['system']['name']} v{status['system']['version']}")
            print()
        except httpx.HTTPError as e:
            print(f"  ❌ Server not running: {e}")
            print("  Start it first: python3 -m questline.core")
            return

        for label, activity in DAILY_SCENARIO:
            resp = await client.post(f"{API_BASE}/api/users/{USER_ID}/simulate", json=_fill_today(activity))
            result = resp.json()
            if "error" in result:
                print(f"  {label:<22} ❌ {result['error']}")
                continue

            done = sum(1 for q in result["quests"] if q["status"] == "completed")
            badges = " ".join(f"{b['icon']} {b['name']}" for b in result["newBadges"])
            print(f"  {label:<22} quests ready: {done}  {badges}")
            await asyncio.sleep(0.3)

        print()
        resp = await client.get(f"{API_BASE}/api/users/{USER_ID}/quests")
        ready = [q["id"] for q in resp.json()["quests"] if q["status"] == "completed"]
        if ready:
            resp = await client.post(f"{API_BASE}/api/users/{USER_ID}/quests/complete", json={"questIds": ready})
            settled = resp.json()
            print(f"  ✅ Banked {', '.join(settled['banked'])}")
            print(f"  ⭐ +{settled['xpGained']} XP, total {settled['totalXp']} (Lv.{settled['level']})")
        print()

    config = load_config()
    registry = CompletedQuestRegistry.for_account(config.storage.registry_dir, USER_ID)
    store = ClientStateStore(registry)
    channel = QuestChannelClient(API_BASE, TOKEN, store, config.channel)
    try:
        await channel.connect()
    except ChannelNotConnectedError as e:
        print(f"  ❌ Channel unavailable: {e}")
        return

    try:
        await asyncio.sleep(1)
        if store.quest_of_the_day:
            print(f"  ☀️  Quest of the day: {store.quest_of_the_day.title}")
        for q in store.suggestions:
            print(f"  💡 Suggested: {q.title}")

        envelope = await channel.request_and_wait("contextual", "focus_session")
        print()
        if envelope is None:
            print("  ⏳ No contextual quests (timed out)")
        else:
            print(f"  🎯 {envelope['message']}")
            for q in envelope["quests"]:
                steps = " → ".join(q.get("meta", {}).get("actionSteps", []))
                print(f"     {q['title']}: {steps}")
    finally:
        await channel.disconnect()

    print()
    print("=" * 60)
    print("  Demo finished. Try: python3 cli.py badges demo-user")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(run_demo())
