#!/usr/bin/env python3
"""
Questline command line tool
Usage:
  python3 cli.py status             # system status
  python3 cli.py quests USER        # current quests
  python3 cli.py badges USER        # badge catalogue
  python3 cli.py evaluate USER      # run the engines now
  python3 cli.py complete USER ID   # bank a completed quest
  python3 cli.py demo               # run the demo
"""

import os
import sys

import httpx

API = os.environ.get("QUESTLINE_API", "http://127.0.0.1:5000")


def fetch(path: str) -> dict:
    try:
        r = httpx.get(f"{API}{path}", timeout=10)
        return r.json()
    except httpx.HTTPError as e:
        print(f"❌ Cannot reach Questline: {e}")
        print("   Start it with: python3 -m questline.core")
        sys.exit(1)


def post(path: str, data=None) -> dict:
    try:
        r = httpx.post(f"{API}{path}", json=data, timeout=10)
        return r.json()
    except httpx.HTTPError as e:
        print(f"❌ Request failed: {e}")
        sys.exit(1)


def _check(d: dict) -> dict:
    if "error" in d:
        print(f"  ❌ {d['error']}")
        sys.exit(1)
    return d


def progress_bar(percent: float, length: int = 20) -> str:
    filled = int(percent / 100 * length)
    return "█" * filled + "░" * (length - filled)


def print_quest(q: dict) -> None:
    mark = "✅" if q["status"] == "completed" else "⚔️"
    print(f"  {mark} {q['title']}  [{progress_bar(q['progress'])}] {round(q['progress'])}%")
    print(f"      {q['description']}")
    badge = f" | 🏅 {q['rewardBadge']}" if q.get("rewardBadge") else ""
    print(f"      +{q['rewardXp']} XP{badge} | ID: {q['id']}")


def cmd_status():
    d = _check(fetch("/api/status"))
    s = d["system"]
    print()
    print(f"  🗺️  {s['name']} v{s['version']}")
    print(f"  Status: {'🟢 running' if s['running'] else '🔴 stopped'}")
    print(f"  Uptime: {s.get('uptime') or 'N/A'}")
    print(f"  Channel: /{d['channel']['path']}  AI quests: {'on' if d['channel']['aiEnabled'] else 'off'}")
    print()


def cmd_quests(user_id: str):
    d = _check(fetch(f"/api/users/{user_id}/quests"))
    quests = d["quests"]
    print()
    if not quests:
        print("  No open quests.")
    else:
        print(f"  ⚔️ Quests ({len(quests)})")
        print()
        for q in quests:
            print_quest(q)
            print()
    if d["completedIds"]:
        print(f"  Banked: {', '.join(d['completedIds'])}")
        print()


def cmd_badges(user_id: str):
    d = _check(fetch(f"/api/users/{user_id}/badges"))
    print()
    print(f"  🏅 Badges {d['unlocked']}/{d['total']}")
    print()
    for b in d["badges"]:
        icon = b["icon"] if b["unlocked"] else "🔒"
        print(f"  {icon} {b['name']}")
        print(f"      {b['description']}")
    print()


def cmd_evaluate(user_id: str):
    d = _check(post(f"/api/users/{user_id}/evaluate"))
    print()
    if d["newBadges"]:
        for b in d["newBadges"]:
            print(f"  🎉 New badge: {b['icon']} {b['name']}")
    else:
        print("  No new badges.")
    completed = [q for q in d["quests"] if q["status"] == "completed"]
    print(f"  {len(d['quests'])} quests, {len(completed)} ready to bank")
    print()


def cmd_complete(user_id: str, quest_id: str):
    d = _check(post(f"/api/users/{user_id}/quests/complete", {"questIds": [quest_id]}))
    if d["banked"]:
        print(f"  ✅ Quest banked! +{d['xpGained']} XP (total {d['totalXp']}, Lv.{d['level']})")
    elif d.get("rejected"):
        print("  ❌ Quest is not complete yet.")
    else:
        print("  Already banked.")


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        return

    cmd = sys.argv[1].lower()

    if cmd == "status":
        cmd_status()
    elif cmd == "quests" and len(sys.argv) >= 3:
        cmd_quests(sys.argv[2])
    elif cmd == "badges" and len(sys.argv) >= 3:
        cmd_badges(sys.argv[2])
    elif cmd == "evaluate" and len(sys.argv) >= 3:
        cmd_evaluate(sys.argv[2])
    elif cmd == "complete" and len(sys.argv) >= 4:
        cmd_complete(sys.argv[2], sys.argv[3])
    elif cmd == "demo":
        import asyncio
        from demo import run_demo
        asyncio.run(run_demo())
    else:
        print(__doc__)


if __name__ == "__main__":
    main()
