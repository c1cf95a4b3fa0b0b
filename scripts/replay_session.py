"""Replay a recorded event stream through the adaptation core.

Reads a JSONL file (one raw behavior event per line), ingests it through a
SessionRegistry, then prints each session's enhanced profile, recommendations
and proposed adaptations.

Uses Supabase and the ML endpoint when configured in .env, otherwise an
in-memory store and the fallback rules.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict

from dotenv import load_dotenv

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "adaptive_form_engine", "src"))

from adaptive_form_engine.logger import get_logger, setup_logging
from adaptive_form_engine.session_registry import SessionRegistry
from adaptive_form_engine.settings import load_settings


def read_events(path: str):
    events = []
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError as exc:
                print(f"Skipping line {line_no}: {exc}")
    return events


async def replay(path: str, user_id: str = None) -> int:
    log = get_logger("replay_session")
    settings = load_settings()
    registry = SessionRegistry.from_settings(settings)

    payloads = read_events(path)
    if not payloads:
        print(f"No events found in {path}")
        return 1

    if user_id:
        session_ids = {p.get("sessionId") or p.get("session_id") for p in payloads if isinstance(p, dict)}
        for session_id in filter(None, session_ids):
            await registry.initialize(session_id, user_id)

    result = await registry.ingest_batch(payloads)
    log.section("Replay", {"file": path, "accepted": result.accepted, "rejected": result.rejected})

    for session_id in registry.active_sessions():
        manager = registry.get_manager(session_id)
        if manager.state is None:
            continue

        form_ids = sorted({e.form_id for e in manager.state.events})
        adaptations = []
        for form_id in form_ids:
            adaptations.extend(await registry.propose_adaptations(session_id, form_id))

        profile = registry.get_enhanced_profile(session_id)
        log.section(f"Session {session_id}", asdict(profile))
        log.section("Recommendations", {"items": [asdict(r) for r in registry.get_recommendations(session_id)]})
        log.section("Proposed adaptations", {"items": [a.to_dict() for a in adaptations]})

    return 0


def main() -> int:
    load_dotenv(".env")
    parser = argparse.ArgumentParser(description="Replay behavior events through the adaptation core")
    parser.add_argument("events", help="Path to a JSONL file of behavior events")
    parser.add_argument("--user-id", default=None, help="Attach sessions to this user to update history")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    setup_logging(level=logging.DEBUG if args.debug else logging.INFO)
    return asyncio.run(replay(args.events, args.user_id))


if __name__ == "__main__":
    raise SystemExit(main())
