"""Entrypoint: python -m chat_sync --peer ID | --group ID

Tails one conversation and sends every stdin line as a message.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date

from chat_sync.app import create_session
from chat_sync.config import settings
from chat_sync.domain.entities.conversation import ConversationRef
from chat_sync.services.conversation_service import ConversationSnapshot
from chat_sync.services.presentation import DateSeparator, build_rows

logger = logging.getLogger(__name__)


def _printer(self_id: str):
    seen: set[tuple[str, str, str | None]] = set()

    def _on_change(snapshot: ConversationSnapshot) -> None:
        for row in build_rows(snapshot.messages, self_id, date.today()):
            if isinstance(row, DateSeparator):
                continue
            m = row.message
            key = (m.id, m.content, row.badge)
            if key in seen:
                continue
            seen.add(key)
            who = "me" if row.mine else (m.sender_username or m.sender_id)
            badge = f" [{row.badge}]" if row.badge else ""
            print(f"{m.created_at:%H:%M} {who}: {m.content}{badge}", flush=True)
        if snapshot.typing:
            print(f"... {', '.join(sorted(snapshot.typing))} typing", flush=True)

    return _on_change


async def _run(conversation: ConversationRef) -> None:
    session = await create_session(settings)
    try:
        await session.start()
        state = await session.open_conversation(conversation)
        state.add_listener(_printer(session.identity.user_id))
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            text = line.rstrip("\n")
            if text.strip():
                await state.submit(text)
    finally:
        await session.close()


def main() -> None:
    parser = argparse.ArgumentParser(prog="chat_sync")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--peer", help="user id of a direct conversation")
    target.add_argument("--group", help="group id of a group conversation")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    conversation = (
        ConversationRef.direct(args.peer) if args.peer else ConversationRef.group(args.group)
    )
    try:
        asyncio.run(_run(conversation))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
