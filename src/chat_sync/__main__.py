"""Entrypoint: python -m chat_sync [counterpart]

Tails the inbox and, when a counterpart is given, sends each stdin line to it.
"""
from __future__ import annotations

import asyncio
import logging
import sys
from typing import Callable

from chat_sync.app import chat_engine
from chat_sync.config import settings
from chat_sync.services.chat import DisabledChat
from chat_sync.services.message_store import ChatState

logger = logging.getLogger("chat_sync")


def _printer() -> Callable[[ChatState], None]:
    seen: set[str] = set()

    def _on_state(state: ChatState) -> None:
        for message in state.messages:
            key = f"{message.id}:{message.state}"
            if key in seen:
                continue
            seen.add(key)
            who = "me" if message.is_own else message.sender_id
            print(f"[{message.timestamp:%H:%M:%S}] {who}: {message.content} ({message.state})")

    return _on_state


async def run(counterpart: str | None) -> int:
    async with chat_engine(settings) as engine:
        if isinstance(engine, DisabledChat):
            return 1
        engine.subscribe(_printer())
        if counterpart:
            await engine.open_chat_with_user(counterpart)

        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                return 0
            if counterpart:
                await engine.send_message(line)


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    counterpart = sys.argv[1] if len(sys.argv) > 1 else None
    try:
        sys.exit(asyncio.run(run(counterpart)))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
