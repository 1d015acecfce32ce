"""Dating Advice Bros: drive the default community from the terminal.

Runs offline by default (no API key means every agent answers with its canned
fallback lines), which is enough to watch selection, delays and staggering:

    uv run python examples/dating_advice/run.py --seed 7

With a provider key configured the same script produces live replies:

    LLM_PROVIDER=google GOOGLE_API_KEY=... uv run python examples/dating_advice/run.py

Environment variables honored:
- `LLM_PROVIDER` / `LLM_MODEL`
- Provider-specific API key (e.g., `GOOGLE_API_KEY`, `OPENAI_API_KEY`)
- `MEMORY_STORE_DIR` for where agent memories are written
"""

from __future__ import annotations

import argparse
import asyncio
import random

from chatverse import ChatService, Config, InMemoryBackend, MemoryStore
from chatverse.community import DEFAULT_ROOM_ID

DEFAULT_SCRIPT = [
    "Hey guys, I matched with someone and have no idea what to text first.",
    "Wingman_Will, is it weird to suggest coffee on the first message?",
    "please help, how do I stop overthinking before a date?",
]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Dating Advice Bros chat demo")
    parser.add_argument("--seed", type=int, default=None, help="Seed for selection and delays")
    parser.add_argument("--user", default="Sam", help="Display name of the human user")
    parser.add_argument(
        "--persist",
        action="store_true",
        help="Write agent memories to MEMORY_STORE_DIR instead of keeping them in memory",
    )
    parser.add_argument(
        "--dm",
        default=None,
        metavar="AGENT_ID",
        help="Also send one direct message to this agent (e.g. relationship_rick)",
    )
    return parser.parse_args()


async def main(args: argparse.Namespace) -> None:
    print(Config.display())
    memory = None if args.persist else MemoryStore(InMemoryBackend())

    async with ChatService(memory=memory, rng=random.Random(args.seed)) as service:
        for text in DEFAULT_SCRIPT:
            print(f"\n>>> {args.user}: {text}")
            await service.submit_message(DEFAULT_ROOM_ID, "demo-user", args.user, text)
            await service.drain()

        if args.dm:
            await service.send_direct_message("demo-user", args.user, args.dm, "Got a minute to talk?")
            await service.drain()

        print("\n=== Room history ===")
        for message in service.get_history(DEFAULT_ROOM_ID):
            print(f"  {message.author}: {message.content}")

        if args.dm:
            print(f"\n=== DM with {args.dm} ===")
            for message in service.get_direct_messages("demo-user", args.dm):
                print(f"  {message.author}: {message.content}")

        service.run_maintenance()


if __name__ == "__main__":
    asyncio.run(main(parse_args()))
