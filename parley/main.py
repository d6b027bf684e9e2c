#!/usr/bin/env python3
"""
Application Starter for Parley
==============================

Headless console driver:
1. Loads settings and logging
2. Wires store, completion client, controller and conversation service
3. Reads lines from stdin and streams the replies to stdout

Lines starting with '/' are commands: /cancel, /retry, /clean, /quit.
"""

import asyncio
import sys
from typing import Dict, Optional

from parley.chat.context_policy import ContextPolicy
from parley.chat.controller import CompletionSessionController
from parley.chat.service import ConversationService
from parley.chat.structs import Conversation, SessionOutcome, SessionState
from parley.config.settings import Settings, load_settings
from parley.exceptions import ParleyBaseError
from parley.protocol.bus import EventBus
from parley.protocol.events import EventTypes
from parley.providers.factory import create_client
from parley.store.sqlite import SQLiteMessageStore
from parley.utils.logger import EventLogger, setup_logging


class Application:
    """Main application container."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.bus = EventBus()
        self.store = SQLiteMessageStore(settings.database_path)
        self.service: Optional[ConversationService] = None
        self._printed: Dict[str, int] = {}
        self._pending: Optional[asyncio.Task] = None

    async def start(self) -> None:
        setup_logging(self.settings.log_level)
        await self.store.initialize()
        await EventLogger(self.bus).start()
        await self.bus.subscribe(EventTypes.MESSAGE_UPDATED, self._print_delta)
        await self.bus.subscribe(EventTypes.GENERATING_STARTED, self._print_generating)

        controller = CompletionSessionController(
            create_client(self.settings), self.store, self.bus, self.settings
        )
        conversation = Conversation(id=self.settings.main_conversation_id, title="Main")
        self.service = ConversationService(
            controller, ContextPolicy(self.settings), conversation, self.bus
        )

    async def run(self) -> None:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            line = line.rstrip("\n")
            if line == "/quit":
                break
            if line == "/cancel":
                self.service.cancel()
            elif line == "/clean":
                await self.service.clean_messages()
            elif line == "/retry":
                self._start(self.service.retry())
            elif line.strip():
                self._start(self.service.submit(line))

        if self._pending is not None:
            self.service.cancel()
            await asyncio.gather(self._pending, return_exceptions=True)

    async def stop(self) -> None:
        if self.service is not None:
            await self.service.controller.shutdown()
        await self.store.close()

    def _start(self, coro) -> None:
        if self._pending is not None and not self._pending.done():
            coro.close()
            print("[busy] a reply is still streaming; /cancel it first", file=sys.stderr)
            return
        self._pending = asyncio.create_task(self._report(coro))

    async def _report(self, coro) -> None:
        try:
            outcome: SessionOutcome = await coro
        except ParleyBaseError as e:
            print(f"\n[error] {e.user_hint}", file=sys.stderr)
            return
        if outcome.state == SessionState.FAILED:
            hint = getattr(outcome.error, "user_hint", str(outcome.error))
            print(f"\n[failed] {hint} (type /retry)", file=sys.stderr)
        elif outcome.state == SessionState.CANCELLED:
            print("\n[cancelled]")
        else:
            print()

    async def _print_delta(self, update) -> None:
        message = update.message
        already = self._printed.get(message.id, 0)
        sys.stdout.write(message.content[already:])
        sys.stdout.flush()
        self._printed[message.id] = len(message.content)

    async def _print_generating(self, _indicator) -> None:
        sys.stdout.write("...")
        sys.stdout.flush()


async def main() -> None:
    app = Application(load_settings())
    try:
        await app.start()
        await app.run()
    finally:
        await app.stop()


def cli() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n[Parley] Interrupted by user")
        sys.exit(0)
    except ParleyBaseError as e:
        print(f"\n[Parley] {e.message}\n{e.user_hint}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    cli()
