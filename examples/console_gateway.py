from __future__ import annotations

import asyncio
import random
from typing import AsyncIterator, Optional

from chatbot_gateway import BotConfig, ConnectionSupervisor, build_gateway, configure_logging
from chatbot_gateway.clients.words import StaticWordSource, WordEntry
from chatbot_gateway.core.errors import TransportClosedError
from chatbot_gateway.core.types import ConnectionClosed, ConnectionOpened, InboundMessage

GROUP = "family@g.us"
ALICE = "111@s.whatsapp.net"
BOB = "222@s.whatsapp.net"
BOT = "999@s.whatsapp.net"


class ScriptedConnection:
    """Replays a fixed conversation and prints every outbound message."""

    def __init__(self, script: list[InboundMessage]):
        self._script = script
        self.closed = False

    async def send_message(self, conversation_id: str, text: str, *, mentions: Optional[list[str]] = None) -> None:
        if self.closed:
            raise TransportClosedError(f"cannot send to {conversation_id}: connection closed")
        print(f"\n[{conversation_id}] bot:\n{text}")

    async def send_presence(self, conversation_id: str, presence: str) -> None:
        pass

    async def events(self) -> AsyncIterator:
        yield ConnectionOpened(self_id=BOT.split("@")[0])
        for message in self._script:
            print(f"\n[{message.conversation_id}] {message.participant_id}: {message.text}")
            yield message
            await asyncio.sleep(0.05)
        yield ConnectionClosed(reason="script finished")

    async def close(self) -> None:
        self.closed = True


class OneShotConnector:
    def __init__(self, connection: ScriptedConnection):
        self.connection = connection

    async def connect(self) -> ScriptedConnection:
        return self.connection


class NoCredentials:
    async def purge(self) -> None:
        pass


def group(user: str, text: str) -> InboundMessage:
    return InboundMessage(conversation_id=GROUP, participant_id=user, text=text, is_group=True)


def private(user: str, text: str) -> InboundMessage:
    return InboundMessage(conversation_id=user, participant_id=user, text=text)


async def main() -> None:
    configure_logging("WARNING")
    gateway = build_gateway(
        BotConfig(database_url="sqlite+pysqlite:///:memory:"),
        words=StaticWordSource([WordEntry("kucing", "hewan peliharaan yang suka mengeong")]),
        rng=random.Random(7),
    )
    gateway.start()

    script = [
        group(ALICE, "!help"),
        group(ALICE, "!hangman start"),
    ]
    connection = ScriptedConnection(script)

    async def stop_after_first_cycle(_delay: float) -> None:
        await supervisor.stop()

    supervisor = ConnectionSupervisor(
        OneShotConnector(connection),
        gateway.dispatcher,
        NoCredentials(),
        sleep=stop_after_first_cycle,
    )
    await supervisor.run()
    await supervisor.wait_idle()

    game_id = next(iter(gateway.hangman.repository.ids()))
    follow_up = [
        group(BOB, f"!hangman join {game_id}"),
        private(ALICE, "!hangman k"),
        private(BOB, "!hm u"),
        private(ALICE, "!hangman c"),
        private(BOB, "!hangman i"),
        private(ALICE, "!hangman n"),
        private(BOB, "!hangman g"),
        group(ALICE, f"!hangman status {game_id}"),
        group(ALICE, "!rps start multiplayer"),
        group(BOB, "!rps join"),
        private(ALICE, "!rps batu"),
        private(BOB, "!rps kertas"),
        group(ALICE, "!leaderboard hangman"),
        group(BOB, "!stats"),
    ]
    for message in follow_up:
        print(f"\n[{message.conversation_id}] {message.participant_id}: {message.text}")
        await gateway.dispatcher.handle_inbound(message, connection)

    print("\nsupervisor:", supervisor.status())


if __name__ == "__main__":
    asyncio.run(main())
