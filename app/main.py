"""
Terminal Client for Chat Ledger

A one-user chat in the terminal, for trying the ledger without a chat
platform. Replies are printed; a reply that offers choices numbers
them, and typing the number picks one.

DESIGN PRINCIPLES:
1. Same flows as any chat client: text goes to MessageFlow, a picked
   choice goes to ChoiceFlow
2. Nothing here knows about the ledger; it only moves text

Run with:
    python -m app.main
"""

import asyncio
from typing import Optional

from chatledger.config import get_settings, validate_all_settings
from chatledger.orchestrator import ChatLedgerApp, create_app_components
from chatledger.transport import ChatTransportInterface, Choice, InboundChoice, InboundMessage


CHAT_ID = 1
USER_ID = 1


class ConsoleTransport(ChatTransportInterface):
    """Prints outbound messages and remembers the latest choices."""

    def __init__(self):
        self._next_id = 0
        self.choices: list[Choice] = []
        self.choices_message_id: Optional[int] = None

    async def send_message(self, chat_id: int, text: str) -> int:
        return self._print(text, [])

    async def send_choices(self, chat_id: int, text: str, choices: list[Choice]) -> int:
        return self._print(text, choices)

    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        choices: Optional[list[Choice]] = None,
    ) -> None:
        print(f"\n[edited #{message_id}]\n{text}\n")
        if message_id == self.choices_message_id and not choices:
            self.choices = []
            self.choices_message_id = None

    def _print(self, text: str, choices: list[Choice]) -> int:
        self._next_id += 1
        print(f"\n{text}")
        for index, choice in enumerate(choices, start=1):
            print(f"  [{index}] {choice.label}")
        print()
        if choices:
            self.choices = choices
            self.choices_message_id = self._next_id
        return self._next_id

    def pick(self, text: str) -> Optional[InboundChoice]:
        """The typed number as a choice, if it names one on screen."""
        if not text.isdigit() or not self.choices:
            return None
        index = int(text) - 1
        if not 0 <= index < len(self.choices):
            return None
        choice = InboundChoice(
            chat_id=CHAT_ID,
            user_external_id=USER_ID,
            data=self.choices[index].data,
            message_id=self.choices_message_id,
        )
        self.choices = []
        self.choices_message_id = None
        return choice


def print_settings_status() -> None:
    """Print which configuration groups loaded."""
    status = validate_all_settings()
    for name in ("gemini", "database", "redis", "conversation", "ledger", "app"):
        if status.get(name, False):
            print(f"  {name}: ok")
        else:
            print(f"  {name}: {status.get(f'{name}_error', 'not configured')}")

    if get_settings().gemini.is_development:
        print("  (no GEMINI_API_KEY: running with the development stub model)")


async def chat_loop(app: ChatLedgerApp, transport: ConsoleTransport) -> None:
    print("Type a message, a command (/start, /summary, /undo, /cancel, /help) or 'quit'.\n")
    while True:
        text = (await asyncio.to_thread(input, "> ")).strip()
        if text in ("quit", "exit"):
            return
        if not text:
            continue

        choice = transport.pick(text)
        if choice is not None:
            await app.choices.handle(choice)
        else:
            await app.messages.handle(InboundMessage(
                chat_id=CHAT_ID,
                user_external_id=USER_ID,
                display_name="Console",
                text=text,
            ))


async def run() -> None:
    print("Chat Ledger\n")
    print_settings_status()
    print()

    transport = ConsoleTransport()
    app = create_app_components(transport)
    await app.start()
    try:
        await chat_loop(app, transport)
    finally:
        await app.stop()


def main():
    """Main application entry point."""
    try:
        asyncio.run(run())
    except (KeyboardInterrupt, EOFError):
        print()


if __name__ == "__main__":
    main()
