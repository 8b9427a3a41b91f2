"""Terminal front-end for a running tweetchat server.

Commands at the prompt:
    /new              start a new chat
    /chats            list chats
    /open <id>        switch to a chat
    /tone <value>     set tone (or "none"); likewise /goal and /audience
    /quit
Anything else is sent as a prompt.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from tweetchat.client import ChatStoreClient, GenerationClient, connect  # noqa: E402
from tweetchat.errors import InvalidTransition  # noqa: E402
from tweetchat.llm import Audience, Goal, Tone  # noqa: E402
from tweetchat.session import ChatController, Phase, ViewState  # noqa: E402

_PREFS = {"/tone": ("tone", Tone), "/goal": ("goal", Goal), "/audience": ("audience", Audience)}


class _Printer:
    """Echo the streaming buffer incrementally."""

    def __init__(self) -> None:
        self._shown = 0

    def __call__(self, state: ViewState) -> None:
        if state.phase is Phase.STREAMING:
            sys.stdout.write(state.buffer[self._shown:])
            sys.stdout.flush()
            self._shown = len(state.buffer)
        elif state.phase is Phase.SETTLED and self._shown:
            sys.stdout.write("\n")
            self._shown = 0
        elif state.phase is Phase.SETTLED:
            # Failed before any fragment arrived.
            print(state.messages[-1].content if state.messages else "")


def _parse_pref(enum_cls, raw: str):
    if raw.lower() == "none":
        return None
    for member in enum_cls:
        if member.value.lower() == raw.lower():
            return member
    raise ValueError(f"choose one of: none, {', '.join(m.value for m in enum_cls)}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with the tweetchat server.")
    parser.add_argument("--url", default=os.environ.get("TWEETCHAT_URL", "http://127.0.0.1:8000"))
    parser.add_argument("--token", default=os.environ.get("TWEETCHAT_TOKEN", "dev-token"))
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING)

    with connect(args.url, args.token) as http:
        ctl = ChatController(ChatStoreClient(http), GenerationClient(http), on_change=_Printer())
        ctl.bootstrap()
        print(f"chat {ctl.state.current_chat_id} ({len(ctl.state.messages)} messages)")

        while True:
            try:
                line = input("> ").strip()
            except (EOFError, KeyboardInterrupt):
                print()
                break
            if not line:
                continue
            cmd, _, arg = line.partition(" ")
            try:
                if cmd == "/quit":
                    break
                elif cmd == "/new":
                    print(f"chat {ctl.new_chat().id}")
                elif cmd == "/chats":
                    for chat in ctl.state.chats:
                        mark = "*" if chat.id == ctl.state.current_chat_id else " "
                        print(f"{mark} {chat.id}  {len(chat.messages)} messages")
                elif cmd == "/open":
                    ctl.select_chat(arg.strip())
                    for m in ctl.state.messages:
                        print(f"{m.role}: {m.content}")
                elif cmd in _PREFS:
                    field, enum_cls = _PREFS[cmd]
                    prefs = {"tone": ctl.state.tone, "goal": ctl.state.goal, "audience": ctl.state.audience}
                    prefs[field] = _parse_pref(enum_cls, arg.strip())
                    ctl.set_preferences(**prefs)
                else:
                    ctl.submit(line)
            except (InvalidTransition, ValueError) as e:
                print(f"! {e}")


if __name__ == "__main__":
    main()
