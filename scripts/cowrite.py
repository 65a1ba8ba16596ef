"""Terminal co-writing loop: type story input, watch the continuation stream in."""

from __future__ import annotations

import argparse
import os
import sys

# Ensure src/ is on sys.path (so imports work when run without installing)
SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from storyloom.config import load_settings  # noqa: E402
from storyloom.llm import CompletionClient  # noqa: E402
from storyloom.logsetup import setup_logging  # noqa: E402
from storyloom.memory import SaveStore  # noqa: E402
from storyloom.session import StorySession  # noqa: E402

HELP_TEXT = """Commands:
  /new [keep]       Start a new story (add 'keep' to carry the summary and persona over)
  /persona          Enter background and protagonist
  /title <text>     Rename the story
  /summary          Show the running summary
  /exit             Quit

Type anything else to continue the story.
"""


def _handle_command(raw: str, session: StorySession) -> bool:
    cmd, _, rest = raw.partition(" ")
    if cmd == "/exit":
        return True
    if cmd == "/help":
        print(HELP_TEXT)
    elif cmd == "/new":
        session.start_new(carry_over=rest.strip() == "keep")
        print(f"(new story in {session.save_name})")
    elif cmd == "/persona":
        background = input("background> ")
        protagonist = input("protagonist> ")
        session.update_persona(background, protagonist)
    elif cmd == "/title" and rest.strip():
        session.update_title(rest.strip())
    elif cmd == "/summary":
        print(session.conversation.summary or "(no summary yet)")
    else:
        print("unknown command; try /help")
    return False


def main() -> None:
    parser = argparse.ArgumentParser(description="Co-write a story in the terminal.")
    parser.add_argument("--config", default=None, help="Path to a YAML config")
    parser.add_argument("--action", default=None, help="Action hint for every turn (Speak/Think/Action)")
    args = parser.parse_args()

    settings = load_settings(args.config)
    setup_logging("WARNING", settings.log_dir)

    with CompletionClient(settings) as client:
        session = StorySession(settings, client, SaveStore(settings.data_dir))
        session.load_latest()
        print(f"StoryLoom: {session.conversation.title} ({session.save_name}). Type /help for commands.")

        while True:
            try:
                raw = input("> ").strip()
            except (EOFError, KeyboardInterrupt):
                print("\nbye")
                return
            if not raw:
                continue
            if raw.startswith("/"):
                if _handle_command(raw, session):
                    return
                continue
            for fragment in session.stream_reply(raw, args.action):
                print(fragment, end="", flush=True)
            print()


if __name__ == "__main__":
    main()
