"""CLI entrypoint for the multiplication practice game."""

from __future__ import annotations

import argparse
import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path

from .models import Cue, FeedbackState, SessionSnapshot
from .quiz import SubmitOutcome
from .service import GameService

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]
BACK_COMMANDS = {":back", ":b", "back"}
MENU_QUIT_COMMANDS = {"q"}
FLOW_EXIT_COMMANDS = {":quit", ":exit", ":q"}
MENU_BACK_COMMANDS = {"b"}
DATA_DIR_ENV = "TABLESTAR_HOME"
DEFAULT_DATA_DIR = ".tablestar"
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"

CUE_MESSAGES = {
    Cue.CORRECT: "Correct!",
    Cue.WRONG: "Not quite. Try again!",
    Cue.SESSION_WON: "You finished the whole table!",
}


class QuitApp(Exception):
    """Signal immediate app exit from nested menu flows."""


def _service(data_dir: Path | str | None = None) -> GameService:
    """Create app service with local settings database path."""
    base = Path(data_dir) if data_dir is not None else _default_data_dir()
    return GameService(db_path=base / "settings.db")


def _default_data_dir() -> Path:
    return Path(os.environ.get(DATA_DIR_ENV) or DEFAULT_DATA_DIR)


def run(argv: list[str] | None = None) -> int:
    """Run the CLI application."""
    parser = argparse.ArgumentParser(prog="tablestar", description="Multiplication table practice")
    parser.add_argument("command", nargs="?", default="play", choices=["play"])
    parser.add_argument("--data-dir", default=None, help=f"settings directory (default: ${DATA_DIR_ENV} or ./.tablestar)")
    parser.add_argument("--verbose", action="store_true", help="show debug logging")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format=LOG_FORMAT)
    return play_shell(data_dir=args.data_dir)


def play_shell(input_fn: InputFn = input, print_fn: PrintFn = print, data_dir: Path | str | None = None) -> int:
    """Run persistent menu-driven shell."""
    service = _service(data_dir)
    try:
        while True:
            print_fn("\n=== Multiplication Cosmos ===")
            print_fn(f"Stars: {service.stars}")
            for table in service.tables():
                print_fn(f"{table}) Table of {table}")
            print_fn("f) Ask the math fairy")
            print_fn("s) Settings")
            print_fn("q) Quit")
            choice = input_fn("Choose: ").strip().lower()

            try:
                if choice.isdigit() and int(choice) in service.tables():
                    _study_flow(service, int(choice), input_fn, print_fn)
                elif choice == "f":
                    _fairy_flow(service, input_fn, print_fn)
                elif choice == "s":
                    _settings_flow(service, input_fn, print_fn)
                elif choice in MENU_QUIT_COMMANDS:
                    return 0
                else:
                    print_fn("Invalid choice.")
            except QuitApp:
                return 0
    finally:
        service.close()


def _study_flow(service: GameService, table: int, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Show one table, then offer the challenge."""
    while True:
        print_fn(f"\n=== Read along: table of {table} ===")
        for row in service.study_rows(table):
            stars = "*" * row.multiplier
            print_fn(f"{row.table} x {row.multiplier} = {row.product:<3} {stars}")
        print_fn("c) Start the challenge!")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if choice == "c":
            if _quiz_flow(service, table, input_fn, print_fn):
                return
            continue
        print_fn("Invalid choice.")


def _quiz_flow(service: GameService, table: int, input_fn: InputFn, print_fn: PrintFn) -> bool:
    """Run one quiz round; return whether it was completed."""
    session = service.start_quiz(table)
    settled = threading.Event()

    def on_change(snapshot: SessionSnapshot) -> None:
        if snapshot.feedback is FeedbackState.AWAITING_INPUT or not snapshot.active:
            settled.set()

    session.subscribe(on_change)
    session.on_cue(lambda cue: print_fn(CUE_MESSAGES[cue]))

    print_fn(f"\n=== Challenge: table of {table} ===")
    print_fn("Type :b to leave the challenge.")
    while session.active:
        snapshot = session.snapshot()
        print_fn(f"\nQuestion {snapshot.number} / {snapshot.total}")
        answer = input_fn(f"{snapshot.table} x {snapshot.multiplier} = ").strip()
        if answer.lower() in BACK_COMMANDS or answer.lower() in FLOW_EXIT_COMMANDS:
            service.leave_quiz()
            print_fn("Leaving the challenge. Practice a bit more and come back!")
            return False

        settled.clear()
        outcome = service.submit_answer(session, answer)
        if outcome is SubmitOutcome.REJECTED:
            print_fn("Please type a number.")
            continue
        if outcome is SubmitOutcome.IGNORED:
            continue
        settled.wait()

    print_fn(f"You earned {session.score} stars! Total stars: {service.stars}")
    return True


def _fairy_flow(service: GameService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Chat with the math fairy until the user goes back."""
    try:
        fairy = service.fairy()
    except LookupError:
        print_fn("The math fairy needs a Gemini API key. Add one under Settings.")
        return

    print_fn("\n=== Math Fairy ===")
    for message in fairy.transcript:
        print_fn(f"Fairy: {message.text}")
    print_fn("Type :b to go back.")
    while True:
        text = input_fn("You: ").strip()
        lowered = text.lower()
        if lowered in BACK_COMMANDS or lowered in FLOW_EXIT_COMMANDS:
            return
        reply = fairy.ask(text)
        if reply is None:
            continue
        print_fn(f"Fairy: {reply.text}")


def _settings_flow(service: GameService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Manage the fairy API key and model."""
    while True:
        api_key = service.get_api_key()
        print_fn("\n=== Settings ===")
        print_fn(f"API key: {_mask_key(api_key) if api_key else 'not set'}")
        print_fn(f"Fairy model: {service.get_fairy_model()}")
        print_fn("1) Set API key")
        print_fn("2) Clear API key")
        print_fn("3) Set fairy model")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose setting: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if choice == "1":
            value = input_fn("Gemini API key: ").strip()
            if not value:
                print_fn("API key is required.")
                continue
            service.set_api_key(value)
            print_fn("API key saved.")
        elif choice == "2":
            service.set_api_key("")
            if service.get_api_key():
                print_fn("Saved API key cleared. A key from the environment is still in use.")
            else:
                print_fn("API key cleared.")
        elif choice == "3":
            service.set_fairy_model(input_fn("Model name (blank = default): "))
            print_fn(f"Fairy model: {service.get_fairy_model()}")
        else:
            print_fn("Invalid choice.")


def _mask_key(key: str) -> str:
    """Show only the last few characters of a secret."""
    if len(key) <= 4:
        return "*" * len(key)
    return "*" * (len(key) - 4) + key[-4:]


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
