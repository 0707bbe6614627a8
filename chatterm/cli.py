"""Command-line entry point: parse flags, prepare the session, run the loop."""

import argparse
import sys

from rich.live import Live
from rich.spinner import Spinner

from chatterm import __version__
from chatterm.config import Config
from chatterm.configure import SetupWizard
from chatterm.controller import ConversationController
from chatterm.errors import CorruptSession, MissingCredential, SessionNotFound
from chatterm.event_loop import EventLoop
from chatterm.globals import (
    CONSOLE,
    init_logger,
    log_exception,
    retrieve_key,
    setup_keyring_backend,
)
from chatterm.session_manager import SessionManager
from chatterm.terminal import PromptToolkitTerminal
from chatterm.transcript import Session, TranscriptStore
from chatterm.transport import OpenAITransport
from chatterm.ui import spawn_error_panel, spawn_farewell, usage_epilog

STARTUP_ERRORS = {
    SessionNotFound: "SESSION NOT FOUND",
    CorruptSession: "CORRUPT SESSION",
    MissingCredential: "MISSING API KEY",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatterm",
        description="Chat with a large language model from your terminal.",
        epilog=usage_epilog(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-s",
        "--session",
        metavar="PATH",
        help="load the conversation from PATH and keep saving it there",
    )
    parser.add_argument(
        "-r",
        "--reconfigure",
        action="store_true",
        help="re-enter the API key and settings before starting",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


def prepare_session(args, config: Config, sessions: SessionManager) -> TranscriptStore:
    """Loads the session named on the command line, or starts a new one."""
    if args.session:
        session = sessions.load_from_disk(args.session)
    else:
        session = Session.new(config.model, config.initial_prompt)
    return sessions.open_store(session)


def resolve_api_key(args, config: Config) -> str:
    """Stored key, or the setup flow when asked for or when no key exists yet."""
    api_key = retrieve_key()
    if args.reconfigure or not api_key:
        api_key = SetupWizard(config).run()
    if not api_key:
        raise MissingCredential(
            "No API key is configured. Run `chatterm --reconfigure` to add one."
        )
    return api_key


def main(argv=None):
    args = build_parser().parse_args(argv)
    init_logger()
    setup_keyring_backend()

    config = Config()
    sessions = SessionManager()
    try:
        config.load()
        api_key = resolve_api_key(args, config)
        store = prepare_session(args, config, sessions)
        # Start a spinner, loading the token encoder can take a moment on cold starts
        spinner = Spinner(
            "dots",
            text="[bold medium_orchid]Launching ChatTerm...[/bold medium_orchid]",
        )
        with Live(spinner, refresh_per_second=8, console=CONSOLE, transient=True):
            transport = OpenAITransport(config, api_key)
    except tuple(STARTUP_ERRORS) as e:
        log_exception(e, "Startup failed")
        spawn_error_panel(STARTUP_ERRORS[type(e)], f"{e}")
        sys.exit(1)
    except (KeyboardInterrupt, EOFError):
        CONSOLE.print("[yellow]✨ Farewell![/yellow]\n")
        return
    except Exception as e:
        log_exception(e, "Critical startup error")
        spawn_error_panel("CRITICAL ERROR", f"{e}")
        sys.exit(1)

    if not sys.stdin.isatty():
        spawn_error_panel("NO TERMINAL", "ChatTerm needs an interactive terminal.")
        sys.exit(1)

    controller = ConversationController(store, transport, sessions)
    try:
        with PromptToolkitTerminal() as terminal:
            EventLoop(terminal, controller, config).run()
    except KeyboardInterrupt:
        controller.close()
    except Exception as e:
        log_exception(e, "Critical error in the session loop")
        spawn_error_panel("CRITICAL ERROR", f"{e}")
        sys.exit(1)
    spawn_farewell(sessions.active_session)


if __name__ == "__main__":
    main()
