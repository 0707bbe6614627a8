"""Rich panels printed outside of the full-screen session: setup, errors, exit."""

from rich import box
from rich.panel import Panel
from rich.text import Text

from chatterm import __version__
from chatterm.globals import CONFIG_FILE, CONSOLE, LOG_DIR, SESSIONS_DIR


def error_panel_constructor(error: str, exception: str) -> Panel:
    return Panel(
        exception,
        title=Text(f"❌ {error}", style="bold red"),
        title_align="left",
        border_style="red",
        expand=False,
    )


def setup_panel_constructor(config) -> Panel:
    setup_text = Text.assemble(
        ("Model: ", "bold sandy_brown"),
        (f"{config.model}"),
        ("\nEndpoint: ", "bold sandy_brown"),
        (f"{config.endpoint}"),
        ("\nInitial Prompt: ", "bold sandy_brown"),
        (f"{config.initial_prompt}", "italic"),
        ("\n\nPress Enter to keep a current value. ", "dim"),
        ("Your API key is stored in your OS keychain.", "dim"),
    )
    return Panel(
        setup_text,
        title=Text(f"🔧 ChatTerm {__version__} setup", "bold medium_orchid"),
        title_align="left",
        border_style="medium_orchid",
        box=box.HORIZONTALS,
        padding=(0, 0),
    )


def spawn_error_panel(error: str, exception: str):
    """Error panel template, used by setup and main()"""
    CONSOLE.print(error_panel_constructor(error, exception))
    CONSOLE.print()


def spawn_farewell(session_path: str):
    if session_path:
        CONSOLE.print(f"[green]Session saved in:[/green] {session_path}")
    CONSOLE.print("[yellow]✨ Farewell![/yellow]\n")


def usage_epilog() -> str:
    return (
        "keys: Enter send, Esc/Ctrl-D quit, Ctrl-C cancel reply, Ctrl-S save, "
        "PgUp/PgDn or mouse wheel scroll, Up/Down prompt history\n"
        f"config: {CONFIG_FILE}\nsessions: {SESSIONS_DIR}\nlogs: {LOG_DIR}"
    )
