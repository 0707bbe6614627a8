"""First-run and `--reconfigure` setup: API key, model, endpoint, initial prompt."""

from prompt_toolkit import prompt
from prompt_toolkit.formatted_text import HTML

from chatterm.globals import CONSOLE, retrieve_key, store_key
from chatterm.ui import setup_panel_constructor, spawn_error_panel


class SetupWizard:
    """Prompts for the settings needed before a session can start"""

    def __init__(self, config):
        self.config = config

    # <~~HELPERS~~>
    def _prompt_wrapper(
        self, prefix, cancel_msg="Setup canceled.", allow_empty=False, **kwargs
    ) -> str | None:
        """Prompt_toolkit wrapper for validating input."""
        try:
            # **kwargs passes defaults, password masking, etc automatically
            user_input = prompt(prefix, **kwargs)
            stripped = user_input.strip()
            if not stripped and not allow_empty:
                CONSOLE.print("[dim]No input detected.[/dim]\n")
                return None
            return stripped
        except (KeyboardInterrupt, EOFError):
            CONSOLE.print(f"[dim]{cancel_msg}[/dim]\n")
            return None

    def _ask_positive_int(self, prefix, current: int) -> int | None:
        value = self._prompt_wrapper(prefix, allow_empty=True, default=str(current))
        if value is None:
            return None
        try:
            number = int(value)
            if number <= 0:
                raise ValueError
        except ValueError:
            spawn_error_panel("VALUE ERROR", "Please enter a positive number.")
            return current
        return number

    # <~~SETUP FLOW~~>
    def ask_api_key(self) -> str | None:
        """Asks for an API key, keeping the stored one on empty input."""
        existing = retrieve_key()
        hint = " (Enter keeps the stored key)" if existing else ""
        new_key = self._prompt_wrapper(
            HTML(f"Enter an API key{hint}<seagreen>:</seagreen> "),
            allow_empty=bool(existing),
            is_password=True,
        )
        if new_key is None:
            return None
        if not new_key:
            return existing
        if store_key(new_key):
            CONSOLE.print("[green]API key updated.[/green]\n")
        else:
            spawn_error_panel(
                "KEYRING ERROR",
                "Could not save to your OS keychain.\nUsing key for this session only.",
            )
        return new_key

    def run(self) -> str | None:
        """
        Walks through every setting. Returns the API key to use, or None if the
        user declined to provide one.
        """
        CONSOLE.print(setup_panel_constructor(self.config))
        api_key = self.ask_api_key()
        if not api_key:
            return None

        config = self.config
        model = self._prompt_wrapper(
            HTML("Model name<seagreen>:</seagreen> "), default=config.model
        )
        if model:
            config.model = model
        endpoint = self._prompt_wrapper(
            HTML("API endpoint<seagreen>:</seagreen> "), default=config.endpoint
        )
        if endpoint:
            config.endpoint = endpoint
        initial_prompt = self._prompt_wrapper(
            HTML("Initial prompt<seagreen>:</seagreen> "),
            allow_empty=True,
            default=config.initial_prompt,
        )
        if initial_prompt is not None:
            config.initial_prompt = initial_prompt
        max_tokens = self._ask_positive_int(
            HTML("Context budget in tokens<seagreen>:</seagreen> "), config.max_tokens
        )
        if max_tokens:
            config.max_tokens = max_tokens

        config.save()
        CONSOLE.print("[green]Settings saved.[/green]\n")
        return api_key
