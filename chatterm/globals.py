"""Global functions and variables, used across various modules."""

import getpass
import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler

import keyring
from keyring.backends import null
from keyring.errors import KeyringError
from platformdirs import user_data_dir
from rich.console import Console

# Default directories and system details
APP_DIR = user_data_dir("ChatTerm")
CONFIG_DIR = os.path.join(APP_DIR, "config")
SESSIONS_DIR = os.path.join(APP_DIR, "sessions")
LOG_DIR = os.path.join(APP_DIR, "logs")
CONFIG_FILE = os.path.join(CONFIG_DIR, "settings.json")
USER_NAME = getpass.getuser()

# Keyring service name for the stored API key
KEYRING_SERVICE = "ChatTermAPI"

os.makedirs(SESSIONS_DIR, exist_ok=True)
os.makedirs(CONFIG_DIR, exist_ok=True)
os.makedirs(LOG_DIR, exist_ok=True)

# Terminal integration, only used outside of the full-screen loop
CONSOLE = Console()


def init_logger():
    """Initializes the logging system."""
    date_str = datetime.now().strftime("%Y%m%d")
    # Output example: chatterm_20251109.log
    log_path = os.path.join(LOG_DIR, f"chatterm_{date_str}.log")
    # Max of 3 backups, max size of 1MB
    handler = RotatingFileHandler(
        log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    logging.basicConfig(
        level=logging.ERROR,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler],
    )


def log_exception(e: BaseException, context: str = ""):
    """Creates a full formatted traceback string and writes it to a log file"""
    import traceback

    # Format the traceback (exception class, exception instance, traceback object)
    tb = "".join(traceback.format_exception(type(e), e, e.__traceback__))
    msg = f"{context}\n{tb}" if context else tb
    logging.error(msg)


def setup_keyring_backend():
    """Safely detects a keyring backend."""
    try:
        keyring.get_keyring()
    except Exception as e:
        keyring.set_keyring(null.Keyring())
        logging.error(
            f"Keyring backend failed. Falling back to NullBackend. Error: {e}"
        )


def retrieve_key() -> str:
    """
    Attempts to retrieve a stored API key.\n
    Prio: OPENAI_API_KEY env variable -> OS keyring entry -> empty string
    """
    api_key = os.getenv("OPENAI_API_KEY") or ""
    if not api_key:
        try:
            api_key = keyring.get_password(KEYRING_SERVICE, USER_NAME) or ""
        except KeyringError as e:
            log_exception(e, "Keyring lookup failed")
    return api_key


def store_key(api_key: str) -> bool:
    """Stores the API key in the OS keychain. Returns False if that failed."""
    try:
        keyring.set_password(KEYRING_SERVICE, USER_NAME, api_key)
    except (KeyringError, ValueError, RuntimeError, OSError) as e:
        log_exception(e, "Keyring store failed")
        return False
    return True
