"""Global functions and variables, used across various modules."""

import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler

from platformdirs import user_data_dir
from prompt_toolkit import prompt
from prompt_toolkit.completion import (
    WordCompleter,
)
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.styles import Style
from rich.console import Console
from rich.spinner import Spinner

# Default directories and system details
APP_DIR = user_data_dir("LocalChat")
CONFIG_DIR = os.path.join(APP_DIR, "config")
SESSIONS_DIR = os.path.join(APP_DIR, "chats")
LOG_DIR = os.path.join(APP_DIR, "logs")
CONFIG_FILE = os.path.join(CONFIG_DIR, "settings.json")

os.makedirs(SESSIONS_DIR, exist_ok=True)
os.makedirs(CONFIG_DIR, exist_ok=True)
os.makedirs(LOG_DIR, exist_ok=True)

# Terminal integration
CONSOLE = Console()

# Main prompt prefix
PROMPT_PREFIX = HTML("<seagreen>You: </seagreen>")

# Dark style for all prompt_toolkit completers
COMPLETER_STYLER = Style.from_dict(
    {
        # Completions
        "completion-menu.completion": "bg:#202020 #ffffff",
        "completion-menu.completion.current": "bg:#024a1a #000000",  # 2E8B57
        # Tooltips
        "completion-menu.meta.completion": "bg:#202020 #aaaaaa",
        "completion-menu.meta.completion.current": "bg:#024a1a #000000",
    }
)

# Main prompt command completer
COMMAND_COMPLETER = WordCompleter(
    [
        "!clear",
        "!config",
        "!cp",
        "!delete",
        "!h",
        "!help",
        "!l",
        "!load",
        "!model",
        "!models",
        "!n",
        "!new",
        "!q",
        "!quit",
        "!rate",
        "!rename",
        "!sessions",
        "!theme",
    ],
    match_middle=True,
    WORD=True,
)

# In-memory history for the root prompt, must mutate
main_history = InMemoryHistory()


def init_logger():
    """Initializes the logging system."""
    date_str = datetime.now().strftime("%Y%m%d")
    # Output example: localchat_20251109.log
    log_path = os.path.join(LOG_DIR, f"localchat_{date_str}.log")
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


def set_log_level(level: str):
    """Applies the log level from the config file, ignoring unknown names"""
    numeric_level = getattr(logging, str(level).upper(), None)
    if isinstance(numeric_level, int):
        logging.getLogger().setLevel(numeric_level)


def log_exception(e: Exception, context: str = ""):
    """Creates a full formatted traceback string and writes it to a log file"""
    import traceback

    # Format the traceback (exception class, exception instance, traceback object)
    tb = "".join(traceback.format_exception(type(e), e, e.__traceback__))
    # Add optional context provided by error catchers ('except Exception as e:' blocks)
    msg = f"{context}\n{tb}" if context else tb
    logging.error(msg)


def spinner_constructor(content: str) -> Spinner:
    return Spinner(
        "moon",
        text=f"[bold medium_orchid]{content}[/bold medium_orchid]",
    )


def root_prompt() -> str:
    return prompt(
        PROMPT_PREFIX,
        completer=COMMAND_COMPLETER,
        style=COMPLETER_STYLER,
        complete_while_typing=False,
        history=main_history,
    )
