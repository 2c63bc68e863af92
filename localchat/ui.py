"""Builds and spawns UI objects. UIConstructor and GlobalPanels live here."""

import os
import textwrap

import tiktoken
from rich import box
from rich.console import Group
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from localchat import __version__
from localchat.globals import CONFIG_FILE, CONSOLE, LOG_DIR, SESSIONS_DIR
from localchat.models import ChatSession, Role


class TokenCounter:
    """Counts and caches tokens per message for the status panel"""

    def __init__(self, encoding: str = "o200k_base"):
        self.encoding = encoding
        self._encoder = None
        self._failed = False
        self.cache: dict[int, tuple[int, int]] = {}

    def encode(self, text: str) -> int:
        """Converts a string to tokens"""
        if self._encoder is None and not self._failed:
            try:
                self._encoder = tiktoken.get_encoding(self.encoding)
            except Exception:
                # Encoding files could not be fetched, counts stay at zero
                self._failed = True
        if self._encoder is None:
            return 0
        try:
            return len(self._encoder.encode(text))
        except Exception:
            return 0

    def count(self, session: ChatSession) -> int:
        total = 0
        for msg in session.messages:
            key = id(msg)
            text_hash = hash(msg.content)
            cached = self.cache.get(key)
            if cached is None or cached[0] != text_hash:
                cached = (text_hash, self.encode(msg.content))
                self.cache[key] = cached
            total += cached[1]
        return total


class UIConstructor:
    """Constructs and returns various UI objects"""

    def __init__(self, config):
        self.config = config
        self.tokens = TokenCounter()

    def user_panel_constructor(self, content: str) -> Panel:
        return Panel(
            content,
            box=box.HORIZONTALS,
            padding=(0, 0),
            title=Text("🌐 You", style="bold blue"),
            title_align="left",
            border_style="blue",
            style="default",
        )

    def assistant_panel_constructor(self, content: str, streaming=False) -> Panel:
        title = "💬 Response" if not streaming else "💬 Response (streaming)"
        return Panel(
            Markdown(content or "…", code_theme=self.config.rich_code_theme),
            title=Text(title, style="bold green"),
            title_align="left",
            border_style="green",
            style="default",
            width=None,
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def transcript_constructor(self, session: ChatSession) -> Group:
        """Whole conversation as a group of panels"""
        panels = []
        for msg in session.messages:
            if msg.role is Role.USER:
                panels.append(self.user_panel_constructor(msg.content))
            else:
                panels.append(self.assistant_panel_constructor(msg.content))
        return Group(*panels)

    def sessions_table_constructor(
        self, sessions: list[ChatSession], active_id: str | None, busy=()
    ) -> Table:
        table = Table(
            title="Chats",
            title_style="bold cyan",
            box=box.SIMPLE_HEAD,
            show_edge=False,
        )
        table.add_column("#", style="dim", justify="right")
        table.add_column("Title")
        table.add_column("Id", style="dim")
        table.add_column("Created", style="dim")
        table.add_column("Turns", justify="right")
        table.add_row("0", "[green]New Chat[/green]", "", "", "")
        for i, s in enumerate(sessions, start=1):
            title = s.title
            if s.id == active_id:
                title = f"[bold]{title}[/bold] [cyan](active)[/cyan]"
            if s.id in busy:
                title += " [yellow](streaming)[/yellow]"
            table.add_row(
                str(i),
                title,
                s.id[:8],
                s.created_at.astimezone().strftime("%Y-%m-%d %H:%M"),
                str(s.count_turns()),
            )
        return table

    def status_panel_constructor(
        self, session: ChatSession, throughput: float = 0
    ) -> Panel:
        turns = session.count_turns()
        context = self.tokens.count(session)
        context_percentage = round((context / self.config.context_length) * 100, 1)

        # Colorize context percentage based on context consumption
        context_color: str = "dim"
        if context_percentage >= 50 and context_percentage < 80:
            context_color = "yellow"
        elif context_percentage >= 80:
            context_color = "red"

        status_text = Text.assemble(
            (" ", "cyan"),
            (f"{session.title} | "),
            ("Context: "),
            (f"{context_percentage}%", f"{context_color}"),
            (" | "),
            (f"Turn: {turns}"),
        )
        if throughput:
            status_text.append(f" | Tk/s: {throughput:.1f}")
        return Panel(
            status_text,
            border_style="dim",
            style="dim",
            expand=False,
        )

    def intro_panel_constructor(self, session_count: int) -> Panel:
        intro_text = Text.assemble(
            ("Model: ", "bold sandy_brown"),
            (f"{self.config.model}"),
            ("\nServer: ", "bold sandy_brown"),
            (f"{self.config.endpoint}"),
            ("\nSaved chats: ", "bold sandy_brown"),
            (f"{session_count}"),
        )
        return Panel(
            intro_text,
            title=Text(f"🔮 Local Chat {__version__}", "bold medium_orchid"),
            title_align="left",
            border_style="medium_orchid",
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def error_panel_constructor(self, error: str, exception: str) -> Panel:
        return Panel(
            exception,
            title=Text(f"❌ {error}", style="bold red"),
            title_align="left",
            border_style="red",
            expand=False,
        )

    def copy_panel_constructor(self, blocks: str) -> Panel:
        wrapped = f"### The following code has been copied to your clipboard\n```\n{blocks}\n```"
        return Panel(
            Markdown(wrapped, code_theme=self.config.rich_code_theme),
            title=Text("📋 Clipboard Sync", style="bold orange1"),
            title_align="left",
            border_style="orange1",
            box=box.HORIZONTALS,
            padding=(0, 0),
        )

    def help_chart_constructor(self) -> Markdown:
        return Markdown(
            textwrap.dedent("""
            | **Chats** | *Conversation management* |
            | --- | ----------- |
            | `!n` or `!new` | Start a new chat. |
            | `!sessions` | List all chats. |
            | `!l` or `!load` | Open a chat by number or id, and show its transcript. |
            | `!rename` | Rename the active chat. |
            | `!delete` | Delete a chat and its saved file. Asks for confirmation. |
            | | |
            | **NOTE:** | Chats are saved automatically after every response. |

            | **Configuration** | *Main configuration commands* |
            | --- | ----------- |
            | `!config` | Display your current configuration settings and default directories. |
            | `!models` | List the models installed on the server. |
            | `!model` | Set the model used for new responses. |
            | `!rate` | Set the current refresh rate (default is 30). Higher refresh rate = higher CPU usage. |
            | `!theme` | Change your Markdown theme. Built-in themes can be found at https://pygments.org/styles/ |

            | **Other** | |
            | --- | ----------- |
            | `!cp` | Copy all code blocks from the last response. |
            | `!clear` | Clear the terminal window. |
            | `!q` or `!quit` | Exit Local Chat. |
            | | |
            | `Ctrl + C` | Cancel a streaming response. The partial reply is kept and marked as cancelled. |
            """)
        )

    def settings_chart_constructor(self) -> Markdown:
        return Markdown(
            textwrap.dedent(f"""
            | **Current Settings** | *Your current persistent settings* |
            | --- | ----------- |
            | **Server**: | *{self.config.endpoint}* |
            | | |
            | **Model**: | *{self.config.model}* |
            | | |
            | **Request Timeout**: | *{self.config.request_timeout}s* |
            | | |
            | **Context Length**: | *{self.config.context_length}* |
            | | |
            | **Refresh Rate**: | *{self.config.refresh_rate}* |
            | | |
            | **Markdown Theme**: | *{self.config.rich_code_theme}* |
            - Your configuration file is located at: `{CONFIG_FILE}`
            - Your chat files are located at:        `{SESSIONS_DIR}`
            - Your error logs are located at:        `{LOG_DIR}`
            - The current working directory is:      `{os.getcwd()}`
            """)
        )


class GlobalPanels:
    """Global panel spawner"""

    def __init__(self, config, ui: UIConstructor):
        self.config = config
        self.ui: UIConstructor = ui

    def spawn_intro_panel(self, session_count: int):
        """Simple welcome panel, prints on application launch."""
        CONSOLE.print(self.ui.intro_panel_constructor(session_count))
        CONSOLE.print(Markdown("Type `!h` for a list of commands."))
        CONSOLE.print()

    def spawn_status_panel(self, session: ChatSession, throughput: float = 0):
        """Prints a status panel."""
        CONSOLE.print(self.ui.status_panel_constructor(session, throughput))
        CONSOLE.print()

    def spawn_error_panel(self, error: str, exception: str):
        """Error panel template for Local Chat"""
        CONSOLE.print(self.ui.error_panel_constructor(error, exception))
        CONSOLE.print()

    def spawn_user_panel(self, content: str):
        """Spawns the user panel."""
        CONSOLE.print()
        CONSOLE.print(self.ui.user_panel_constructor(content))
        CONSOLE.print()

    def spawn_transcript(self, session: ChatSession):
        """Prints a whole conversation, for a scrollable history."""
        CONSOLE.print(self.ui.transcript_constructor(session))
        CONSOLE.print()

    def spawn_sessions_table(self, sessions, active_id, busy=()):
        CONSOLE.print(self.ui.sessions_table_constructor(sessions, active_id, busy))
        CONSOLE.print()

    def spawn_copy_panel(self, blocks: str):
        CONSOLE.print(self.ui.copy_panel_constructor(blocks))
        CONSOLE.print()
