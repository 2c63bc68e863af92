"""Command interactivity logic lives here."""

import re
import sys
import textwrap

import pyperclip
from prompt_toolkit import prompt
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.formatted_text import HTML

from localchat.errors import LocalChatError, NotPersisted, StorageError, StreamError
from localchat.globals import COMPLETER_STYLER, CONSOLE, log_exception


class CLIController:
    """Handles and supports all command input"""

    def __init__(self, config, controller, client, panel, ui):
        self.config = config
        self.controller = controller
        self.client = client
        self.panel = panel
        self.ui = ui

        # Command dict
        self.commands = {
            "!h": self.spawn_help_chart,
            "!help": self.spawn_help_chart,
            "!n": self.new_session,
            "!new": self.new_session,
            "!sessions": self.list_sessions,
            "!l": self.load_session,
            "!load": self.load_session,
            "!rename": self.rename_session,
            "!delete": self.delete_session,
            "!models": self.list_models,
            "!model": self.set_model,
            "!config": self.spawn_settings_chart,
            "!rate": self.set_refresh_rate,
            "!theme": self.set_code_theme,
            "!cp": self.copy_last_snippet,
            "!clear": CONSOLE.clear,
            "!q": self.quit,
            "!quit": self.quit,
        }

        self.session_prompt = HTML("Enter a chat number or id<seagreen>:</seagreen> ")

    # <~~HELPERS~~>
    def _prompt_wrapper(
        self, prefix, cancel_msg="Canceled.", allow_empty=False, **kwargs
    ) -> str | None:
        """Prompt_toolkit wrapper for validating input."""
        try:
            # **kwargs passes completers, styles, history, etc automatically
            user_input = prompt(prefix, **kwargs)
            stripped = user_input.strip()
            if not stripped and not allow_empty:
                CONSOLE.print("[dim]No input detected.[/dim]\n")
                return None
            return stripped
        except (KeyboardInterrupt, EOFError):
            CONSOLE.print(f"[dim]{cancel_msg}[/dim]\n")
            return None

    def _resolve_session(self, choice: str):
        """Finds a session by list number or by id prefix"""
        sessions = self.controller.sessions()
        if choice.isdigit() and 1 <= int(choice) <= len(sessions):
            return sessions[int(choice) - 1]
        matches = [s for s in sessions if s.id.startswith(choice.lower())]
        if len(matches) == 1:
            return matches[0]
        return None

    def _session_completer(self) -> WordCompleter:
        return WordCompleter(
            [s.id[:8] for s in self.controller.sessions()],
            ignore_case=True,
        )

    def handle_input(self, user_input: str) -> bool:
        """Parse user input for a command & handle it"""
        cmd = user_input.strip().lower()
        if cmd in self.commands:
            if cmd in ("!q", "!quit"):
                CONSOLE.print("[yellow]✨ Farewell![/yellow]\n")
            self.commands[cmd]()
            return True
        return False  # No command detected

    def quit(self):
        """Ends the application. No turn is in flight while the prompt is up."""
        sys.exit(0)

    # <~~CHARTS~~>
    def spawn_help_chart(self):
        """Markdown usage chart."""
        CONSOLE.print(self.ui.help_chart_constructor())
        CONSOLE.print()

    def spawn_settings_chart(self):
        """Markdown settings chart."""
        CONSOLE.print(self.ui.settings_chart_constructor())
        CONSOLE.print()

    # <~~SESSION MANAGEMENT~~>
    def new_session(self):
        """The 'New Chat' entry."""
        session = self.controller.new_session()
        CONSOLE.print(f"[green]Started a new chat:[/green] {session.title}\n")

    def list_sessions(self) -> bool:
        """Fetches the session list and displays it."""
        sessions = self.controller.sessions()
        if not sessions:
            CONSOLE.print("[dim]No saved chats found.[/dim]\n")
            return False
        self.panel.spawn_sessions_table(
            sessions,
            self.controller.active_id,
            busy=[s.id for s in sessions if self.controller.is_busy(s.id)],
        )
        return True

    def load_session(self):
        """Selects a chat and prints its transcript"""
        if not self.list_sessions():
            return
        choice = self._prompt_wrapper(
            self.session_prompt,
            completer=self._session_completer(),
            style=COMPLETER_STYLER,
        )
        if not choice:
            return
        if choice == "0":
            self.new_session()
            return

        session = self._resolve_session(choice)
        if session is None:
            CONSOLE.print(f"[red]No chat found for:[/red] {choice}\n")
            return
        self.controller.select_session(session.id)
        CONSOLE.clear()
        self.panel.spawn_transcript(session)
        CONSOLE.print(f"[green]Chat loaded:[/green] {session.title}")
        self.panel.spawn_status_panel(session)

    def rename_session(self):
        """Renames the active chat"""
        session = self.controller.active
        if session is None:
            CONSOLE.print("[dim]No active chat to rename.[/dim]\n")
            return
        title = self._prompt_wrapper(HTML("Enter a new title<seagreen>:</seagreen> "))
        if not title:
            return
        try:
            self.controller.rename_session(session.id, title)
        except StorageError as e:
            log_exception(e, "Error in rename_session()")
            self.panel.spawn_error_panel("ERROR SAVING", f"{e}")
            return
        CONSOLE.print(f"[green]Chat renamed to:[/green] {title}\n")

    def delete_session(self):
        """Session deleter. Lists chats first and asks for confirmation."""
        if not self.list_sessions():
            return
        choice = self._prompt_wrapper(
            self.session_prompt,
            completer=self._session_completer(),
            style=COMPLETER_STYLER,
        )
        if not choice:
            return
        session = self._resolve_session(choice)
        if session is None:
            CONSOLE.print(f"[red]No chat found for:[/red] {choice}\n")
            return

        confirm = self._prompt_wrapper(
            HTML(
                "Delete '{}' permanently? (<seagreen>y</seagreen>/<ansired>N</ansired>): "
            ).format(session.title),
            allow_empty=True,
        )
        if not confirm or confirm.lower() not in ("y", "yes"):
            CONSOLE.print("[dim]Deletion canceled.[/dim]\n")
            return

        try:
            self.controller.delete_session(session.id)
        except NotPersisted:
            CONSOLE.print(
                f"[dim]'{session.title}' has not been saved yet, nothing to delete.[/dim]\n"
            )
            return
        except StorageError as e:
            log_exception(e, f"Error in delete_session() - chat: {session.id}")
            self.panel.spawn_error_panel("DELETION ERROR", f"{e}")
            return
        CONSOLE.print(f"[green]Chat deleted:[/green] {session.title}\n")

    # <~~MODEL MANAGEMENT~~>
    def list_models(self):
        """Lists the models installed on the server."""
        with CONSOLE.status(
            "[bold medium_orchid]Asking the server...[/bold medium_orchid]",
            spinner="moon",
        ):
            try:
                models = self.client.list_models()
            except StreamError as e:
                log_exception(e, "Error in list_models()")
                self.panel.spawn_error_panel("SERVER ERROR", f"{e}")
                return
        if not models:
            CONSOLE.print("[dim]No models installed on the server.[/dim]\n")
            return
        CONSOLE.print("[cyan]Installed models:[/cyan]")
        for m in models:
            tag = "(active)" if m == self.config.model else ""
            CONSOLE.print(f"• {m} {tag}", highlight=False)
        CONSOLE.print()

    def set_model(self):
        """Sets the model used for new turns"""
        model = self._prompt_wrapper(HTML("Enter a model name<seagreen>:</seagreen> "))
        if not model:
            return
        self.config.model = model
        self.config.save()
        CONSOLE.print(f"[green]Model set to:[/green] {model}\n")

    # <~~MAIN CONFIG~~>
    def set_refresh_rate(self):
        """Set a new custom refresh rate"""
        rate = self._prompt_wrapper(HTML("Enter a refresh rate<seagreen>:</seagreen> "))
        if not rate:
            return
        try:
            value = int(rate)
            if value <= 3:
                raise ValueError
        except ValueError:
            self.panel.spawn_error_panel(
                "VALUE ERROR", "Please enter a positive number ≥ 4."
            )
            return

        self.config.refresh_rate = value
        self.config.save()
        CONSOLE.print(f"[green]Refresh rate set to:[/green] {value}\n")

    def set_code_theme(self):
        """Allows the user to change out the rich markdown theme"""
        theme = self._prompt_wrapper(
            HTML("Enter a valid theme name<seagreen>:</seagreen> ")
        )
        if not theme:
            return

        self.config.rich_code_theme = theme.lower()
        self.config.save()
        CONSOLE.print(f"[green]Your theme has been set to: [/green]{theme}\n")

    # <~~CLIPBOARD~~>
    def copy_last_snippet(self):
        """Copies all Markdown code blocks from the last assistant message"""
        session = self.controller.active
        assistant_msg = session.last_assistant_message() if session else None
        if not assistant_msg:
            CONSOLE.print("[dim]No assistant response found to copy from.[/dim]\n")
            return

        pattern = r"```[^\S\n]*\w*[^\S\n]*\n(.*?)\n[^\S\n]*```"
        blocks = re.findall(pattern, assistant_msg, re.DOTALL)

        if not blocks:
            CONSOLE.print("[dim]No code blocks found in the last response.[/dim]\n")
            return

        code = "\n\n".join(textwrap.dedent(b) for b in blocks).strip()

        try:
            pyperclip.copy(code)
            self.panel.spawn_copy_panel(code)
        except Exception as e:
            log_exception(e, "Error in copy_last_snippet()")
            self.panel.spawn_error_panel(
                "CLIPBOARD ERROR", f"Could not copy to clipboard: {e}"
            )

    def report(self, error: LocalChatError, title: str = "ERROR"):
        """Shows a rejected operation without ending the loop"""
        self.panel.spawn_error_panel(title, f"{error}")
