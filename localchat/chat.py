#!/usr/bin/env python3

# <~~~~~~~~~~>
#  LOCAL CHAT
# <~~~~~~~~~~>

import sys
import time

from rich.live import Live

from localchat.cli_controller import CLIController
from localchat.config import Config
from localchat.errors import LocalChatError
from localchat.globals import (
    CONSOLE,
    SESSIONS_DIR,
    init_logger,
    log_exception,
    root_prompt,
    set_log_level,
    spinner_constructor,
)
from localchat.session_controller import SessionController
from localchat.session_store import SessionStore
from localchat.stream_client import StreamClient
from localchat.ui import GlobalPanels, UIConstructor


class Chat:
    """Root prompt loop and live rendering of streaming turns"""

    def __init__(self, config, controller, cli, panel, ui):
        self.config = config
        self.controller = controller
        self.cli = cli
        self.panel = panel
        self.ui = ui

        # Placeholder for live display object
        self.live: Live | None = None
        # Set by the controller whenever a session changes, cleared on render
        self.dirty: bool = False
        # Baseline timer for the rendering loop
        self.last_update_time: float = time.monotonic()

        self.controller.on_update = self.mark_dirty
        self.controller.on_notice = self.show_notice

    def mark_dirty(self, session_id: str):
        self.dirty = True

    def show_notice(self, session_id: str | None, message: str):
        """Storage problems are shown inline, they never end the loop"""
        self.panel.spawn_error_panel("STORAGE ERROR", message)

    def init_rich_live(self):
        """Defines and starts a rich live instance for the streaming loop."""
        self.live = Live(
            self.ui.assistant_panel_constructor("", streaming=True),
            console=CONSOLE,
            screen=False,
            refresh_per_second=self.config.refresh_rate,
        )
        self.live.start()

    def update_renderables(self, session, turn, force=False):
        """Redraws the placeholder, at most once per refresh interval"""
        current_time = time.monotonic()
        if not self.live or not (self.dirty or force):
            return
        # Syncs text rendering with the live display's refresh rate
        elapsed = current_time - self.last_update_time
        if not force and elapsed < 1 / self.config.refresh_rate:
            return
        content = session.messages[turn.placeholder_index].content
        self.live.update(
            self.ui.assistant_panel_constructor(content, streaming=not turn.done)
        )
        self.live.refresh()
        self.dirty = False
        self.last_update_time = current_time

    # <~~STREAMING~~>
    def send(self, text: str):
        """Submits a turn on the active chat and renders it until it is idle"""
        session = self.controller.active or self.controller.new_session()
        turn = self.controller.submit(session.id, text)
        self.panel.spawn_user_panel(text)

        start = time.monotonic()
        self.init_rich_live()
        try:
            try:
                self.controller.wait_for_turn(
                    turn,
                    on_tick=lambda: self.update_renderables(session, turn),
                    poll=1 / self.config.refresh_rate,
                )
            # Ctrl+C cancels the fetch and keeps the partial reply
            except KeyboardInterrupt:
                self.controller.cancel_turn(session.id)
            self.update_renderables(session, turn, force=True)
        finally:
            if self.live:
                self.live.stop()
                self.live = None

        elapsed = time.monotonic() - start
        reply = session.messages[turn.placeholder_index].content
        throughput = 0.0
        if turn.error is None and elapsed > 0:
            throughput = self.ui.tokens.encode(reply) / elapsed
        self.panel.spawn_status_panel(session, throughput)

    # <~~RUN~~>
    def run(self):
        """Helper function for running the application"""
        self.panel.spawn_intro_panel(len(self.controller.registry))
        while True:
            try:
                user_input = root_prompt()
            except (KeyboardInterrupt, EOFError):
                CONSOLE.print("[yellow]✨ Farewell![/yellow]\n")
                return
            if not user_input.strip():
                continue
            try:
                if self.cli.handle_input(user_input):
                    continue
                self.send(user_input)
            except LocalChatError as e:
                self.cli.report(e)
            except Exception as e:
                log_exception(e, "Error in Chat.run()")
                self.panel.spawn_error_panel("UNEXPECTED ERROR", f"{e}")


# <~~MAIN FLOW~~>
def main():
    client = None
    controller = None
    try:
        # Start a spinner, mostly for cold starts
        with Live(
            spinner_constructor("Launching Local Chat..."),
            refresh_per_second=8,
            console=CONSOLE,
        ):
            init_logger()  # Initialize the log file
            config = Config()
            config.load()  # Loads config variables from file
            set_log_level(config.log_level)
            ui = UIConstructor(config)
            panel = GlobalPanels(config, ui)
            store = SessionStore(SESSIONS_DIR)
            client = StreamClient(config)
            controller = SessionController(store, client)
            cli = CLIController(config, controller, client, panel, ui)
            chat = Chat(config, controller, cli, panel, ui)
            controller.load()  # Builds the registry from the chats directory
        CONSOLE.clear()  # Clears the viewport
        chat.run()  # Runs the application
        config.save()  # Saves config on exit
    except (KeyboardInterrupt, EOFError):
        CONSOLE.print("[yellow]✨ Farewell![/yellow]\n")
    except Exception as e:
        log_exception(e, "Critical startup error")  # Log any critical errors
        CONSOLE.print(f"[bold red]❌ CRITICAL ERROR:[/bold red] {e}")
        sys.exit(1)
    finally:
        if controller:
            controller.cancel_all()
        if client:
            client.close()


if __name__ == "__main__":
    main()
