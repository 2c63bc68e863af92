"""
Session controller: owns the session registry and drives send-turns.

Every mutation of the registry and of a transcript happens on the controller
thread, the thread that calls the public methods and process_pending(). One
worker thread per turn runs the network fetch; it never touches a session and
only posts actions onto the update queue, which the controller thread drains
in order.
"""

import logging
import queue
import threading
import time
from collections.abc import Callable
from enum import Enum
from functools import partial

from localchat.errors import (
    StorageError,
    StreamError,
    TurnInProgress,
    UnknownSession,
)
from localchat.globals import log_exception
from localchat.models import ChatSession, Message, Role
from localchat.stream_client import CancelToken

CANCELLED_NOTE = "[Response cancelled]"


class TurnState(Enum):
    IDLE = "idle"
    AWAITING_PLACEHOLDER = "awaiting_placeholder"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class Turn:
    """One request/response cycle for a session"""

    def __init__(self, session_id: str, placeholder_index: int):
        self.session_id = session_id
        self.placeholder_index = placeholder_index
        self.cancel = CancelToken()
        self.state = TurnState.AWAITING_PLACEHOLDER
        self.error: Exception | None = None
        self.fragments = 0

    @property
    def done(self) -> bool:
        return self.state is TurnState.IDLE


class SessionController:
    """Coordinates turns, fragment application and persistence"""

    def __init__(
        self,
        store,
        client,
        on_update: Callable[[str], None] | None = None,
        on_notice: Callable[[str | None, str], None] | None = None,
    ):
        self.store = store
        self.client = client
        self.on_update = on_update
        self.on_notice = on_notice
        self.registry: dict[str, ChatSession] = {}
        self.active_id: str | None = None
        self._turns: dict[str, Turn] = {}
        self._updates: queue.Queue[Callable[[], None]] = queue.Queue()

    # <~~REGISTRY~~>
    def load(self):
        """Builds the registry from the store. Unreadable records are reported."""
        self.registry = self.store.load_all()
        if self.store.skipped:
            self._notice(
                None,
                f"Skipped {len(self.store.skipped)} unreadable session file(s): "
                + ", ".join(self.store.skipped),
            )

    def sessions(self) -> list[ChatSession]:
        """Sessions in creation order"""
        return sorted(self.registry.values(), key=lambda s: s.created_at)

    def get(self, session_id: str) -> ChatSession:
        try:
            return self.registry[session_id]
        except KeyError:
            raise UnknownSession(session_id) from None

    @property
    def active(self) -> ChatSession | None:
        if self.active_id is None:
            return None
        return self.registry.get(self.active_id)

    def new_session(self, title: str | None = None) -> ChatSession:
        """Creates an empty, unsaved session and makes it active"""
        session = ChatSession(title=title or f"Chat {len(self.registry) + 1}")
        self.registry[session.id] = session
        self._switch_to(session.id)
        self._notify(session.id)
        return session

    def select_session(self, session_id: str) -> ChatSession:
        session = self.get(session_id)
        self._switch_to(session_id)
        return session

    def rename_session(self, session_id: str, title: str):
        """Sets a new title, saving right away unless a turn will save it"""
        session = self.get(session_id)
        session.title = title
        if session.persisted and not self.is_busy(session_id):
            self.store.save(session)
        self._notify(session_id)

    def delete_session(self, session_id: str):
        """
        Deletes a session from the store and the registry.

        Raises NotPersisted for a session that was never saved and StorageError
        when the record cannot be removed; nothing changes in either case. An
        in-flight turn is cancelled and its remaining fragments are dropped.
        """
        session = self.get(session_id)
        self.store.delete(session)
        turn = self._turns.pop(session_id, None)
        if turn:
            turn.cancel.cancel()
            turn.state = TurnState.IDLE
        del self.registry[session_id]
        if self.active_id == session_id:
            self.active_id = None
        self._notify(session_id)

    def _switch_to(self, session_id: str):
        previous = self.active_id
        if previous and previous != session_id and self.is_busy(previous):
            self.cancel_turn(previous)
        self.active_id = session_id

    # <~~TURNS~~>
    def turn_state(self, session_id: str) -> TurnState:
        turn = self._turns.get(session_id)
        return turn.state if turn else TurnState.IDLE

    def is_busy(self, session_id: str) -> bool:
        return session_id in self._turns

    def submit(self, session_id: str, text: str) -> Turn:
        """
        Starts a turn: appends the user message and an empty assistant
        placeholder, then fetches the reply on a worker thread.
        """
        session = self.get(session_id)
        if self.is_busy(session_id):
            raise TurnInProgress(session_id)

        session.messages.append(Message(Role.USER, text))
        session.messages.append(Message(Role.ASSISTANT, ""))
        turn = Turn(session_id, len(session.messages) - 1)
        self._turns[session_id] = turn
        # Deep copy, without the placeholder, taken before anything streams in
        snapshot = session.history()[:-1]
        self._notify(session_id)

        turn.state = TurnState.STREAMING
        worker = threading.Thread(
            target=self._run_turn,
            args=(turn, snapshot),
            name=f"turn-{session_id[:8]}",
            daemon=True,
        )
        worker.start()
        return turn

    def cancel_turn(self, session_id: str) -> bool:
        """Stops the session's in-flight fetch and closes the turn now"""
        turn = self._turns.get(session_id)
        if turn is None:
            return False
        if turn.state is not TurnState.STREAMING:
            # Interrupted while closing, the outcome is already decided
            self._close_turn(turn)
            return False
        turn.cancel.cancel()
        self._finish_turn(turn, None)
        return True

    def cancel_all(self):
        for session_id in list(self._turns):
            self.cancel_turn(session_id)

    # <~~UPDATE QUEUE~~>
    def process_pending(self, timeout: float | None = 0) -> int:
        """
        Runs queued actions on the calling (controller) thread.

        Waits up to `timeout` seconds for the first action, None waits forever,
        then drains whatever else is queued. Returns the number of actions run.
        """
        try:
            if timeout == 0:
                action = self._updates.get_nowait()
            else:
                action = self._updates.get(timeout=timeout)
        except queue.Empty:
            return 0
        count = 0
        while True:
            action()
            count += 1
            try:
                action = self._updates.get_nowait()
            except queue.Empty:
                return count

    def wait_for_turn(
        self,
        turn: Turn,
        timeout: float | None = None,
        on_tick: Callable[[], None] | None = None,
        poll: float = 0.05,
    ) -> bool:
        """Drains the queue until the turn is back to idle. False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while not turn.done:
            wait = poll
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                wait = min(poll, remaining)
            self.process_pending(timeout=wait)
            if on_tick:
                on_tick()
        return True

    def _post(self, action: Callable[[], None]):
        self._updates.put(action)

    # <~~WORKER SIDE~~>
    def _run_turn(self, turn: Turn, snapshot: list[Message]):
        """Worker thread body. Only posts actions, never mutates sessions."""
        error: Exception | None = None
        try:
            for fragment in self.client.stream(snapshot, turn.cancel):
                if turn.cancel.cancelled:
                    break
                self._post(partial(self._apply_fragment, turn, fragment))
        except StreamError as e:
            error = e
        except Exception as e:
            log_exception(e, "Unexpected error while streaming a response")
            error = e
        self._post(partial(self._finish_turn, turn, error))

    # <~~CONTROLLER SIDE~~>
    def _is_current(self, turn: Turn) -> bool:
        return (
            self._turns.get(turn.session_id) is turn
            and turn.session_id in self.registry
        )

    def _apply_fragment(self, turn: Turn, fragment: str):
        if turn.state is not TurnState.STREAMING or turn.cancel.cancelled:
            return
        if not self._is_current(turn):
            return
        session = self.registry[turn.session_id]
        session.messages[turn.placeholder_index].content += fragment
        turn.fragments += 1
        self._notify(turn.session_id)

    def _finish_turn(self, turn: Turn, error: Exception | None):
        if turn.state is not TurnState.STREAMING or not self._is_current(turn):
            return
        session = self.registry[turn.session_id]
        placeholder = session.messages[turn.placeholder_index]
        separator = "\n\n" if placeholder.content else ""

        if turn.cancel.cancelled:
            placeholder.content += separator + CANCELLED_NOTE
            turn.state = TurnState.FAILED
        elif error is not None:
            placeholder.content += separator + f"Error: {error}"
            turn.error = error
            turn.state = TurnState.FAILED
        else:
            turn.state = TurnState.COMPLETED
        self._notify(session.id)
        self._close_turn(turn)

    def _close_turn(self, turn: Turn):
        session = self.registry[turn.session_id]
        self._persist(session)
        # A failed save is reported but never reopens the turn
        self._turns.pop(session.id, None)
        turn.state = TurnState.IDLE
        self._notify(session.id)

    def _persist(self, session: ChatSession) -> bool:
        try:
            self.store.save(session)
        except StorageError as e:
            log_exception(e, f"Error saving session {session.id}")
            self._notice(session.id, f"Could not save '{session.title}': {e}")
            return False
        logging.debug(f"Saved session {session.id} to {session.location}")
        return True

    def _notify(self, session_id: str):
        if self.on_update:
            self.on_update(session_id)

    def _notice(self, session_id: str | None, message: str):
        logging.warning(message)
        if self.on_notice:
            self.on_notice(session_id, message)
