"""Error kinds raised by the store, the stream client and the controller."""


class LocalChatError(Exception):
    """Base class for every error Local Chat raises on purpose"""


class StreamError(LocalChatError):
    """A streaming exchange with the inference server failed"""


class TransportError(StreamError):
    """The request could not be sent or the response could not be read"""


class ProtocolError(StreamError):
    """A response record could not be parsed or lacked the expected shape"""


class StorageError(LocalChatError):
    """Reading, writing or deleting a persisted session failed"""


class TurnInProgress(LocalChatError):
    """Submit was called while the session still has an open turn"""

    def __init__(self, session_id: str):
        super().__init__(f"A response is still streaming for session {session_id}")
        self.session_id = session_id


class NotPersisted(LocalChatError):
    """Delete was attempted on a session that was never saved"""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} has not been saved yet")
        self.session_id = session_id


class UnknownSession(LocalChatError):
    """No session with this id exists in the registry"""

    def __init__(self, session_id: str):
        super().__init__(f"No session found with id {session_id}")
        self.session_id = session_id
