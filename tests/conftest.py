"""Shared fixtures: a temporary session store and a scripted stream client."""

import random
import threading
import time

import pytest

from localchat.session_controller import SessionController
from localchat.session_store import SessionStore


class FakeStreamClient:
    """
    Stands in for StreamClient. Replies are looked up by the last user message,
    so concurrent turns on different sessions get different fragments.
    """

    def __init__(self, replies=None, error=None, jitter=0.0, gate=None):
        self.replies: dict[str, list[str]] = replies or {}
        self.error = error
        self.jitter = jitter
        self.gate = gate
        self.calls = []
        self.finished = threading.Event()

    def stream(self, history, cancel=None):
        self.calls.append(history)
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            for fragment in self.replies.get(history[-1].content, []):
                if self.jitter:
                    time.sleep(random.uniform(0, self.jitter))
                if cancel and cancel.cancelled:
                    return
                yield fragment
            if self.error is not None:
                raise self.error
        finally:
            self.finished.set()


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "chats")


@pytest.fixture
def fake_client():
    return FakeStreamClient()


@pytest.fixture
def controller(store, fake_client):
    return SessionController(store, fake_client)


@pytest.fixture
def make_client():
    return FakeStreamClient
