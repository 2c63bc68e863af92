"""Ollama HTTP client. Streams chat replies as ordered text fragments."""

import json
import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from typing import Any

import httpx

from localchat.errors import ProtocolError, TransportError
from localchat.models import Message


class CancelToken:
    """
    Thread-safe cancellation flag for one streaming request.

    Callbacks registered with on_cancel() run once, on the thread that calls
    cancel(). The stream client uses them to close a response that is blocked
    waiting on the network.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logging.debug(f"Cancel callback failed: {e}")

    def on_cancel(self, callback: Callable[[], Any]):
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def discard(self, callback: Callable[[], Any]):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)


def _error_detail(response: httpx.Response) -> str:
    """Pulls Ollama's {"error": ...} message out of a failed response"""
    try:
        data = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return response.reason_phrase


def parse_record(line: str) -> str | None:
    """
    Parses one NDJSON record of a /api/chat stream.

    Returns the assistant text it carries, or None when it carries none.
    Raises ProtocolError for anything that is not a JSON object.
    """
    line = line.strip()
    if not line:
        return None
    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Malformed response record: {e}") from e
    if not isinstance(record, dict):
        raise ProtocolError(f"Expected a JSON object, got: {line[:80]}")
    if record.get("error"):
        raise ProtocolError(str(record["error"]))
    message = record.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str) and content:
            return content
    return None


class StreamClient:
    """Drives request/response exchanges with the local inference server"""

    def __init__(self, config, http: httpx.Client | None = None):
        self.config = config
        self.http = http or httpx.Client()

    def close(self):
        self.http.close()

    def stream(
        self, history: Iterable[Message], cancel: CancelToken | None = None
    ) -> Iterator[str]:
        """
        Sends one streaming chat request and yields content fragments in the
        order the server produced them.

        `history` must end with the user message being answered. A cancelled
        stream ends quietly. Raises TransportError or ProtocolError.
        """
        payload = {
            "model": self.config.model,
            "stream": True,
            "messages": [m.to_dict() for m in history],
        }
        url = self.config.chat_url
        try:
            with self.http.stream(
                "POST", url, json=payload, timeout=self.config.request_timeout
            ) as response:
                if cancel:
                    cancel.on_cancel(response.close)
                try:
                    if response.status_code >= 400:
                        response.read()
                        raise TransportError(
                            f"{url} returned HTTP {response.status_code}: "
                            f"{_error_detail(response)}"
                        )
                    for line in response.iter_lines():
                        if cancel and cancel.cancelled:
                            return
                        fragment = parse_record(line)
                        if fragment:
                            yield fragment
                finally:
                    if cancel:
                        cancel.discard(response.close)
        except (httpx.HTTPError, httpx.StreamError) as e:
            # Closing the response on cancel surfaces here as a read error
            if cancel and cancel.cancelled:
                return
            raise TransportError(f"{type(e).__name__}: {e}") from e

    def generate(self, prompt: str) -> str:
        """Legacy single-shot completion via /api/generate"""
        payload = {"model": self.config.model, "prompt": prompt, "stream": False}
        data = self._request_json("POST", self.config.generate_url, json=payload)
        response = data.get("response")
        if not isinstance(response, str):
            raise ProtocolError("Response object has no 'response' text field")
        return response

    def list_models(self) -> list[str]:
        """Returns the names of the models installed on the server"""
        data = self._request_json("GET", self.config.tags_url, timeout=10.0)
        models: list[str] = []
        for m in data.get("models", []) or []:
            if isinstance(m, dict) and "name" in m:
                models.append(str(m["name"]))
        return models

    def _request_json(self, method: str, url: str, **kwargs) -> dict:
        kwargs.setdefault("timeout", self.config.request_timeout)
        try:
            response = self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e
        if response.status_code >= 400:
            raise TransportError(
                f"{url} returned HTTP {response.status_code}: {_error_detail(response)}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolError(f"Malformed response body: {e}") from e
        if not isinstance(data, dict):
            raise ProtocolError("Expected a JSON object in the response body")
        return data
