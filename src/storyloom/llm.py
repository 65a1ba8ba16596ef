"""HTTP client for an OpenAI-compatible chat-completions endpoint."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

import httpx

from .config import Settings
from .context import estimate_tokens, to_messages
from .conversation import Role, Turn
from .errors import ConfigurationError, ResponseShapeError, TransportError, UpstreamError
from .prompts import TEST_CONNECTION_PROMPT
from .stream import error_fragment, interrupted_fragment, iter_text_deltas

logger = logging.getLogger(__name__)


# -----------------------------
# Helpers
# -----------------------------

def normalize_endpoint(api_url: str) -> str:
    """Turn a base URL such as ``https://host/v1`` into the completions URL."""
    endpoint = (api_url or "").strip().rstrip("/")
    if endpoint.lower().endswith("/v1"):
        endpoint += "/chat/completions"
    return endpoint


def _message_content(obj: Any) -> str:
    try:
        content = obj["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise ResponseShapeError(f"Response lacks choices[0].message.content: {e!r}") from e
    if content is None:
        return ""
    if not isinstance(content, str):
        raise ResponseShapeError(f"Message content is {type(content).__name__}, expected str")
    return content


# -----------------------------
# Client
# -----------------------------

class CompletionClient:
    """Sends a full message list and returns a completion or a fragment stream.

    Parameters
    ----------
    settings : Settings
        Endpoint, credential, model and default sampling values.
    http_client : httpx.Client | None
        Injected transport (tests pass one built on ``httpx.MockTransport``).
        When omitted the client owns one and closes it in :meth:`close`.
    """

    def __init__(self, settings: Settings, *, http_client: Optional[httpx.Client] = None) -> None:
        self.settings = settings
        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(timeout=httpx.Timeout(settings.timeout_s, connect=10.0))

    # -------------------------
    # Non-streaming
    # -------------------------
    def complete(
        self,
        turns: Sequence[Turn],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Return the assistant message for ``turns``.

        Raises ConfigurationError, TransportError, UpstreamError or
        ResponseShapeError.
        """
        self._require_configured()
        url, headers, payload = self._request(turns, temperature, max_tokens, stream=False)
        try:
            response = self._http.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error("Completion request to %s failed: %s", url, e)
            raise TransportError(str(e)) from e

        if not response.is_success:
            logger.error("Completion API error: %s - %s", response.status_code, response.text)
            raise UpstreamError(response.status_code, response.text)

        try:
            obj = response.json()
        except json.JSONDecodeError as e:
            raise ResponseShapeError(f"Response body is not JSON: {e}") from e
        return _message_content(obj)

    # -------------------------
    # Streaming
    # -------------------------
    def stream_complete(
        self,
        turns: Sequence[Turn],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Iterator[str]:
        """Yield text fragments as they arrive. Never raises.

        Failures before any data become a single error fragment. A transport
        failure after data ends the stream with an empty ErrorFragment so
        the caller knows the text is incomplete. The HTTP response is closed
        however the iteration ends, including when the caller stops pulling
        and closes the generator.
        """
        if not self.settings.is_model_configured:
            logger.warning("Stream completion skipped: configuration missing.")
            yield error_fragment("Configuration missing")
            return

        url, headers, payload = self._request(turns, temperature, max_tokens, stream=True)
        produced = False
        try:
            with self._http.stream("POST", url, headers=headers, json=payload) as response:
                if not response.is_success:
                    body = response.read().decode("utf-8", errors="replace")
                    logger.error("Stream API error: %s - %s", response.status_code, body)
                    yield error_fragment(f"{response.status_code} - {body}")
                    return

                logger.info("Stream connection established. Reading chunks...")
                for fragment in iter_text_deltas(response.iter_lines()):
                    produced = True
                    yield fragment
        except httpx.HTTPError as e:
            if produced:
                logger.error("Stream interrupted after data was received: %s", e)
                yield interrupted_fragment()
                return
            logger.error("Stream request to %s failed: %s", url, e)
            yield error_fragment(str(e) or type(e).__name__)

    # -------------------------
    # Convenience
    # -------------------------
    def test_connection(self) -> str:
        logger.info("Testing connection to %s with model %s", self.settings.api_url, self.settings.model_name)
        return self.complete([Turn(Role.USER, TEST_CONNECTION_PROMPT)]) or "No response content."

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "CompletionClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -------------------------
    # Internals
    # -------------------------
    def _require_configured(self) -> None:
        if not self.settings.is_model_configured:
            raise ConfigurationError("API configuration is missing.")

    def _request(
        self,
        turns: Sequence[Turn],
        temperature: Optional[float],
        max_tokens: Optional[int],
        *,
        stream: bool,
    ) -> tuple[str, Dict[str, str], Dict[str, Any]]:
        s = self.settings
        messages: List[Dict[str, str]] = to_messages(turns)
        payload: Dict[str, Any] = {
            "model": s.model_name,
            "messages": messages,
            "temperature": s.temperature if temperature is None else float(temperature),
            "max_tokens": s.max_tokens if max_tokens is None else int(max_tokens),
            "stream": stream,
        }
        headers = {
            "Authorization": f"Bearer {s.api_key}",
            "Content-Type": "application/json",
        }
        logger.info(
            "Sending %s request: %d messages, ~%d tokens",
            "stream" if stream else "completion",
            len(messages),
            estimate_tokens(turns),
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Full conversation content:\n%s", json.dumps(messages, ensure_ascii=False, indent=2))
        return normalize_endpoint(s.api_url), headers, payload
