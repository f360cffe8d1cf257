"""Ollama client low-level library functions for Tokyo Chat.

See `tokyochat.chat.session` for the session controller that goes on top of this,
and `tokyochat.minichat` for a small terminal client built on both.

Every function takes `backend_url`, the base URL of the Ollama API, e.g. "http://localhost:11434/api".
See `tokyochat.client.config`.
"""

__all__ = ["server_available",
           "list_models",
           "list_loaded",
           "warm_load",
           "stream_generate"]

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

import json
import requests
from typing import Dict, Generator, List

from unpythonic import timer
from unpythonic.env import env

from ..errors import AbortError, TransportError
from .util import yell_on_error

# HTTP headers for Ollama requests
headers = {
    "Content-Type": "application/json"
}

# --------------------------------------------------------------------------------
# Utilities

def _request(method: str, url: str, **kwargs) -> requests.Response:
    """Send an HTTP request, converting transport-level failures into `TransportError`.

    `method`: "get" or "post".
    """
    try:
        if method == "get":
            response = requests.get(url, headers=headers, **kwargs)
        else:
            response = requests.post(url, headers=headers, **kwargs)
    except requests.exceptions.RequestException as exc:
        logger.error(f"_request: {method.upper()} {url} failed. Is the Ollama server running? Original error: {type(exc)}: {exc}")
        raise TransportError(f"Cannot reach Ollama at {url}: {exc}") from exc
    return response

def _payload(response: requests.Response) -> Dict:
    yell_on_error(response)
    try:
        return response.json()
    except ValueError as exc:  # `requests` raises a subclass of `ValueError` for bad JSON
        logger.error(f"_payload: could not decode JSON response: {type(exc)}: {exc}")
        raise TransportError(f"Malformed response from Ollama: {exc}") from exc

def server_available(backend_url: str) -> bool:
    """Return whether the Ollama server at `backend_url` answers.

    This never raises; failures are only logged.
    """
    try:
        response = requests.get(f"{backend_url}/tags", headers=headers)
    except requests.exceptions.RequestException as exc:
        logger.error(f"server_available: {type(exc)}: {exc}")
        return False
    return response.status_code == 200

def list_models(backend_url: str) -> List[env]:
    """List all models installed at `backend_url` (the model catalog).

    Returns a list of `unpythonic.env.env`, each with the fields `name: str` and `size_bytes: int`,
    in the order the server reports them.

    Raises `TransportError` if the server cannot be reached, or if it answers with an error.
    """
    payload = _payload(_request("get", f"{backend_url}/tags"))
    return [env(name=record["name"], size_bytes=int(record.get("size", 0)))
            for record in payload.get("models", [])]

def list_loaded(backend_url: str) -> List[env]:
    """List the models currently resident in memory at `backend_url`.

    Returns a list of `unpythonic.env.env`, each with the field `name: str`.

    Raises `TransportError` if the server cannot be reached, or if it answers with an error.
    """
    payload = _payload(_request("get", f"{backend_url}/ps"))
    return [env(name=record["name"])
            for record in payload.get("models", [])]

def warm_load(backend_url: str, model_name: str) -> None:
    """Make the server load `model_name` into memory.

    This sends an empty, non-streaming prompt, which Ollama answers only after the model is loaded.
    Returning normally means the model is now loaded. This can take a long time for large models.

    Raises `TransportError` on failure (e.g. unknown model, out of memory, server down).
    """
    data = {"model": model_name,
            "prompt": "",
            "stream": False}
    logger.info(f"warm_load: loading model '{model_name}'.")
    with timer() as tim:
        yell_on_error(_request("post", f"{backend_url}/generate", json=data))  # the response body does not matter
    logger.info(f"warm_load: model '{model_name}' loaded in {tim.dt:0.2f}s.")

# --------------------------------------------------------------------------------
# Streaming chat

def _check_cancelled(cancel_token: env) -> None:
    if cancel_token.cancelled:
        raise AbortError("Generation stopped by user")

def stream_generate(backend_url: str,
                    model_name: str,
                    messages: List[Dict],
                    cancel_token: env) -> Generator[str, None, None]:
    """Stream a chat reply from `model_name`, yielding the text chunks as they arrive.

    `messages`: The chat history, in OpenAI format (each message a dict with "role" and "content" fields).
    `cancel_token`: `unpythonic.env.env` with a `cancelled: bool` attribute. Cancellation is co-operative:
                    the flag is checked before sending the request, and again for each received chunk.
                    When the flag is set, we close the connection (which tells Ollama to stop generating),
                    and raise `AbortError`.

    This is a generator, so nothing happens until the caller starts iterating.
    It is not restartable; to retry, call `stream_generate` again.

    Raises `TransportError` on connection failure, on a non-200 response, and if the server
    reports an error in the middle of the stream.
    """
    _check_cancelled(cancel_token)

    data = {"model": model_name,
            "messages": messages,
            "stream": True}
    stream_response = _request("post", f"{backend_url}/chat", json=data, stream=True)

    n_chunks = 0
    try:
        yell_on_error(stream_response)
        with timer() as tim:
            # Ollama frames the stream as NDJSON: one JSON object per line.
            for line in stream_response.iter_lines(decode_unicode=True):
                _check_cancelled(cancel_token)
                if not line:  # keepalive
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError as exc:
                    logger.warning(f"stream_generate: skipping undecodable line {line!r}: {exc}")
                    continue
                if "error" in payload:
                    logger.error(f"stream_generate: Ollama reported an error mid-stream: {payload['error']}")
                    raise TransportError(f"Ollama reported an error: {payload['error']}")
                chunk = payload.get("message", {}).get("content", "")
                if chunk:
                    n_chunks += 1
                    yield chunk
                    _check_cancelled(cancel_token)
                if payload.get("done", False):
                    break
        logger.info(f"stream_generate: model '{model_name}' sent {n_chunks} chunks in {tim.dt:0.2f}s.")
    except AbortError:
        logger.info(f"stream_generate: cancelled by user after {n_chunks} chunks.")
        raise
    except requests.exceptions.RequestException as exc:  # e.g. `ChunkedEncodingError` if the server goes away
        logger.error(f"stream_generate: Connection lost. Please check if Ollama is still alive (was at {backend_url}). Original error: {type(exc)}: {exc}")
        raise TransportError(f"Connection to Ollama lost: {exc}") from exc
    finally:
        # To tell the server to stop generating, just close the stream.
        stream_response.close()
