"""Utilities for the Ollama client."""

__all__ = ["yell_on_error",
           "extract_error_message"]

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

import json
import requests

from bs4 import BeautifulSoup  # for error message prettification (strip HTML from a proxy's error response)

from ..errors import TransportError

def _strip_html(html: str) -> str:
    try:
        soup = BeautifulSoup(html, features='html.parser')
        return soup.get_text()
    except Exception:
        return html  # used for cleaning error messages; important to see the original text if HTML stripping fails

def extract_error_message(text: str) -> str:
    """Make a human-readable error message from the body of an error response.

    Ollama reports errors as JSON, `{"error": "..."}`. If there is a reverse proxy in front of it,
    the proxy may answer in HTML instead, so as a fallback, we strip any HTML markup.
    """
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return _strip_html(text).strip()
    if isinstance(payload, dict) and "error" in payload:
        return str(payload["error"])
    return text.strip()

def yell_on_error(response: requests.Response) -> None:
    """Log and raise `TransportError` if `response` is not "200 OK"."""
    if response.status_code != 200:
        message = extract_error_message(response.text)
        logger.error(f"Ollama server returned error: {response.status_code} {response.reason}. Content of error response follows.")
        logger.error(message)
        raise TransportError(f"While calling Ollama: HTTP {response.status_code} {response.reason}: {message}")
