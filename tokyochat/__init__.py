"""Tokyo Chat: a desktop chat front-end for a local Ollama inference server."""

__version__ = "0.1.0"
