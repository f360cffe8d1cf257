"""Client-side config for Tokyo Chat: where to reach the inference server."""

# Where to reach the Ollama API.
#
# This is the base URL of the API, including the "/api" path prefix.
# The client appends the endpoint names ("/tags", "/ps", "/generate", "/chat") to this.
#
ollama_api_url = "http://localhost:11434/api"
# ollama_api_url = "http://127.0.0.1:11434/api"
