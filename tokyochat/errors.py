"""Exception types shared by the Tokyo Chat components."""

__all__ = ["TransportError", "ModelNotFoundError", "AbortError"]

class TransportError(RuntimeError):
    """Network failure, or a non-2xx / error response from the inference server.

    Never fatal. Callers log it, turn it into a chat notice, and treat the operation
    as having returned an empty (or failed) result.
    """

class ModelNotFoundError(LookupError):
    """A user-supplied model identifier did not match anything in the model catalog."""

class AbortError(Exception):
    """The user cancelled a streamed generation.

    Not a failure: the text received so far is kept.
    """
