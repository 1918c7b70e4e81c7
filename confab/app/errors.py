class GraphError(Exception):
    """Base class for graph engine failures."""


class MalformedDeltaError(GraphError):
    """Raised when a proposed delta does not have the expected shape."""


class InvalidMergeError(GraphError, ValueError):
    pass


class SessionNotFoundError(GraphError, KeyError):
    def __init__(self, session_id):
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self):
        return f"Session not found: {self.session_id}"


class OracleError(GraphError):
    """The language model call failed or returned something unusable."""
