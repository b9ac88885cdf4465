"""Error types raised across the question-answering pipeline."""


class DocChatError(Exception):
    """Base class for DocChat errors."""


class QueryValidationError(DocChatError, ValueError):
    """The query was rejected before any retrieval work started."""


class VectorIndexUnavailableError(DocChatError):
    """The vector index could not serve a request."""


class GenerationError(DocChatError):
    """The generation service failed or returned an unusable response."""


class DocumentStoreError(DocChatError):
    """The document store could not read or write a document."""
