# Copyright 2021-present Kensho Technologies, LLC.
from typing import Any, Optional

from graphql import GraphQLError


class GraphQLGatewayError(Exception):
    """Generic error raised by the gateway."""


class GraphQLValidationError(GraphQLGatewayError):
    """Exception raised when a delegated query does not validate against the target schema."""


class RemoteExecutionError(GraphQLGatewayError):
    """Raised when a call to a backend fails at the transport level.

    This covers network failures, non-success HTTP statuses, and response bodies that are not
    GraphQL JSON responses. The raw response body, if any, is kept for diagnostics.
    """

    backend_id: str
    response_body: Optional[str]

    def __init__(self, backend_id: str, message: str, response_body: Optional[str] = None) -> None:
        """Record the backend and the raw response that caused the failure."""
        super().__init__(f'Backend "{backend_id}": {message}')
        self.backend_id = backend_id
        self.response_body = response_body


class RemoteFieldError(GraphQLError):
    """Raised at a gateway field when its backend reported errors and returned no value.

    Being a GraphQLError, it is reported by graphql-core at the position of the field that
    triggered the delegation, while sibling fields still resolve.
    """


class CorrelationError(GraphQLGatewayError):
    """Raised when results of a batched call cannot be matched back to the requested keys.

    This happens when a remote result lacks the field holding its key, or when the mapping of
    results to keys does not produce exactly one value per requested key. It fails every caller
    waiting on the batch, since a silently misaligned result is worse than no result.
    """


class ShapeError(CorrelationError):
    """Raised when a batched result has neither the edges nor the nodes it is expected to have."""


class SchemaCompositionError(GraphQLGatewayError):
    """Raised when the gateway schema cannot be built.

    This may be raised if subschemas have colliding names, if extra resolvers refer to types or
    fields that do not exist, or if a backend could not be introspected.
    """


class IntrospectionError(SchemaCompositionError):
    """Raised when a backend's schema could not be obtained through introspection."""

    backend_id: str

    def __init__(self, backend_id: str, message: str) -> None:
        """Record the backend whose introspection failed."""
        super().__init__(f'Introspection of backend "{backend_id}" failed: {message}')
        self.backend_id = backend_id


def make_remote_field_error(message: str, extensions: Optional[Any] = None) -> RemoteFieldError:
    """Build a RemoteFieldError, keeping only well-formed extensions of the remote error."""
    if not isinstance(extensions, dict):
        extensions = None
    return RemoteFieldError(message, extensions=extensions)
