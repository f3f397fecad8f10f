# Copyright 2021-present Kensho Technologies, LLC.
import logging
from typing import Any

from graphql import GraphQLError, GraphQLSchema, build_client_schema, get_introspection_query

from .exceptions import IntrospectionError, RemoteExecutionError
from .typedefs import Executor


logger = logging.getLogger(__name__)


async def introspect_schema(executor: Executor, context: Any, backend_id: str) -> GraphQLSchema:
    """Obtain the schema of a backend by sending it the standard introspection query.

    Args:
        executor: executor of the backend; the same one later used to delegate queries
        context: request context to introspect with, carrying the authorization to use
        backend_id: identifier of the backend, used in error messages

    Returns:
        GraphQLSchema built from the introspection result. Its fields have no resolvers.

    Raises:
        IntrospectionError if the call fails, the backend reports errors, or the result cannot
        be built into a schema
    """
    logger.info("Introspecting backend %s.", backend_id)
    try:
        result = await executor(get_introspection_query(descriptions=True), {}, context)
    except RemoteExecutionError as e:
        raise IntrospectionError(backend_id, str(e)) from e

    errors = result.get("errors")
    if errors:
        messages = [error.get("message") if isinstance(error, dict) else error for error in errors]
        raise IntrospectionError(backend_id, f"The backend reported errors: {messages}")

    data = result.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("__schema"), dict):
        raise IntrospectionError(backend_id, f"The response contains no schema: {result}")

    try:
        schema = build_client_schema(data)
    except (GraphQLError, TypeError, ValueError) as e:
        raise IntrospectionError(backend_id, f"The schema description is invalid: {e}") from e

    logger.info("Introspected backend %s: %d types.", backend_id, len(schema.type_map))
    return schema
