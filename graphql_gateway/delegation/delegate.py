# Copyright 2021-present Kensho Technologies, LLC.
import logging
from typing import Any, Callable, Dict, Optional, Union

from graphql import GraphQLResolveInfo, GraphQLType, SelectionSetNode, default_field_resolver

from ..exceptions import RemoteFieldError, make_remote_field_error
from ..remote_executor import print_query_document
from ..schema_transformation.rename_query import rename_query
from ..typedefs import RemoteResult
from .selection import build_delegated_operation
from .wrap_schema import RemoteSchemaHandle, rename_result_typenames


logger = logging.getLogger(__name__)


async def delegate_to_schema(
    schema: RemoteSchemaHandle,
    operation: str,
    field_name: str,
    args: Dict[str, Any],
    context: Any,
    info: GraphQLResolveInfo,
    selection_set: Optional[Union[str, SelectionSetNode]] = None,
    return_type: Optional[GraphQLType] = None,
) -> Any:
    """Resolve a gateway field by selecting one root field of a backend, in one remote call.

    The delegated document selects exactly field_name with the given arguments. Its selection is
    the caller's selection (from info) restricted to what the backend's schema has, plus the
    selections declared as needed by gateway resolvers and the extra selection_set.

    Args:
        schema: handle of the backend to delegate to
        operation: "query" or "mutation"
        field_name: root field of the backend's schema, with its gateway name
        args: Python values of the arguments of the root field
        context: request context, handed to the backend's executor
        info: resolve info of the gateway field being resolved
        selection_set: extra selection to request on the root field
        return_type: gateway type of the caller's selection, if it differs from info.return_type

    Returns:
        the value of the root field in the backend's response, in which the remote errors that
        point inside the value are embedded at their position as GraphQLError instances

    Raises:
        - RemoteExecutionError if the call to the backend fails
        - RemoteFieldError if the backend reported errors and the field's value is null
        - GraphQLValidationError if the delegated document is not valid for the backend's schema
    """
    document, variables = build_delegated_operation(
        schema.schema,
        operation,
        field_name,
        args,
        info,
        selection_set=selection_set,
        return_type=return_type,
    )
    remote_document = rename_query(document, schema.renamed_schema_descriptor)
    logger.debug(
        "Delegating %s to backend %s: %s",
        field_name,
        schema.backend_id,
        print_query_document(remote_document),
    )
    result = await schema.executor(remote_document, variables, context)
    return get_delegated_field_value(schema, field_name, result)


def get_delegated_field_value(
    schema: RemoteSchemaHandle, field_name: str, result: RemoteResult
) -> Any:
    """Extract the value of the delegated root field from the backend's response.

    Raises:
        RemoteFieldError if the backend reported errors and the field's value is null
    """
    data = result.get("data")
    value = data.get(field_name) if isinstance(data, dict) else None
    rename_result_typenames(value, schema.gateway_type_names)

    errors = result.get("errors") or []
    if not errors:
        return value
    if not isinstance(errors, list):
        errors = [errors]

    if value is None:
        messages = [_get_error_message(error) for error in errors]
        raise RemoteFieldError("; ".join(messages))

    for error in errors:
        if not _embed_error(value, error):
            logger.warning(
                "Backend %s reported an error outside of the data of field %s: %s",
                schema.backend_id,
                field_name,
                _get_error_message(error),
            )
    return value


def _get_error_message(error: Any) -> str:
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return str(error)


def _embed_error(value: Any, error: Any) -> bool:
    """Place the remote error at the first null value along its path. Return whether it was placed.

    The first element of the path is the root field, whose value is the input value.
    """
    path = error.get("path") if isinstance(error, dict) else None
    if not isinstance(path, list) or len(path) < 2:
        return False

    current = value
    for segment in path[1:]:
        if isinstance(current, dict) and isinstance(segment, str) and segment in current:
            if current[segment] is None:
                current[segment] = make_remote_field_error(
                    _get_error_message(error), error.get("extensions")
                )
                return True
            current = current[segment]
        elif isinstance(current, list) and isinstance(segment, int) and 0 <= segment < len(current):
            if current[segment] is None:
                current[segment] = make_remote_field_error(
                    _get_error_message(error), error.get("extensions")
                )
                return True
            current = current[segment]
        else:
            return False
    return False


def make_delegating_resolver(
    schema: RemoteSchemaHandle, field_name: str, operation: str = "query"
) -> Callable[..., Any]:
    """Return the resolver of a gateway root field owned by a backend."""

    async def resolve_delegated_field(parent: Any, info: GraphQLResolveInfo, **args: Any) -> Any:
        return await delegate_to_schema(schema, operation, field_name, args, info.context, info)

    return resolve_delegated_field


def gateway_field_resolver(source: Any, info: GraphQLResolveInfo, **args: Any) -> Any:
    """Resolve fields without a resolver of their own.

    Values returned by delegation are dicts keyed by response key, i.e. by alias where the
    caller used one. A GraphQLError found in place of a value is a remote error embedded at that
    position; returning it makes graphql-core report it at this field.
    """
    if isinstance(source, dict):
        response_key = info.path.key
        if response_key in source:
            return source[response_key]
    return default_field_resolver(source, info, **args)
