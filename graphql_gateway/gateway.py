# Copyright 2021-present Kensho Technologies, LLC.
"""Compose the gateway schema out of backend schemas, and execute client queries against it."""
import asyncio
from dataclasses import dataclass, field
import importlib
from inspect import isawaitable
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Union

from graphql import (
    ExecutionResult,
    GraphQLError,
    GraphQLInterfaceType,
    GraphQLObjectType,
    GraphQLScalarType,
    GraphQLSchema,
    GraphQLUnionType,
    execute,
    parse,
    print_schema,
    validate,
)
from graphql.language.ast import SelectionSetNode
import httpx

from .ast_manipulation import parse_selection_set
from .config import GatewayConfig
from .delegation.delegate import gateway_field_resolver, make_delegating_resolver
from .delegation.selection import SELECTION_SET_HINT_KEY
from .delegation.wrap_schema import RemoteSchemaHandle, wrap_schema
from .exceptions import GraphQLValidationError, IntrospectionError, SchemaCompositionError
from .introspection import introspect_schema
from .remote_executor import make_remote_executor
from .schema_transformation.merge_schemas import (
    MERGED_ROOT_TYPE_NAMES,
    MergedSchemaDescriptor,
    merge_schemas,
)
from .schema_transformation.utils import builtin_scalar_type_names, get_root_type_names
from .typedefs import BackendDescriptor, GatewayContext


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldResolver:
    """Resolver of a gateway field, with the selection it needs from the parent object."""

    # Resolver called by graphql-core as resolve(parent, info, **args).
    resolve: Callable[..., Any]

    # Fields of the parent object that the resolver reads, e.g. "{ stateFipsCode }". They are
    # requested from the backend even when the client did not select them.
    selection_set: Optional[Union[str, SelectionSetNode]] = None


# Maps type names to mappings of field names to resolvers.
ResolverMap = Mapping[str, Mapping[str, Union[Callable[..., Any], FieldResolver]]]


@dataclass(frozen=True)
class GatewayExtensions:
    """What the gateway defines on top of the schemas of its backends."""

    # Executable schemas served by the gateway process itself, keyed by schema id.
    local_schemas: Mapping[str, GraphQLSchema] = field(default_factory=dict)

    # SDL of the types and fields added by the gateway, see merge_schemas.
    type_defs: Optional[str] = None

    # Builds the resolvers of the fields added by type_defs, given the handles of the backends
    # keyed by backend id.
    make_resolvers: Optional[Callable[[Mapping[str, RemoteSchemaHandle]], ResolverMap]] = None


def load_gateway_extensions(import_path: str) -> GatewayExtensions:
    """Import the GatewayExtensions found at "package.module:attribute".

    Raises:
        - ImportError if the module cannot be imported
        - ValueError if the path is malformed or does not name GatewayExtensions
    """
    module_name, _, attribute_name = import_path.partition(":")
    if not module_name or not attribute_name:
        raise ValueError(f'Expected an import path "module:attribute", but got "{import_path}".')
    module = importlib.import_module(module_name)
    extensions = getattr(module, attribute_name, None)
    if not isinstance(extensions, GatewayExtensions):
        raise ValueError(
            f'"{import_path}" should name GatewayExtensions, but names {extensions!r}.'
        )
    return extensions


@dataclass(frozen=True)
class GatewaySchema:
    """The executable schema served by the gateway."""

    schema: GraphQLSchema
    merged_schema_descriptor: MergedSchemaDescriptor

    # Remote handles and local schemas making up the gateway schema, keyed by schema id.
    subschemas: Mapping[str, Union[RemoteSchemaHandle, GraphQLSchema]]


def _get_subschema_schema(subschema: Union[RemoteSchemaHandle, GraphQLSchema]) -> GraphQLSchema:
    if isinstance(subschema, RemoteSchemaHandle):
        return subschema.schema
    if isinstance(subschema, GraphQLSchema):
        return subschema
    raise AssertionError(
        f"Unreachable code reached. Unexpected subschema type {type(subschema).__name__}."
    )


def compose_gateway_schema(
    subschemas: Mapping[str, Union[RemoteSchemaHandle, GraphQLSchema]],
    type_defs: Optional[str] = None,
    resolvers: Optional[ResolverMap] = None,
) -> GatewaySchema:
    """Merge subschemas into one executable schema.

    Args:
        subschemas: maps schema ids to remote handles or to local executable schemas. Root fields
                    of remote handles are resolved by delegating to their backend; local schemas
                    keep their own resolvers.
        type_defs: SDL of types and fields added by the gateway
        resolvers: resolvers of gateway fields, as plain callables or FieldResolvers. They are
                   attached last, so they may also override the resolvers of subschema fields.

    Returns:
        GatewaySchema

    Raises:
        - SchemaCompositionError if a resolver refers to a type or field that does not exist
        - SchemaTransformError subclasses if the subschemas cannot be merged, see merge_schemas
    """
    schema_id_to_ast = {
        schema_id: parse(print_schema(_get_subschema_schema(subschema)))
        for schema_id, subschema in subschemas.items()
    }
    merged_schema_descriptor = merge_schemas(schema_id_to_ast, extra_type_defs=type_defs)
    schema = merged_schema_descriptor.schema

    root_field_to_schema_id = merged_schema_descriptor.root_field_to_schema_id
    for operation, schema_id_by_field_name in root_field_to_schema_id.items():
        root_type = schema.get_type(MERGED_ROOT_TYPE_NAMES[operation])
        for field_name, schema_id in schema_id_by_field_name.items():
            subschema = subschemas.get(schema_id)
            if isinstance(subschema, RemoteSchemaHandle):
                root_type.fields[field_name].resolve = make_delegating_resolver(
                    subschema, field_name, operation=operation
                )

    for subschema in subschemas.values():
        if isinstance(subschema, GraphQLSchema):
            _copy_local_schema_resolvers(schema, subschema)

    if resolvers:
        _attach_resolvers(schema, resolvers)

    logger.info(
        "Composed the gateway schema out of %d subschemas: %s.",
        len(subschemas),
        ", ".join(subschemas),
    )
    return GatewaySchema(
        schema=schema,
        merged_schema_descriptor=merged_schema_descriptor,
        subschemas=dict(subschemas),
    )


def _copy_local_schema_resolvers(schema: GraphQLSchema, local_schema: GraphQLSchema) -> None:
    """Carry the resolvers, type resolvers and scalar coercers of a local schema over."""
    gateway_type_names = {
        root_type_name: MERGED_ROOT_TYPE_NAMES[operation]
        for operation, root_type_name in get_root_type_names(local_schema).items()
    }
    for type_name, local_type in local_schema.type_map.items():
        if type_name.startswith("__") or type_name in builtin_scalar_type_names:
            continue
        gateway_type = schema.get_type(gateway_type_names.get(type_name, type_name))
        if isinstance(local_type, (GraphQLObjectType, GraphQLInterfaceType)):
            for field_name, local_field in local_type.fields.items():
                gateway_type.fields[field_name].resolve = local_field.resolve
        if isinstance(local_type, GraphQLObjectType):
            gateway_type.is_type_of = local_type.is_type_of
        elif isinstance(local_type, (GraphQLInterfaceType, GraphQLUnionType)):
            gateway_type.resolve_type = local_type.resolve_type
        elif isinstance(local_type, GraphQLScalarType):
            gateway_type.serialize = local_type.serialize
            gateway_type.parse_value = local_type.parse_value
            gateway_type.parse_literal = local_type.parse_literal


def _attach_resolvers(schema: GraphQLSchema, resolvers: ResolverMap) -> None:
    for type_name, field_resolvers in resolvers.items():
        graphql_type = schema.get_type(type_name)
        if not isinstance(graphql_type, (GraphQLObjectType, GraphQLInterfaceType)):
            raise SchemaCompositionError(
                f'Resolvers were given for type "{type_name}", but the gateway schema has no '
                f"object or interface type of that name."
            )
        for field_name, resolver in field_resolvers.items():
            graphql_field = graphql_type.fields.get(field_name)
            if graphql_field is None:
                raise SchemaCompositionError(
                    f'A resolver was given for field "{field_name}" of type "{type_name}", but '
                    f"the type has no such field."
                )
            if not isinstance(resolver, FieldResolver):
                resolver = FieldResolver(resolve=resolver)
            graphql_field.resolve = resolver.resolve
            if resolver.selection_set is not None:
                selection_set = resolver.selection_set
                if isinstance(selection_set, str):
                    try:
                        selection_set = parse_selection_set(selection_set)
                    except GraphQLValidationError as e:
                        raise SchemaCompositionError(
                            f'Invalid selection set for field "{field_name}" of type '
                            f'"{type_name}": {e}'
                        ) from e
                graphql_field.extensions = {
                    **(graphql_field.extensions or {}),
                    SELECTION_SET_HINT_KEY: selection_set,
                }


async def _introspect_backend(
    backend: BackendDescriptor, client: Optional[httpx.AsyncClient], exclude_on_failure: bool
) -> Optional[RemoteSchemaHandle]:
    executor = make_remote_executor(backend, client=client)
    context = GatewayContext(authorization=backend.default_authorization)
    try:
        schema = await introspect_schema(executor, context, backend.backend_id)
    except IntrospectionError as e:
        if not exclude_on_failure:
            raise
        logger.warning("Excluding backend %s from the gateway: %s", backend.backend_id, e)
        return None
    return wrap_schema(
        backend.backend_id,
        schema,
        executor,
        type_renamings=backend.type_renamings,
        field_renamings=backend.field_renamings,
    )


async def make_gateway_schema(
    config: GatewayConfig,
    client: Optional[httpx.AsyncClient] = None,
    extensions: Optional[GatewayExtensions] = None,
) -> GatewaySchema:
    """Introspect every configured backend and compose the gateway schema.

    Backends are introspected concurrently, each with its default authorization.

    Args:
        config: gateway configuration listing the backends
        client: shared HTTP client for all calls to backends. If None, every call opens its own.
        extensions: local schemas, type definitions and resolvers added by the gateway

    Returns:
        GatewaySchema

    Raises:
        - IntrospectionError naming the backend if a backend cannot be introspected, unless
          config.exclude_failed_backends is set
        - SchemaCompositionError subclasses if the schemas cannot be composed
    """
    if extensions is None:
        extensions = GatewayExtensions()

    handles = await asyncio.gather(
        *(
            _introspect_backend(backend, client, config.exclude_failed_backends)
            for backend in config.backends
        )
    )
    remote_schemas: Dict[str, RemoteSchemaHandle] = {
        handle.backend_id: handle for handle in handles if handle is not None
    }

    subschemas: Dict[str, Union[RemoteSchemaHandle, GraphQLSchema]] = dict(remote_schemas)
    for schema_id, local_schema in extensions.local_schemas.items():
        if schema_id in subschemas:
            raise SchemaCompositionError(
                f'Local schema "{schema_id}" has the same id as a configured backend.'
            )
        subschemas[schema_id] = local_schema

    resolvers = None
    if extensions.make_resolvers is not None:
        resolvers = extensions.make_resolvers(remote_schemas)
    return compose_gateway_schema(subschemas, type_defs=extensions.type_defs, resolvers=resolvers)


async def execute_query(
    gateway_schema: GatewaySchema,
    query: str,
    variables: Optional[Dict[str, Any]] = None,
    operation_name: Optional[str] = None,
    authorization: Optional[str] = None,
) -> ExecutionResult:
    """Execute a client query against the gateway schema.

    Args:
        gateway_schema: schema to execute against
        query: text of the client's GraphQL document
        variables: values of the variables of the operation
        operation_name: operation to execute, if the document has several
        authorization: credential of the client, forwarded to every backend call

    Returns:
        ExecutionResult. Syntax and validation errors are reported in it rather than raised, and
        field errors coexist with the data of the fields that resolved.
    """
    try:
        document = parse(query)
    except GraphQLError as e:
        return ExecutionResult(data=None, errors=[e])

    validation_errors = validate(gateway_schema.schema, document)
    if validation_errors:
        return ExecutionResult(data=None, errors=validation_errors)

    context = GatewayContext(authorization=authorization)
    result = execute(
        gateway_schema.schema,
        document,
        context_value=context,
        variable_values=variables,
        operation_name=operation_name,
        field_resolver=gateway_field_resolver,
    )
    if isawaitable(result):
        result = await result
    if context.pending_flushes:
        # Flushes whose callers were all abandoned, e.g. after a sibling error nulled their parent.
        await asyncio.gather(*context.pending_flushes)
    return result
