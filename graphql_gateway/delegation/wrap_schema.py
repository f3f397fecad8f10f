# Copyright 2021-present Kensho Technologies, LLC.
from dataclasses import dataclass
import logging
from typing import Any, Dict, Mapping, Optional

from graphql import GraphQLSchema, parse, print_schema

from ..schema_transformation.rename_schema import RenamedSchemaDescriptor, rename_schema
from ..typedefs import Executor


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteSchemaHandle:
    """A backend's schema, as exposed by the gateway, bound to the executor reaching the backend."""

    # Identifier of the backend, used as schema id when merging.
    backend_id: str

    # Schema of the backend after renaming. Its fields have no resolvers: every resolution goes
    # through the executor.
    schema: GraphQLSchema

    # Executor sending queries to the backend.
    executor: Executor

    # Describes the renaming that produced the schema, used to translate outgoing queries back to
    # the backend's names.
    renamed_schema_descriptor: RenamedSchemaDescriptor

    # Maps the backend's type names to the names exposed by the gateway. Only contains renamed
    # types; used to translate __typename values of results.
    gateway_type_names: Dict[str, str]


def wrap_schema(
    backend_id: str,
    schema: GraphQLSchema,
    executor: Executor,
    type_renamings: Optional[Mapping[str, str]] = None,
    field_renamings: Optional[Mapping[str, Mapping[str, str]]] = None,
) -> RemoteSchemaHandle:
    """Bind a backend's schema to its executor, renaming its types and fields if requested.

    Args:
        backend_id: identifier of the backend
        schema: schema of the backend, typically obtained through introspection
        executor: executor reaching the backend
        type_renamings: maps the backend's type names to the names exposed by the gateway
        field_renamings: maps the backend's object type names to mappings from the backend's
                         field names to the names exposed by the gateway

    Returns:
        RemoteSchemaHandle through which the gateway delegates to the backend

    Raises:
        SchemaTransformError subclasses if the renamings are invalid, see rename_schema
    """
    renamed_schema_descriptor = rename_schema(
        parse(print_schema(schema)), type_renamings or {}, field_renamings or {}
    )
    if (
        renamed_schema_descriptor.reverse_name_map
        or renamed_schema_descriptor.reverse_field_name_map
    ):
        logger.info(
            "Renamed %d types and the fields of %d types of backend %s.",
            len(renamed_schema_descriptor.reverse_name_map),
            len(renamed_schema_descriptor.reverse_field_name_map),
            backend_id,
        )
    return RemoteSchemaHandle(
        backend_id=backend_id,
        schema=renamed_schema_descriptor.schema,
        executor=executor,
        renamed_schema_descriptor=renamed_schema_descriptor,
        gateway_type_names={
            original_name: renamed_name
            for renamed_name, original_name in renamed_schema_descriptor.reverse_name_map.items()
        },
    )


def rename_result_typenames(value: Any, gateway_type_names: Mapping[str, str]) -> Any:
    """Replace, in place, the backend type names of __typename entries with the gateway names."""
    if not gateway_type_names:
        return value
    if isinstance(value, list):
        for item in value:
            rename_result_typenames(item, gateway_type_names)
    elif isinstance(value, dict):
        for key, item in value.items():
            if key == "__typename" and isinstance(item, str):
                value[key] = gateway_type_names.get(item, item)
            else:
                rename_result_typenames(item, gateway_type_names)
    return value
