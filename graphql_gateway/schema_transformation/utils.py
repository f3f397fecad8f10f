# Copyright 2021-present Kensho Technologies, LLC.
from copy import copy
import re
from typing import Dict, FrozenSet, Set, TypeVar, Union

from graphql import GraphQLSchema, specified_scalar_types
from graphql.language.ast import (
    EnumTypeDefinitionNode,
    FieldDefinitionNode,
    FieldNode,
    InputObjectTypeDefinitionNode,
    InterfaceTypeDefinitionNode,
    NamedTypeNode,
    NameNode,
    ObjectTypeDefinitionNode,
    ScalarTypeDefinitionNode,
    UnionTypeDefinitionNode,
)
from graphql.language.character_classes import is_name_continue, is_name_start

from ..exceptions import SchemaCompositionError


class SchemaTransformError(SchemaCompositionError):
    """Parent of specific error classes."""


class SchemaStructureError(SchemaTransformError):
    """Raised if an input schema's structure is illegal.

    This may happen if an AST cannot be built into a schema, if the schema contains subscriptions,
    or if type extensions refer to types that do not exist.
    """


class InvalidNameError(SchemaTransformError):
    """Raised if a type/field would be renamed to a name that is not a valid GraphQL name.

    Valid names are made of letters, digits and underscores, do not start with a digit, and do not
    start with the "__" prefix reserved for introspection.
    """


class SchemaMergeNameConflictError(SchemaTransformError):
    """Raised when merging types or fields cause name conflicts.

    This may be raised if two merged schemas share an identically named root field or type, or if
    the gateway's own type definitions add a field that already exists.
    """


class SchemaRenameNameConflictError(SchemaTransformError):
    """Raised when renaming would give several types, or several fields of a type, one name."""

    # Maps each contested new type name to the original names of the types renamed to it.
    type_name_conflicts: Dict[str, Set[str]]

    # Maps type names to mappings from contested new field names to the original field names.
    field_name_conflicts: Dict[str, Dict[str, Set[str]]]

    def __init__(
        self,
        type_name_conflicts: Dict[str, Set[str]],
        field_name_conflicts: Dict[str, Dict[str, Set[str]]],
    ) -> None:
        """Record the conflicts, of which there must be at least one."""
        if not type_name_conflicts and not field_name_conflicts:
            raise ValueError(f"{type(self).__name__} requires at least one conflict.")
        super().__init__()
        self.type_name_conflicts = type_name_conflicts
        self.field_name_conflicts = field_name_conflicts

    def __str__(self) -> str:
        """List every conflict, in a stable order."""
        lines = []
        for new_type_name, original_names in sorted(self.type_name_conflicts.items()):
            lines.append(
                f'Types {sorted(original_names)} would all be renamed to "{new_type_name}".'
            )
        for type_name, conflicts in sorted(self.field_name_conflicts.items()):
            for new_field_name, original_names in sorted(conflicts.items()):
                lines.append(
                    f'Fields {sorted(original_names)} of type "{type_name}" would all be renamed '
                    f'to "{new_field_name}".'
                )
        return "\n".join(lines)


class NoOpRenamingError(SchemaTransformError):
    """Raised if renamings contain entries that change nothing.

    An entry changes nothing if it maps a name to itself, or if it names a type or field absent
    from the schema.
    """

    no_op_type_renames: Set[str]

    # Maps type names to the names of their fields whose renaming changes nothing.
    no_op_field_renames: Dict[str, Set[str]]

    def __init__(
        self, no_op_type_renames: Set[str], no_op_field_renames: Dict[str, Set[str]]
    ) -> None:
        """Record the ineffective renamings, of which there must be at least one."""
        if not no_op_type_renames and not no_op_field_renames:
            raise ValueError(f"{type(self).__name__} requires at least one renaming.")
        super().__init__()
        self.no_op_type_renames = no_op_type_renames
        self.no_op_field_renames = no_op_field_renames

    def __str__(self) -> str:
        """List the ineffective renamings, in a stable order."""
        lines = []
        if self.no_op_type_renames:
            lines.append(
                f"Renamings of types {sorted(self.no_op_type_renames)} change nothing: each type "
                f"is either renamed to its own name or absent from the schema."
            )
        for type_name, field_names in sorted(self.no_op_field_renames.items()):
            lines.append(
                f'Renamings of fields {sorted(field_names)} of type "{type_name}" change nothing: '
                f"each field is either renamed to its own name or absent from the type."
            )
        return "\n".join(lines)


_SCHEMA_IDENTIFIER_PATTERN = re.compile(r"[A-Za-z0-9_]+")


# Names of the scalar types every GraphQL schema has, e.g. String and ID.
builtin_scalar_type_names: FrozenSet[str] = frozenset(specified_scalar_types.keys())


# Definition nodes carrying a type name that a renaming may change.
RenameTypes = Union[
    EnumTypeDefinitionNode,
    InputObjectTypeDefinitionNode,
    InterfaceTypeDefinitionNode,
    NamedTypeNode,
    ObjectTypeDefinitionNode,
    ScalarTypeDefinitionNode,
    UnionTypeDefinitionNode,
]

RenameNodes = Union[
    RenameTypes,
    FieldNode,
    FieldDefinitionNode,
]
RenameNodesT = TypeVar("RenameNodesT", bound=RenameNodes)

_RENAMEABLE_NODE_CLASSES = (
    EnumTypeDefinitionNode,
    FieldDefinitionNode,
    FieldNode,
    InputObjectTypeDefinitionNode,
    InterfaceTypeDefinitionNode,
    NamedTypeNode,
    ObjectTypeDefinitionNode,
    ScalarTypeDefinitionNode,
    UnionTypeDefinitionNode,
)


def check_schema_identifier_is_valid(identifier: str) -> None:
    """Check that a schema id is a nonempty string of letters, digits and underscores.

    Raises:
        ValueError if it is not
    """
    if not isinstance(identifier, str):
        raise ValueError(f"Schema identifier {identifier!r} is not a string.")
    if not _SCHEMA_IDENTIFIER_PATTERN.fullmatch(identifier):
        raise ValueError(
            f'Schema identifier "{identifier}" must be a nonempty string of letters, digits and '
            f"underscores."
        )


def is_valid_nonreserved_name(name: str) -> bool:
    """Return whether name is a valid GraphQL name not reserved for introspection."""
    if not name or name.startswith("__") or not is_name_start(name[0]):
        return False
    return all(is_name_continue(char) for char in name[1:])


def get_query_type_name(schema: GraphQLSchema) -> str:
    """Get the name of the query type of the input schema (e.g. Query)."""
    if schema.query_type is None:
        raise SchemaStructureError("Schema has no query type.")
    return schema.query_type.name


def get_root_type_names(schema: GraphQLSchema) -> Dict[str, str]:
    """Map the operations supported by the schema ("query", "mutation") to their root type names.

    Raises:
        SchemaStructureError if the schema has no query type or has a subscription type
    """
    if schema.subscription_type is not None:
        raise SchemaStructureError("Schemas containing subscriptions are not supported.")
    root_type_names = {"query": get_query_type_name(schema)}
    if schema.mutation_type is not None:
        root_type_names["mutation"] = schema.mutation_type.name
    return root_type_names


def get_copy_of_node_with_new_name(node: RenameNodesT, new_name: str) -> RenameNodesT:
    """Return a shallow copy of a type or field node, carrying new_name."""
    if not isinstance(node, _RENAMEABLE_NODE_CLASSES):
        raise AssertionError(
            f"Unreachable code reached. Cannot rename node {node} of type "
            f"{type(node).__name__}."
        )
    node_with_new_name = copy(node)
    node_with_new_name.name = NameNode(value=new_name)
    return node_with_new_name
