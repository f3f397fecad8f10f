# Copyright 2021-present Kensho Technologies, LLC.
from collections import OrderedDict
from copy import copy
from dataclasses import dataclass
import logging
from typing import Dict, List, Mapping, Optional, Tuple, Union

from graphql import GraphQLError, build_ast_schema, parse
from graphql.error import GraphQLSyntaxError
from graphql.language.ast import (
    DirectiveDefinitionNode,
    DocumentNode,
    EnumTypeDefinitionNode,
    FieldDefinitionNode,
    InputObjectTypeDefinitionNode,
    InterfaceTypeDefinitionNode,
    NamedTypeNode,
    NameNode,
    ObjectTypeDefinitionNode,
    ObjectTypeExtensionNode,
    OperationType,
    OperationTypeDefinitionNode,
    ScalarTypeDefinitionNode,
    SchemaDefinitionNode,
    TypeDefinitionNode,
    UnionTypeDefinitionNode,
)
from graphql.language.printer import print_ast
from graphql.type import GraphQLSchema

from .utils import (
    SchemaMergeNameConflictError,
    SchemaStructureError,
    builtin_scalar_type_names,
    check_schema_identifier_is_valid,
    get_root_type_names,
)


logger = logging.getLogger(__name__)


# Names of the root operation types of the merged schema.
MERGED_ROOT_TYPE_NAMES: Dict[str, str] = {"query": "Query", "mutation": "Mutation"}

# Schema id recorded for types and root fields defined by the gateway's own type definitions.
GATEWAY_SCHEMA_ID = "gateway"


@dataclass(frozen=True)
class MergedSchemaDescriptor:
    """Describes a merged schema."""

    # Both representing the merged schema.
    schema_ast: DocumentNode
    schema: GraphQLSchema

    # Mapping type name to the id of its schema. Includes interface, object, union, enum and input
    # object types. Excludes scalars and directives because the same scalars and directives may be
    # defined in several schemas.
    type_name_to_schema_id: Dict[str, str]

    # Mapping operation ("query", "mutation") to a mapping of each of its root field names to the
    # id of the schema owning the root field.
    root_field_to_schema_id: Dict[str, Dict[str, str]]


GenericTypeDefinition = Union[
    EnumTypeDefinitionNode,
    InputObjectTypeDefinitionNode,
    InterfaceTypeDefinitionNode,
    ObjectTypeDefinitionNode,
    UnionTypeDefinitionNode,
]


class _MergeState:
    """Mutable accumulator of the definitions making up the merged schema."""

    def __init__(self) -> None:
        # Type definitions in insertion order, keyed by type name, root types included.
        self.definitions: "OrderedDict[str, TypeDefinitionNode]" = OrderedDict()
        self.root_fields: Dict[str, List[FieldDefinitionNode]] = {
            operation: [] for operation in MERGED_ROOT_TYPE_NAMES
        }
        self.root_field_to_schema_id: Dict[str, Dict[str, str]] = {
            operation: {} for operation in MERGED_ROOT_TYPE_NAMES
        }
        self.type_name_to_schema_id: Dict[str, str] = {}
        self.scalars: Dict[str, ScalarTypeDefinitionNode] = {}
        self.directives: Dict[str, DirectiveDefinitionNode] = {}


def merge_schemas(
    schema_id_to_ast: Mapping[str, DocumentNode],
    extra_type_defs: Optional[str] = None,
) -> MergedSchemaDescriptor:
    """Merge all input schemas and the gateway's own type definitions.

    The merged schema will contain all object, interface, union, enum, input object, scalar, and
    directive definitions from input schemas. The fields of its Query (and Mutation) root type
    will be the union of the fields of the corresponding root types of each input schema, whatever
    their names are in the input schemas.

    The extra type definitions may define new types, and add fields to existing object types
    either through a type extension ("extend type StateMeta { ... }") or through a plain type
    definition reusing the name of an existing type ("type StateMeta { ... }"). Root fields are
    added the same way, through the Query or Mutation type.

    Args:
        schema_id_to_ast: Mapping names/identifiers of schemas to their corresponding ASTs. The
                          merge follows the iteration order of the mapping. The ASTs will not be
                          modified by this function.
        extra_type_defs: SDL of the types and fields defined by the gateway itself.

    Returns:
        MergedSchemaDescriptor describing the merged schema.

    Raises:
        - ValueError if some schema identifier is not a nonempty string of alphanumeric
          characters and underscores, or if there is no input schema
        - SchemaStructureError if an input schema is not a valid schema or contains subscriptions,
          if extra_type_defs cannot be parsed, or if it extends a type that does not exist
        - SchemaMergeNameConflictError if there are conflicts between the names of types,
          conflicts between root fields or fields added by extra_type_defs, or conflicts between
          the definitions of directives or scalars with the same name
    """
    if not schema_id_to_ast:
        raise ValueError("Expected at least one schema to merge.")

    state = _MergeState()
    for current_schema_id, current_ast in schema_id_to_ast.items():
        _accumulate_types(state, current_schema_id, current_ast)

    if extra_type_defs:
        _accumulate_extra_type_defs(state, extra_type_defs)

    merged_schema_ast = _build_merged_schema_ast(state)
    try:
        merged_schema = build_ast_schema(merged_schema_ast)
    except (GraphQLError, TypeError) as e:
        raise SchemaStructureError(f"The merged schema is not a valid schema: {e}") from e

    logger.info(
        "Merged %d schemas into a schema with %d types.",
        len(schema_id_to_ast),
        len(merged_schema.type_map),
    )
    return MergedSchemaDescriptor(
        schema_ast=merged_schema_ast,
        schema=merged_schema,
        type_name_to_schema_id=state.type_name_to_schema_id,
        root_field_to_schema_id=state.root_field_to_schema_id,
    )


def _accumulate_types(
    state: _MergeState, current_schema_id: str, current_ast: DocumentNode
) -> None:
    """Add all types and root type fields of current_ast into the merge state.

    Args:
        state: accumulated definitions of the merged schema, updated in place.
        current_schema_id: identifier of the schema being merged.
        current_ast: representing the schema being merged.

    Raises:
        - ValueError if the schema identifier is not a nonempty string of alphanumeric
          characters and underscores
        - SchemaStructureError if the AST does not represent a valid schema, or if the schema
          contains subscriptions
        - SchemaMergeNameConflictError if there are conflicts between the names of types or root
          fields, or conflicts between the definition of directives or scalars with the same name
    """
    check_schema_identifier_is_valid(current_schema_id)
    try:
        current_schema = build_ast_schema(current_ast)
    except (GraphQLError, TypeError) as e:
        raise SchemaStructureError(
            f'Schema "{current_schema_id}" does not define a valid schema: {e}'
        ) from e
    operation_by_root_type_name = {
        root_type_name: operation
        for operation, root_type_name in get_root_type_names(current_schema).items()
    }

    for new_definition in current_ast.definitions:
        if isinstance(new_definition, SchemaDefinitionNode):
            continue
        elif (
            isinstance(new_definition, ObjectTypeDefinitionNode)
            and new_definition.name.value in operation_by_root_type_name
        ):  # root type definition
            operation = operation_by_root_type_name[new_definition.name.value]
            _add_root_fields(state, operation, new_definition.fields, current_schema_id)
        elif isinstance(new_definition, DirectiveDefinitionNode):
            _process_directive_definition(state, new_definition)
        elif isinstance(new_definition, ScalarTypeDefinitionNode):
            _process_scalar_definition(state, new_definition, current_schema_id)
        elif isinstance(
            new_definition,
            (
                EnumTypeDefinitionNode,
                InputObjectTypeDefinitionNode,
                InterfaceTypeDefinitionNode,
                ObjectTypeDefinitionNode,
                UnionTypeDefinitionNode,
            ),
        ):
            _process_generic_type_definition(state, new_definition, current_schema_id)
        else:
            raise SchemaStructureError(
                f'Schema "{current_schema_id}" contains a definition of unsupported kind '
                f'"{type(new_definition).__name__}".'
            )


def _add_root_fields(
    state: _MergeState,
    operation: str,
    field_definitions: Tuple[FieldDefinitionNode, ...],
    schema_id: str,
) -> None:
    """Add root fields of a schema, raising if another schema already defines one of them."""
    existing_root_fields = state.root_field_to_schema_id[operation]
    for field_definition in field_definitions:
        field_name = field_definition.name.value
        if field_name in existing_root_fields:
            raise SchemaMergeNameConflictError(
                f'Root field "{field_name}" of operation "{operation}" in schema "{schema_id}" '
                f'clashes with the root field of the same name in schema '
                f'"{existing_root_fields[field_name]}". Consider renaming the field in either '
                f"schema before merging, to avoid conflicts."
            )
        existing_root_fields[field_name] = schema_id
        state.root_fields[operation].append(field_definition)


def _process_directive_definition(state: _MergeState, directive: DirectiveDefinitionNode) -> None:
    """Compare new directive against existing directives, update records."""
    directive_name = directive.name.value
    if directive_name in state.directives:
        if print_ast(directive) == print_ast(state.directives[directive_name]):
            return
        raise SchemaMergeNameConflictError(
            f'Directive "{directive_name}" is defined as "{print_ast(directive)}" in one schema '
            f'and as "{print_ast(state.directives[directive_name])}" in another.'
        )
    state.directives[directive_name] = directive


def _process_scalar_definition(
    state: _MergeState, scalar: ScalarTypeDefinitionNode, schema_id: str
) -> None:
    """Compare new scalar against existing scalars and types, update records."""
    scalar_name = scalar.name.value
    if scalar_name in builtin_scalar_type_names:
        return
    if scalar_name in state.type_name_to_schema_id:
        existing_schema_id = state.type_name_to_schema_id[scalar_name]
        raise SchemaMergeNameConflictError(
            f'New scalar "{scalar_name}" in schema "{schema_id}" clashes with existing type '
            f'"{scalar_name}" in schema "{existing_schema_id}". Consider renaming type '
            f'"{scalar_name}" in schema "{existing_schema_id}" before merging, to avoid conflicts.'
        )
    if scalar_name in state.scalars:
        # Scalars of the same name in several schemas are the same scalar, unless their
        # definitions (e.g. their @specifiedBy directives) differ.
        if print_ast(_without_description(scalar)) != print_ast(
            _without_description(state.scalars[scalar_name])
        ):
            raise SchemaMergeNameConflictError(
                f'Scalar "{scalar_name}" in schema "{schema_id}" has a definition differing from '
                f"a scalar of the same name merged before: {print_ast(scalar)} versus "
                f"{print_ast(state.scalars[scalar_name])}"
            )
        return
    state.scalars[scalar_name] = scalar
    state.definitions[scalar_name] = scalar


def _process_generic_type_definition(
    state: _MergeState, generic_type: GenericTypeDefinition, schema_id: str
) -> None:
    """Compare new type against existing scalars and types, update records."""
    type_name = generic_type.name.value
    if type_name in state.scalars or type_name in builtin_scalar_type_names:
        raise SchemaMergeNameConflictError(
            f'New type "{type_name}" in schema "{schema_id}" clashes with existing scalar. '
            f'Consider renaming type "{type_name}" in schema "{schema_id}" '
            f"before merging, to avoid conflicts."
        )
    if type_name in MERGED_ROOT_TYPE_NAMES.values():
        raise SchemaMergeNameConflictError(
            f'Type "{type_name}" in schema "{schema_id}" is not a root type of its schema, but '
            f"clashes with the name of a root type of the merged schema. Consider renaming type "
            f'"{type_name}" in schema "{schema_id}" before merging, to avoid conflicts.'
        )
    if type_name in state.type_name_to_schema_id:
        existing_schema_id = state.type_name_to_schema_id[type_name]
        raise SchemaMergeNameConflictError(
            f'New type "{type_name}" in schema "{schema_id}" clashes with existing type '
            f'"{type_name}" in schema "{existing_schema_id}". Consider renaming '
            f'type "{type_name}" in either schema before merging, to avoid conflicts.'
        )
    state.definitions[type_name] = generic_type
    state.type_name_to_schema_id[type_name] = schema_id


def _accumulate_extra_type_defs(state: _MergeState, extra_type_defs: str) -> None:
    """Add the types and fields defined by the gateway itself into the merge state.

    Raises:
        - SchemaStructureError if extra_type_defs cannot be parsed, contains definitions other
          than types and type extensions, or extends a type that does not exist
        - SchemaMergeNameConflictError if a new type or field clashes with an existing one
    """
    try:
        extra_ast = parse(extra_type_defs, no_location=True)
    except GraphQLSyntaxError as e:
        raise SchemaStructureError(f"Could not parse the gateway type definitions: {e}") from e

    operation_by_root_type_name = {
        root_type_name: operation for operation, root_type_name in MERGED_ROOT_TYPE_NAMES.items()
    }
    for definition in extra_ast.definitions:
        if isinstance(definition, (ObjectTypeDefinitionNode, ObjectTypeExtensionNode)):
            type_name = definition.name.value
            if type_name in operation_by_root_type_name:
                _add_root_fields(
                    state,
                    operation_by_root_type_name[type_name],
                    definition.fields,
                    GATEWAY_SCHEMA_ID,
                )
            elif type_name in state.definitions:
                _add_fields_to_existing_type(state, type_name, definition.fields)
            elif isinstance(definition, ObjectTypeExtensionNode):
                raise SchemaStructureError(
                    f'The gateway type definitions extend type "{type_name}", which does not '
                    f"exist in any schema."
                )
            else:
                _process_generic_type_definition(state, definition, GATEWAY_SCHEMA_ID)
        elif isinstance(definition, ScalarTypeDefinitionNode):
            _process_scalar_definition(state, definition, GATEWAY_SCHEMA_ID)
        elif isinstance(definition, DirectiveDefinitionNode):
            _process_directive_definition(state, definition)
        elif isinstance(
            definition,
            (
                EnumTypeDefinitionNode,
                InputObjectTypeDefinitionNode,
                InterfaceTypeDefinitionNode,
                UnionTypeDefinitionNode,
            ),
        ):
            _process_generic_type_definition(state, definition, GATEWAY_SCHEMA_ID)
        else:
            raise SchemaStructureError(
                f"The gateway type definitions contain a definition of unsupported kind "
                f'"{type(definition).__name__}".'
            )


def _add_fields_to_existing_type(
    state: _MergeState, type_name: str, field_definitions: Tuple[FieldDefinitionNode, ...]
) -> None:
    """Add fields defined by the gateway to an existing object type."""
    existing_definition = state.definitions[type_name]
    if not isinstance(existing_definition, ObjectTypeDefinitionNode):
        raise SchemaStructureError(
            f'The gateway type definitions add fields to "{type_name}", which is not an object '
            f"type but a {type(existing_definition).__name__}."
        )
    existing_field_names = {field.name.value for field in existing_definition.fields}
    for field_definition in field_definitions:
        field_name = field_definition.name.value
        if field_name in existing_field_names:
            raise SchemaMergeNameConflictError(
                f'The gateway type definitions add field "{field_name}" to type "{type_name}" '
                f'of schema "{state.type_name_to_schema_id[type_name]}", which already has a '
                f"field of that name."
            )
        existing_field_names.add(field_name)
    new_definition = copy(existing_definition)
    new_definition.fields = tuple(existing_definition.fields) + tuple(field_definitions)
    state.definitions[type_name] = new_definition


def _without_description(node: ScalarTypeDefinitionNode) -> ScalarTypeDefinitionNode:
    """Return a copy of the scalar definition without its description."""
    node_without_description = copy(node)
    node_without_description.description = None
    return node_without_description


def _build_merged_schema_ast(state: _MergeState) -> DocumentNode:
    """Assemble the merged schema AST, with a schema definition naming its root types."""
    if not state.root_fields["query"]:
        raise SchemaStructureError("The merged schema has no query root fields.")

    operation_types = []
    root_type_definitions = []
    for operation, root_type_name in MERGED_ROOT_TYPE_NAMES.items():
        fields = state.root_fields[operation]
        if not fields:
            continue
        operation_types.append(
            OperationTypeDefinitionNode(
                operation=OperationType(operation),
                type=NamedTypeNode(name=NameNode(value=root_type_name)),
            )
        )
        root_type_definitions.append(
            ObjectTypeDefinitionNode(
                name=NameNode(value=root_type_name),
                fields=tuple(fields),
                interfaces=(),
                directives=(),
            )
        )

    return DocumentNode(
        definitions=(
            SchemaDefinitionNode(operation_types=tuple(operation_types), directives=()),
            *root_type_definitions,
            *state.definitions.values(),
            *state.directives.values(),
        )
    )
