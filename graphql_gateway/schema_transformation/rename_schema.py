# Copyright 2021-present Kensho Technologies, LLC.
"""Rename the types and fields of a backend's schema, to namespace it inside the gateway.

A type renaming applies everywhere the type is named: its definition, field and argument types,
union members and implemented interfaces. For example, renaming the covid backend's StringFilter
to CovidStringFilter turns
    input StringFilter { in: [String!] }
    input StateMetaFilter { stateFipsCode: StringFilter }
into
    input CovidStringFilter { in: [String!] }
    input StateMetaFilter { stateFipsCode: CovidStringFilter }

Field renamings are keyed by the original name of the object type owning the fields, root
operation types included:
    field_renamings == {"Query": {"allStateMetas": "covidStateMetas"}}

Restrictions:
- Root operation types and built-in scalars keep their names.
- Fields of interfaces, and of object types implementing interfaces, keep their names.
- New names must be valid GraphQL names that do not start with "__".
- No two types, and no two fields of one type, may end up with the same name.
- Every renaming must change the name of a type or field that exists.
"""
from collections import namedtuple
from copy import copy
from typing import Any, Dict, List, Mapping, Set, Union, cast

from graphql import DocumentNode, GraphQLError, Node, ObjectTypeDefinitionNode, build_ast_schema
from graphql.language.ast import (
    EnumTypeDefinitionNode,
    InputObjectTypeDefinitionNode,
    InterfaceTypeDefinitionNode,
    NamedTypeNode,
    ScalarTypeDefinitionNode,
    UnionTypeDefinitionNode,
)
from graphql.language.visitor import IDLE, Visitor, VisitorAction, visit

from .utils import (
    InvalidNameError,
    NoOpRenamingError,
    RenameTypes,
    SchemaRenameNameConflictError,
    SchemaStructureError,
    builtin_scalar_type_names,
    get_copy_of_node_with_new_name,
    get_root_type_names,
    is_valid_nonreserved_name,
)


RenamedSchemaDescriptor = namedtuple(
    "RenamedSchemaDescriptor",
    (
        "schema_ast",  # DocumentNode of the renamed schema
        "schema",  # GraphQLSchema built from schema_ast
        "reverse_name_map",  # Dict[str, str], new type name -> original name, changed names only
        # Dict[str, Dict[str, str]], original type name -> new field name -> original field name,
        # changed names only
        "reverse_field_name_map",
    ),
)


# Visitor methods return a replacement node, or a VisitorAction such as IDLE to keep the node.
VisitorReturnType = Union[Node, VisitorAction]

# Nodes naming a type, either by defining it or by referring to it.
_TYPE_NODE_CLASSES = (
    EnumTypeDefinitionNode,
    InputObjectTypeDefinitionNode,
    InterfaceTypeDefinitionNode,
    NamedTypeNode,
    ObjectTypeDefinitionNode,
    ScalarTypeDefinitionNode,
    UnionTypeDefinitionNode,
)


def rename_schema(
    schema_ast: DocumentNode,
    type_renamings: Mapping[str, str],
    field_renamings: Mapping[str, Mapping[str, str]],
) -> RenamedSchemaDescriptor:
    """Apply type and field renamings to a schema AST, without modifying it.

    Directives and enum values are never renamed.

    Args:
        schema_ast: a valid schema without subscriptions
        type_renamings: original type name -> new type name
        field_renamings: original object type name -> original field name -> new field name

    Returns:
        RenamedSchemaDescriptor of the renamed schema

    Raises:
        - SchemaStructureError if the AST is not a valid schema, or has a subscription type
        - InvalidNameError if a new name is not a valid GraphQL name, or a built-in scalar would
          be renamed
        - SchemaRenameNameConflictError if types, or fields of one type, would share a name
        - NotImplementedError if fields of interfaces or of their implementations would be renamed
        - NoOpRenamingError if a renaming would change nothing
    """
    try:
        schema = build_ast_schema(schema_ast)
    except (GraphQLError, TypeError) as e:
        raise SchemaStructureError(f"Input schema does not define a valid schema: {e}") from e
    root_type_names = frozenset(get_root_type_names(schema).values())

    visitor = RenameSchemaTypesVisitor(type_renamings, field_renamings, root_type_names)
    renamed_schema_ast = visit(schema_ast, visitor)
    _raise_for_renaming_errors(visitor, type_renamings, field_renamings)

    reverse_field_name_map = {}
    for type_name, field_names in visitor.reverse_field_name_map.items():
        changed_field_names = {
            new_name: original_name
            for new_name, original_name in field_names.items()
            if new_name != original_name
        }
        if changed_field_names:
            reverse_field_name_map[type_name] = changed_field_names
    return RenamedSchemaDescriptor(
        schema_ast=renamed_schema_ast,
        schema=build_ast_schema(renamed_schema_ast),
        reverse_name_map={
            new_name: original_name
            for new_name, original_name in visitor.reverse_name_map.items()
            if new_name != original_name
        },
        reverse_field_name_map=reverse_field_name_map,
    )


def _raise_for_renaming_errors(
    visitor: "RenameSchemaTypesVisitor",
    type_renamings: Mapping[str, str],
    field_renamings: Mapping[str, Mapping[str, str]],
) -> None:
    """Raise the first kind of error that the visitor collected while renaming, if any."""
    invalid_renamings = [
        f'type "{original_name}" to "{new_name}"'
        for original_name, new_name in sorted(visitor.invalid_type_names.items())
    ]
    for type_name, renamings in sorted(visitor.invalid_field_names.items()):
        invalid_renamings.extend(
            f'field "{type_name}.{original_name}" to "{new_name}"'
            for original_name, new_name in sorted(renamings.items())
        )
    if invalid_renamings:
        raise InvalidNameError(
            f"New names must be valid GraphQL names not starting with a double underscore, but "
            f"the renamings would rename {', '.join(invalid_renamings)}."
        )

    builtin_scalar_renamings = sorted(builtin_scalar_type_names & set(type_renamings))
    if builtin_scalar_renamings:
        raise InvalidNameError(
            f"Built-in scalar types cannot be renamed, but type_renamings renames "
            f"{builtin_scalar_renamings}."
        )

    if visitor.type_name_conflicts or visitor.field_name_conflicts:
        raise SchemaRenameNameConflictError(
            visitor.type_name_conflicts, visitor.field_name_conflicts
        )

    if visitor.types_involving_interfaces_with_field_renamings:
        raise NotImplementedError(
            f"Fields of interfaces and of types implementing interfaces cannot be renamed, but "
            f"field_renamings has entries for "
            f"{sorted(visitor.types_involving_interfaces_with_field_renamings)}."
        )

    renamed_types = {
        original_name
        for renamed_name, original_name in visitor.reverse_name_map.items()
        if renamed_name != original_name
    }
    no_op_type_renames = set(type_renamings) - renamed_types
    no_op_field_renames = dict(visitor.no_op_field_renamings)
    # Field renamings for types that are not object types of the original schema never apply.
    for type_name in set(field_renamings) - visitor.types_with_field_renamings_processed:
        no_op_field_renames.setdefault(type_name, set()).update(field_renamings[type_name])
    if no_op_type_renames or no_op_field_renames:
        raise NoOpRenamingError(no_op_type_renames, no_op_field_renames)


class RenameSchemaTypesVisitor(Visitor):
    """Rename the type definitions, type references and object fields of a schema AST.

    Problems are recorded rather than raised, so that one error can report all of them.
    """

    # New type name -> original type name, for every type including unchanged ones, the root types
    # and the built-in scalars.
    reverse_name_map: Dict[str, str]

    # New type name -> original names of the several types that would take it.
    type_name_conflicts: Dict[str, Set[str]]

    # Original type name -> the invalid name it would be renamed to.
    invalid_type_names: Dict[str, str]

    # Original type name -> new field name -> original field name.
    reverse_field_name_map: Dict[str, Dict[str, str]]

    # Original type name -> names in its field renamings that are absent or renamed to themselves.
    no_op_field_renamings: Dict[str, Set[str]]

    # Object types whose field renamings were applied.
    types_with_field_renamings_processed: Set[str]

    # Original type name -> original field name -> the invalid name it would be renamed to.
    invalid_field_names: Dict[str, Dict[str, str]]

    # Original type name -> new field name -> original names of the several fields taking it.
    field_name_conflicts: Dict[str, Dict[str, Set[str]]]

    # Interfaces and implementers of interfaces that field_renamings has entries for.
    types_involving_interfaces_with_field_renamings: Set[str]

    def __init__(
        self,
        type_renamings: Mapping[str, str],
        field_renamings: Mapping[str, Mapping[str, str]],
        root_type_names: Set[str],
    ) -> None:
        """Create a visitor applying the given renamings; root types keep their names."""
        super().__init__()
        self.type_renamings = type_renamings
        self.field_renamings = field_renamings
        self.root_type_names = root_type_names
        self.reverse_name_map = {
            type_name: type_name for type_name in builtin_scalar_type_names | root_type_names
        }
        self.type_name_conflicts = {}
        self.invalid_type_names = {}
        self.reverse_field_name_map = {}
        self.no_op_field_renamings = {}
        self.types_with_field_renamings_processed = set()
        self.invalid_field_names = {}
        self.field_name_conflicts = {}
        self.types_involving_interfaces_with_field_renamings = set()

    def _rename_type_node(self, node: RenameTypes) -> VisitorReturnType:
        """Return the renamed copy of a type definition or reference, or IDLE to keep it.

        Root operation types keep their names, but their fields may be renamed.
        """
        type_name = node.name.value
        if type_name in builtin_scalar_type_names:
            return IDLE

        new_node = node
        if isinstance(node, ObjectTypeDefinitionNode):
            new_node = self._rename_fields(node)
        elif isinstance(node, InterfaceTypeDefinitionNode) and type_name in self.field_renamings:
            self.types_involving_interfaces_with_field_renamings.add(type_name)

        new_type_name = type_name
        if type_name not in self.root_type_names:
            new_type_name = self.type_renamings.get(type_name, type_name)
            self._record_type_name(type_name, new_type_name)

        if new_type_name != type_name:
            return get_copy_of_node_with_new_name(new_node, new_type_name)
        return IDLE if new_node is node else new_node

    def _record_type_name(self, type_name: str, new_type_name: str) -> None:
        if not is_valid_nonreserved_name(new_type_name):
            self.invalid_type_names[type_name] = new_type_name
        existing_type_name = self.reverse_name_map.setdefault(new_type_name, type_name)
        if existing_type_name != type_name:
            self.type_name_conflicts.setdefault(new_type_name, {existing_type_name}).add(
                type_name
            )

    def _rename_fields(self, node: ObjectTypeDefinitionNode) -> ObjectTypeDefinitionNode:
        """Return a copy of the node with renamed fields, or the node if none are renamed."""
        type_name = node.name.value
        if type_name not in self.field_renamings:
            return node
        if node.interfaces:
            self.types_involving_interfaces_with_field_renamings.add(type_name)
        renamings = self.field_renamings[type_name]
        self.types_with_field_renamings_processed.add(type_name)
        reverse_field_names = self.reverse_field_name_map.setdefault(type_name, {})

        original_field_names = {field_node.name.value for field_node in node.fields}
        no_op_renamings = {
            field_name
            for field_name, new_field_name in renamings.items()
            if field_name not in original_field_names or new_field_name == field_name
        }
        if no_op_renamings:
            self.no_op_field_renamings.setdefault(type_name, set()).update(no_op_renamings)

        new_field_nodes = []
        for field_node in node.fields:
            field_name = field_node.name.value
            new_field_name = renamings.get(field_name, field_name)
            if not is_valid_nonreserved_name(new_field_name):
                self.invalid_field_names.setdefault(type_name, {})[field_name] = new_field_name
            if new_field_name in reverse_field_names:
                self.field_name_conflicts.setdefault(type_name, {}).setdefault(
                    new_field_name, {reverse_field_names[new_field_name]}
                ).add(field_name)
            reverse_field_names[new_field_name] = field_name
            if new_field_name != field_name:
                field_node = get_copy_of_node_with_new_name(field_node, new_field_name)
            new_field_nodes.append(field_node)

        new_type_node = copy(node)
        new_type_node.fields = tuple(new_field_nodes)
        return new_type_node

    def enter(
        self,
        node: Node,
        key: Any,
        parent: Any,
        path: List[Any],
        ancestors: List[Any],
    ) -> VisitorReturnType:
        """Rename type definitions and type references; leave every other node as it is."""
        if isinstance(node, _TYPE_NODE_CLASSES):
            return self._rename_type_node(cast(RenameTypes, node))
        return IDLE
