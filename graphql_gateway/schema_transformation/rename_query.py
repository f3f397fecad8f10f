# Copyright 2021-present Kensho Technologies, LLC.
from typing import Any, Dict, List, Union

from graphql import TypeInfo, TypeInfoVisitor
from graphql.language.ast import (
    DocumentNode,
    FieldNode,
    NamedTypeNode,
    NameNode,
    OperationDefinitionNode,
)
from graphql.language.visitor import Visitor, VisitorAction, visit
from graphql.validation import validate

from ..exceptions import GraphQLValidationError
from .rename_schema import RenamedSchemaDescriptor
from .utils import get_copy_of_node_with_new_name


def rename_query(
    ast: DocumentNode, renamed_schema_descriptor: RenamedSchemaDescriptor
) -> DocumentNode:
    """Translate a document written against a renamed schema back to the original names.

    Type references (in inline fragments and variable definitions) and field names are translated.
    A renamed field without an alias is aliased to its renamed name, so that the original schema
    answers with the response keys the document's author expects.

    Args:
        ast: a single operation, without fragment definitions, valid against the renamed schema
        renamed_schema_descriptor: the result of renaming the schema the backend serves

    Returns:
        DocumentNode to send to the backend, or the input AST itself if nothing was renamed

    Raises:
        GraphQLValidationError if the document does not validate against the renamed schema, has
        several definitions, or selects anything but fields at its root
    """
    validation_errors = validate(renamed_schema_descriptor.schema, ast)
    if validation_errors:
        messages = "; ".join(error.message for error in validation_errors)
        raise GraphQLValidationError(f"The document is not valid for the schema: {messages}")

    if len(ast.definitions) != 1:
        raise GraphQLValidationError(
            f"Expected exactly one operation and no fragment definitions, but got "
            f"{len(ast.definitions)} definitions."
        )
    operation_definition = ast.definitions[0]
    if not isinstance(operation_definition, OperationDefinitionNode):
        raise AssertionError(
            f"Unreachable code reached. Validation accepted a document whose only definition is "
            f"a {type(operation_definition).__name__}."
        )
    for selection in operation_definition.selection_set.selections:
        if not isinstance(selection, FieldNode):
            raise GraphQLValidationError(
                f"Root selections must be fields, but got a {type(selection).__name__}."
            )

    reverse_name_map = renamed_schema_descriptor.reverse_name_map
    reverse_field_name_map = renamed_schema_descriptor.reverse_field_name_map
    if not reverse_name_map and not reverse_field_name_map:
        return ast

    type_info = TypeInfo(renamed_schema_descriptor.schema)
    visitor = RenameQueryVisitor(type_info, reverse_name_map, reverse_field_name_map)
    return visit(ast, TypeInfoVisitor(type_info, visitor))


class RenameQueryVisitor(Visitor):
    """Rename the type references and fields of a document, upon leaving them."""

    def __init__(
        self,
        type_info: TypeInfo,
        type_renamings: Dict[str, str],
        field_renamings: Dict[str, Dict[str, str]],
    ) -> None:
        """Create a visitor translating renamed names back to original names.

        Names are translated when leaving nodes, while type_info, kept current by the wrapping
        TypeInfoVisitor, still describes the renamed type a field belongs to.

        Args:
            type_info: TypeInfo of the renamed schema
            type_renamings: renamed type name -> original type name
            field_renamings: original type name -> renamed field name -> original field name
        """
        super().__init__()
        self.type_info = type_info
        self.type_renamings = type_renamings
        self.field_renamings = field_renamings

    def leave_named_type(
        self, node: NamedTypeNode, key: Any, parent: Any, path: List[Any], ancestors: List[Any]
    ) -> Union[NamedTypeNode, VisitorAction]:
        """Translate a type condition or the type of a variable definition."""
        name_string = node.name.value
        new_name_string = self.type_renamings.get(name_string, name_string)
        if new_name_string == name_string:
            return None
        return get_copy_of_node_with_new_name(node, new_name_string)

    def leave_field(
        self, node: FieldNode, key: Any, parent: Any, path: List[Any], ancestors: List[Any]
    ) -> Union[FieldNode, VisitorAction]:
        """Translate a field name, aliasing the field to its renamed name."""
        parent_type = self.type_info.get_parent_type()
        if parent_type is None:
            raise AssertionError(
                f"Field {node.name.value} has no parent type, which should have been caught by "
                f"validation. This is a bug."
            )
        parent_type_name = self.type_renamings.get(parent_type.name, parent_type.name)
        field_name = node.name.value
        original_field_name = self.field_renamings.get(parent_type_name, {}).get(
            field_name, field_name
        )
        if original_field_name == field_name:
            return None
        renamed_node = get_copy_of_node_with_new_name(node, original_field_name)
        if renamed_node.alias is None:
            renamed_node.alias = NameNode(value=field_name)
        return renamed_node
