# Copyright 2021-present Kensho Technologies, LLC.
"""Build the single-field operation sent to a backend on behalf of a gateway field.

The caller's selection is written against the gateway schema, which is a superset of the backend's
schema: it may select fields that only exist at the gateway (fields added by the gateway's own
type definitions), use fragments defined elsewhere in the client's document, and refer to the
client's variables. The operation sent to the backend only contains what the backend can answer,
plus the fields that gateway resolvers declared they need from their parent.
"""
from copy import copy
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from graphql import (
    GraphQLField,
    GraphQLInputObjectType,
    GraphQLInputType,
    GraphQLInterfaceType,
    GraphQLList,
    GraphQLNamedType,
    GraphQLNonNull,
    GraphQLObjectType,
    GraphQLResolveInfo,
    GraphQLSchema,
    GraphQLType,
    get_named_type,
    is_abstract_type,
    is_composite_type,
    is_leaf_type,
)
from graphql.language.ast import (
    ArgumentNode,
    DocumentNode,
    FieldNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    InlineFragmentNode,
    NameNode,
    OperationDefinitionNode,
    OperationType,
    SelectionNode,
    SelectionSetNode,
    VariableDefinitionNode,
    VariableNode,
)
from graphql.language.visitor import Visitor, visit
from graphql.utilities import type_from_ast

from ..ast_manipulation import get_type_ast, parse_selection_set
from ..exceptions import GraphQLValidationError


# Key of GraphQLField.extensions holding the selection set that a gateway resolver needs from the
# parent object of its field.
SELECTION_SET_HINT_KEY = "gateway_selection_set"

# Prefix of the names of the variables carrying the arguments of the delegated field.
DELEGATED_ARGUMENT_VARIABLE_PREFIX = "_gw_"

TYPENAME_FIELD_NODE = FieldNode(
    name=NameNode(value="__typename"), arguments=(), directives=(), selection_set=None
)


def get_selection_set_hint(field: Optional[GraphQLField]) -> Optional[SelectionSetNode]:
    """Return the selection set that the resolver of the gateway field needs from its parent."""
    if field is None or not field.extensions:
        return None
    hint = field.extensions.get(SELECTION_SET_HINT_KEY)
    if hint is None:
        return None
    if isinstance(hint, str):
        return parse_selection_set(hint)
    return hint


def serialize_input_value(value: Any, input_type: GraphQLInputType) -> Any:
    """Convert the Python value of an argument or variable into its JSON-compatible form.

    This is the inverse of graphql-core's input coercion: enum values become enum names, scalars
    are serialized by their type, and input objects become dicts keyed by field name.
    """
    if value is None:
        return None
    if isinstance(input_type, GraphQLNonNull):
        return serialize_input_value(value, input_type.of_type)
    if isinstance(input_type, GraphQLList):
        if isinstance(value, (list, tuple)):
            return [serialize_input_value(item, input_type.of_type) for item in value]
        return serialize_input_value(value, input_type.of_type)
    if isinstance(input_type, GraphQLInputObjectType):
        if not isinstance(value, dict):
            raise GraphQLValidationError(
                f'Expected a dict as value of input type "{input_type.name}", but got {value!r}.'
            )
        serialized = {}
        for field_name, field in input_type.fields.items():
            key = field.out_name or field_name
            if key in value:
                serialized[field_name] = serialize_input_value(value[key], field.type)
        unknown_keys = set(value) - {
            field.out_name or field_name for field_name, field in input_type.fields.items()
        }
        if unknown_keys:
            raise GraphQLValidationError(
                f'Input type "{input_type.name}" has no fields named {sorted(unknown_keys)}.'
            )
        return serialized
    if is_leaf_type(input_type):
        return input_type.serialize(value)
    raise AssertionError(f"Unreachable code reached. Unexpected input type {input_type}.")


class _VariableCollector(Visitor):
    """Collect the names of the variables referenced by an AST, in order of first appearance."""

    def __init__(self) -> None:
        super().__init__()
        self.variable_names: List[str] = []

    def enter_variable(self, node: VariableNode, *args: Any) -> None:
        name = node.name.value
        if name not in self.variable_names:
            self.variable_names.append(name)


def _get_field_definitions(graphql_type: Optional[GraphQLNamedType]) -> Dict[str, GraphQLField]:
    if isinstance(graphql_type, (GraphQLObjectType, GraphQLInterfaceType)):
        return graphql_type.fields
    return {}


class _SelectionFilter:
    """Filter selections written against the gateway schema down to a target schema."""

    def __init__(
        self,
        gateway_schema: GraphQLSchema,
        target_schema: GraphQLSchema,
        fragments: Dict[str, FragmentDefinitionNode],
    ) -> None:
        self.gateway_schema = gateway_schema
        self.target_schema = target_schema
        self.fragments = fragments

    def filter_selection_set(
        self,
        selections: Sequence[SelectionNode],
        gateway_type: Optional[GraphQLNamedType],
        target_type: GraphQLNamedType,
    ) -> SelectionSetNode:
        """Return the selection set of a composite field of the target type.

        __typename is added if the target type is abstract, since the gateway needs it to resolve
        the concrete type of results, and if no other selection remains.
        """
        filtered_selections = self.filter_selections(selections, gateway_type, target_type)
        if is_abstract_type(target_type) or not filtered_selections:
            if not any(
                isinstance(selection, FieldNode)
                and selection.alias is None
                and selection.name.value == "__typename"
                for selection in filtered_selections
            ):
                filtered_selections.append(TYPENAME_FIELD_NODE)
        return SelectionSetNode(selections=tuple(filtered_selections))

    def filter_selections(
        self,
        selections: Sequence[SelectionNode],
        gateway_type: Optional[GraphQLNamedType],
        target_type: GraphQLNamedType,
    ) -> List[SelectionNode]:
        filtered_selections: List[SelectionNode] = []
        for selection in selections:
            if isinstance(selection, FieldNode):
                filtered_selections.extend(
                    self._filter_field(selection, gateway_type, target_type)
                )
            elif isinstance(selection, FragmentSpreadNode):
                fragment_name = selection.name.value
                fragment = self.fragments.get(fragment_name)
                if fragment is None:
                    raise GraphQLValidationError(f'Unknown fragment "{fragment_name}".')
                inline_fragment = InlineFragmentNode(
                    type_condition=fragment.type_condition,
                    directives=selection.directives or (),
                    selection_set=fragment.selection_set,
                )
                filtered_selections.extend(
                    self._filter_inline_fragment(inline_fragment, gateway_type, target_type)
                )
            elif isinstance(selection, InlineFragmentNode):
                filtered_selections.extend(
                    self._filter_inline_fragment(selection, gateway_type, target_type)
                )
            else:
                raise AssertionError(
                    f"Unreachable code reached. Unexpected selection {type(selection).__name__}."
                )
        return filtered_selections

    def _filter_field(
        self,
        field_node: FieldNode,
        gateway_type: Optional[GraphQLNamedType],
        target_type: GraphQLNamedType,
    ) -> List[SelectionNode]:
        field_name = field_node.name.value
        gateway_field = _get_field_definitions(gateway_type).get(field_name)

        filtered_selections: List[SelectionNode] = []
        hint = get_selection_set_hint(gateway_field)
        if hint is not None:
            filtered_selections.extend(
                self.filter_selections(hint.selections, gateway_type, target_type)
            )

        if field_name == "__typename":
            filtered_selections.append(field_node)
            return filtered_selections

        target_field = _get_field_definitions(target_type).get(field_name)
        if target_field is None:
            # The field only exists at the gateway.
            return filtered_selections

        target_field_type = get_named_type(target_field.type)
        if field_node.selection_set is None or not is_composite_type(target_field_type):
            filtered_selections.append(field_node)
            return filtered_selections

        if gateway_field is not None:
            gateway_field_type = get_named_type(gateway_field.type)
        else:
            gateway_field_type = self.gateway_schema.get_type(target_field_type.name)
        filtered_field_node = copy(field_node)
        filtered_field_node.selection_set = self.filter_selection_set(
            field_node.selection_set.selections, gateway_field_type, target_field_type
        )
        filtered_selections.append(filtered_field_node)
        return filtered_selections

    def _filter_inline_fragment(
        self,
        inline_fragment: InlineFragmentNode,
        gateway_type: Optional[GraphQLNamedType],
        target_type: GraphQLNamedType,
    ) -> List[SelectionNode]:
        if inline_fragment.type_condition is not None:
            type_name = inline_fragment.type_condition.name.value
            fragment_target_type = self.target_schema.get_type(type_name)
            if fragment_target_type is None:
                # The fragment applies to a type the target schema does not have.
                return []
            gateway_type = self.gateway_schema.get_type(type_name)
            target_type = fragment_target_type

        filtered_selections = self.filter_selections(
            inline_fragment.selection_set.selections, gateway_type, target_type
        )
        if not filtered_selections:
            return []
        return [
            InlineFragmentNode(
                type_condition=inline_fragment.type_condition,
                directives=inline_fragment.directives or (),
                selection_set=SelectionSetNode(selections=tuple(filtered_selections)),
            )
        ]


def _get_root_type(target_schema: GraphQLSchema, operation: str) -> GraphQLObjectType:
    if operation == "query":
        root_type = target_schema.query_type
    elif operation == "mutation":
        root_type = target_schema.mutation_type
    else:
        raise GraphQLValidationError(
            f'Cannot delegate operation "{operation}", only queries and mutations are supported.'
        )
    if root_type is None:
        raise GraphQLValidationError(f'The target schema does not support "{operation}".')
    return root_type


def build_delegated_operation(
    target_schema: GraphQLSchema,
    operation: str,
    field_name: str,
    args: Dict[str, Any],
    info: GraphQLResolveInfo,
    selection_set: Optional[Union[str, SelectionSetNode]] = None,
    return_type: Optional[GraphQLType] = None,
) -> Tuple[DocumentNode, Dict[str, Any]]:
    """Build the document and variables delegating a gateway field to one root field of a schema.

    Args:
        target_schema: schema to delegate to, with the names exposed by the gateway
        operation: "query" or "mutation", the operation type of the delegated document
        field_name: root field of the target schema to select
        args: Python values of the arguments to call the root field with
        info: resolve info of the gateway field being resolved; its field nodes provide the
              caller's selection
        selection_set: extra selection to request on the root field, as SDL string or AST
        return_type: gateway type of the caller's selection, if it differs from the return type of
                     the gateway field being resolved

    Returns:
        tuple (document, variables): the document selects exactly the root field, and variables
        holds the JSON-compatible values of the variables it declares

    Raises:
        GraphQLValidationError if the target schema has no such root field or argument
    """
    root_type = _get_root_type(target_schema, operation)
    target_field = root_type.fields.get(field_name)
    if target_field is None:
        raise GraphQLValidationError(
            f'The target schema has no root field "{field_name}" for operation "{operation}".'
        )

    variables: Dict[str, Any] = {}
    variable_definitions: List[VariableDefinitionNode] = []
    argument_nodes: List[ArgumentNode] = []
    for arg_name, arg_value in args.items():
        target_argument = target_field.args.get(arg_name)
        if target_argument is None:
            raise GraphQLValidationError(
                f'Root field "{field_name}" of the target schema has no argument "{arg_name}".'
            )
        variable_name = DELEGATED_ARGUMENT_VARIABLE_PREFIX + arg_name
        variables[variable_name] = serialize_input_value(arg_value, target_argument.type)
        variable_definitions.append(
            VariableDefinitionNode(
                variable=VariableNode(name=NameNode(value=variable_name)),
                type=get_type_ast(target_argument.type),
                default_value=None,
                directives=(),
            )
        )
        argument_nodes.append(
            ArgumentNode(
                name=NameNode(value=arg_name),
                value=VariableNode(name=NameNode(value=variable_name)),
            )
        )

    target_field_type = get_named_type(target_field.type)
    root_selection_set = None
    if is_composite_type(target_field_type):
        caller_selections: List[SelectionNode] = []
        for field_node in info.field_nodes:
            if field_node.selection_set is not None:
                caller_selections.extend(field_node.selection_set.selections)
        if selection_set is not None:
            if isinstance(selection_set, str):
                selection_set = parse_selection_set(selection_set)
            caller_selections.extend(selection_set.selections)
        gateway_type = get_named_type(return_type if return_type is not None else info.return_type)
        selection_filter = _SelectionFilter(info.schema, target_schema, info.fragments)
        root_selection_set = selection_filter.filter_selection_set(
            caller_selections, gateway_type, target_field_type
        )

        # Client variables used by the kept selections travel along with the query.
        collector = _VariableCollector()
        visit(root_selection_set, collector)
        client_variable_definitions = {
            definition.variable.name.value: definition
            for definition in info.operation.variable_definitions or ()
        }
        for variable_name in collector.variable_names:
            definition = client_variable_definitions.get(variable_name)
            if definition is None:
                raise GraphQLValidationError(f'Variable "${variable_name}" is not defined.')
            variable_type = type_from_ast(target_schema, definition.type)
            if variable_type is None:
                raise GraphQLValidationError(
                    f'Variable "${variable_name}" has a type unknown to the target schema.'
                )
            variable_definitions.append(definition)
            if variable_name in info.variable_values:
                variables[variable_name] = serialize_input_value(
                    info.variable_values[variable_name], variable_type
                )

    root_field_node = FieldNode(
        alias=None,
        name=NameNode(value=field_name),
        arguments=tuple(argument_nodes),
        directives=(),
        selection_set=root_selection_set,
    )
    document = DocumentNode(
        definitions=(
            OperationDefinitionNode(
                operation=OperationType(operation),
                name=None,
                variable_definitions=tuple(variable_definitions),
                directives=(),
                selection_set=SelectionSetNode(selections=(root_field_node,)),
            ),
        )
    )
    return document, variables
