# Copyright 2021-present Kensho Technologies, LLC.
from functools import lru_cache

from graphql import GraphQLType, parse_type
from graphql.error import GraphQLSyntaxError
from graphql.language.ast import OperationDefinitionNode, SelectionSetNode, TypeNode
from graphql.language.parser import parse

from .exceptions import GraphQLValidationError


def get_type_ast(graphql_type: GraphQLType) -> TypeNode:
    """Return the AST of a type reference, e.g. the AST of [String!]! for that GraphQL type."""
    return parse_type(str(graphql_type))


@lru_cache(maxsize=None)
def parse_selection_set(selection_set_string: str) -> SelectionSetNode:
    """Parse a string such as "{ id name }" into a SelectionSetNode.

    Raises:
        GraphQLValidationError if the string is not a single selection set
    """
    try:
        document = parse(selection_set_string, no_location=True)
    except GraphQLSyntaxError as e:
        raise GraphQLValidationError(
            f'Could not parse selection set "{selection_set_string}": {e}'
        ) from e
    if len(document.definitions) != 1:
        raise GraphQLValidationError(
            f'Expected exactly one selection set, but got "{selection_set_string}".'
        )
    definition = document.definitions[0]
    if not isinstance(definition, OperationDefinitionNode) or definition.name is not None:
        raise GraphQLValidationError(
            f'Expected an anonymous selection set, but got "{selection_set_string}".'
        )
    return definition.selection_set

