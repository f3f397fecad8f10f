# Copyright 2021-present Kensho Technologies, LLC.
"""Normalize the results of batched remote calls and match them back to the requested keys.

A batch field may return its matches as a flat list of records, as a connection exposing
"edges" (each edge holding a "node"), as a connection exposing "nodes", or as a connection
exposing both. Normalization turns any of these into a list of groups, one group per position of
the remote result, so that matching results to keys does not depend on the shape the backend
used.
"""
from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence

import funcy

from ..exceptions import CorrelationError, ShapeError


# A normalized group: {"edges": [...]}, {"nodes": [...]} or both.
ResultGroup = Dict[str, List[Any]]

# Signature of mapResultsToKeys: (results, ordered keys with duplicates) -> one value per key.
ResultsToKeysMatcher = Callable[[Any, Sequence[Hashable]], List[Any]]


class ResultShape(Enum):
    """Shape of the value of a batch field."""

    LIST = "list"  # flat list of records
    EDGES = "edges"  # connection exposing only edges
    NODES = "nodes"  # connection exposing only nodes
    EDGES_AND_NODES = "edges_and_nodes"  # connection exposing both


def get_result_shape(result: Any) -> ResultShape:
    """Determine the shape of the value of a batch field.

    Raises:
        ShapeError if the value is neither a list nor a connection exposing edges or nodes
    """
    if isinstance(result, list):
        return ResultShape.LIST
    if isinstance(result, dict):
        has_edges = isinstance(result.get("edges"), list)
        has_nodes = isinstance(result.get("nodes"), list)
        if has_edges and has_nodes:
            return ResultShape.EDGES_AND_NODES
        if has_edges:
            return ResultShape.EDGES
        if has_nodes:
            return ResultShape.NODES
    raise ShapeError(f"Batched result exposes neither edges nor nodes: {result!r}")


def _satisfies(shape: ResultShape, required_shape: ResultShape) -> bool:
    if required_shape == ResultShape.EDGES:
        return shape in (ResultShape.EDGES, ResultShape.EDGES_AND_NODES)
    if required_shape == ResultShape.NODES:
        return shape in (ResultShape.NODES, ResultShape.EDGES_AND_NODES)
    return shape == required_shape


def normalize_connection(
    result: Any, required_shape: Optional[ResultShape] = None
) -> List[ResultGroup]:
    """Split the value of a batch field into one group per position.

    Group i holds element i of every list of the connection: of "edges" and "nodes", and of the
    lists the caller selected under aliases of these fields, keyed by response key. Other fields
    of the connection, such as counts, are not carried over. The records of a flat list are
    treated as nodes.

    Args:
        result: value of the batch field
        required_shape: if given, the shape the value must have. A connection exposing both edges
                        and nodes satisfies a requirement for either of them.

    Returns:
        list of groups, one per position of the remote result

    Raises:
        ShapeError if the value has no edges nor nodes, does not have the required shape, or
        exposes lists of different lengths
    """
    shape = get_result_shape(result)
    if required_shape is not None and not _satisfies(shape, required_shape):
        raise ShapeError(
            f"Batched result was required to have shape {required_shape.value}, but it has shape "
            f"{shape.value}."
        )

    if shape == ResultShape.LIST:
        return [{"nodes": [record]} for record in result]

    # Every list of the connection is an edges or nodes selection, possibly aliased by the caller.
    positional_lists = {
        response_key: value for response_key, value in result.items() if isinstance(value, list)
    }
    lengths = {response_key: len(value) for response_key, value in positional_lists.items()}
    if len(set(lengths.values())) > 1:
        raise ShapeError(
            f"Batched result exposes lists of different lengths {lengths}, so they cannot be "
            f"merged positionally."
        )
    length = len(result["edges"] if "edges" in positional_lists else result["nodes"])
    return [
        {response_key: [value[index]] for response_key, value in positional_lists.items()}
        for index in range(length)
    ]


def _get_record_key(record: Any, key_field: str) -> Hashable:
    if not isinstance(record, dict) or key_field not in record:
        raise CorrelationError(
            f'Batched result {record!r} has no field "{key_field}", so it cannot be matched to '
            f"any of the requested keys. Make sure the field is selected."
        )
    return record[key_field]


def _get_group_key(group: ResultGroup, key_field: str) -> Hashable:
    edges = group.get("edges")
    if edges:
        edge = edges[0]
        if not isinstance(edge, dict) or not isinstance(edge.get("node"), dict):
            raise CorrelationError(
                f'Batched result edge {edge!r} has no node holding the field "{key_field}".'
            )
        return _get_record_key(edge["node"], key_field)
    nodes = group.get("nodes")
    if nodes:
        return _get_record_key(nodes[0], key_field)
    raise ShapeError(f"Batched result group {group!r} has neither edges nor nodes.")


def make_list_key_matcher(key_field: str) -> ResultsToKeysMatcher:
    """Return a matcher for batch fields returning a flat list of records.

    Each key is mapped to the list of records whose key_field equals it, in the order of the
    remote result, or to an empty list if there are none.
    """

    def values_from_results(results: Any, keys: Sequence[Hashable]) -> List[Any]:
        if results is None:
            results = []
        records_by_key = funcy.group_by(
            lambda record: _get_record_key(record, key_field), results
        )
        return [list(records_by_key.get(key, [])) for key in keys]

    return values_from_results


def make_connection_key_matcher(key_field: str) -> ResultsToKeysMatcher:
    """Return a matcher for normalized connection groups, see normalize_connection.

    The key of a group is read from the key_field of the node of its first "edges" element, or of
    its first "nodes" element, so these unaliased fields must select key_field. All groups of a
    key are merged into one connection holding a list per response key, e.g.
    {"edges": [...], "nodes": [...]}, plus the lists selected under aliases; keys without
    matches get a connection of empty lists.
    """

    def values_from_results(groups: Any, keys: Sequence[Hashable]) -> List[Any]:
        groups_by_key = funcy.group_by(lambda group: _get_group_key(group, key_field), groups)
        response_keys = ["edges", "nodes"]
        for group in groups:
            for response_key in group:
                if response_key not in response_keys:
                    response_keys.append(response_key)

        values = []
        for key in keys:
            connection: ResultGroup = {response_key: [] for response_key in response_keys}
            for group in groups_by_key.get(key, []):
                for response_key, elements in group.items():
                    connection[response_key].extend(elements)
            values.append(connection)
        return values

    return values_from_results
