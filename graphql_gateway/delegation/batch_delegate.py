# Copyright 2021-present Kensho Technologies, LLC.
"""Resolve a one-to-many relationship for many parents with a single remote call.

Sibling resolutions of the same gateway field, e.g. the "batch" field of every StateMeta in a
list, each register the key of their parent into a batch window instead of calling the backend.
The window lives in the request context, so it never outlives the client query. It is flushed
once the event loop has run every resolution that was scheduled alongside the first one: graphql-
core starts sibling resolvers as tasks of one asyncio.gather call, so they all run before a
callback scheduled with loop.call_soon by the first of them.

The flush sends one query selecting the batch field with arguments built from the distinct keys,
normalizes the result if configured, and maps the results back onto the registered keys, in
registration order and with duplicates. Every registration of the window then resumes with its
own value, or with the error that made the flush fail.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Tuple, Union

import funcy
from graphql import GraphQLResolveInfo, SelectionSetNode

from ..exceptions import CorrelationError
from ..typedefs import GatewayContext
from .delegate import delegate_to_schema
from .wrap_schema import RemoteSchemaHandle


logger = logging.getLogger(__name__)


class _BatchWindow:
    """Keys registered by sibling resolutions, waiting for one consolidated remote call."""

    def __init__(self, info: GraphQLResolveInfo) -> None:
        # Resolve info of the first registration; all registrations share its field nodes.
        self.info = info
        self.keys: List[Hashable] = []
        self.futures: List["asyncio.Future[Any]"] = []


class BatchKeyResolver:
    """Resolver of a gateway field, batching the keys of sibling parents into one remote call."""

    def __init__(
        self,
        schema: RemoteSchemaHandle,
        field_name: str,
        key_from_parent: Callable[[Any], Hashable],
        args_from_keys: Callable[[List[Hashable]], Dict[str, Any]],
        values_from_results: Callable[[Any, Sequence[Hashable]], Sequence[Any]],
        result_normalizer: Optional[Callable[[Any], Any]] = None,
        operation: str = "query",
        selection_set: Optional[Union[str, SelectionSetNode]] = None,
    ) -> None:
        """Configure the batch resolution of a gateway field.

        Args:
            schema: handle of the backend owning the batch field
            field_name: root field of the backend accepting a set of keys and returning the
                        records matching any of them
            key_from_parent: derives the batching key from the parent object of the gateway field
            args_from_keys: builds the arguments of the batch field from the list of distinct
                            keys, expressing membership in that set
            values_from_results: maps the (normalized) batch field value and the ordered list of
                                 registered keys, duplicates included, to exactly one value per key.
                                 See make_list_key_matcher and make_connection_key_matcher.
            result_normalizer: applied to the batch field value before values_from_results, e.g.
                               normalize_connection
            operation: "query" or "mutation"
            selection_set: extra selection to request on the batch field, typically the key field
                           that values_from_results reads
        """
        self.schema = schema
        self.field_name = field_name
        self.key_from_parent = key_from_parent
        self.args_from_keys = args_from_keys
        self.values_from_results = values_from_results
        self.result_normalizer = result_normalizer
        self.operation = operation
        self.selection_set = selection_set

    async def __call__(self, parent: Any, info: GraphQLResolveInfo, **args: Any) -> Any:
        """Resolve the gateway field for one parent, as part of a batch."""
        key = self.key_from_parent(parent)
        return await batch_delegate_to_schema(self, key, info.context, info)

    async def resolve_keys(
        self, keys: List[Hashable], context: Any, info: GraphQLResolveInfo
    ) -> List[Any]:
        """Resolve every key of a window with one call of the batch field.

        Raises:
            - CorrelationError if the results cannot be matched to exactly one value per key
            - any error raised by the delegated call, see delegate_to_schema
        """
        distinct_keys = list(funcy.distinct(keys))
        logger.debug(
            "Resolving %d keys (%d distinct) of field %s with %s of backend %s.",
            len(keys),
            len(distinct_keys),
            info.field_name,
            self.field_name,
            self.schema.backend_id,
        )
        result = await delegate_to_schema(
            self.schema,
            self.operation,
            self.field_name,
            self.args_from_keys(distinct_keys),
            context,
            info,
            selection_set=self.selection_set,
        )
        if self.result_normalizer is not None:
            result = self.result_normalizer(result)
        values = list(self.values_from_results(result, keys))
        if len(values) != len(keys):
            raise CorrelationError(
                f"Mapping the results of {self.field_name} to the {len(keys)} requested keys "
                f"produced {len(values)} values instead of one value per key."
            )
        return values


def _get_window_key(
    options: BatchKeyResolver, info: GraphQLResolveInfo
) -> Tuple[int, Tuple[int, ...]]:
    return id(options), tuple(id(field_node) for field_node in info.field_nodes)


async def batch_delegate_to_schema(
    options: BatchKeyResolver, key: Hashable, context: Any, info: GraphQLResolveInfo
) -> Any:
    """Register the key in the open batch window of the field, and wait for its value.

    Args:
        options: configuration of the batch resolution
        key: key derived from the parent object being resolved
        context: GatewayContext of the client query, holding its batch windows
        info: resolve info of the gateway field being resolved

    Returns:
        the value mapped to the key by the batched call

    Raises:
        the error that made the batched call fail; every registration of the window fails with it
    """
    if not isinstance(context, GatewayContext):
        raise TypeError(
            f"Batch resolution requires the request context to be a GatewayContext, but got "
            f"{type(context).__name__}."
        )
    loop = asyncio.get_running_loop()
    window_key = _get_window_key(options, info)
    window = context.batch_windows.get(window_key)
    if window is None:
        window = _BatchWindow(info)
        context.batch_windows[window_key] = window
        loop.call_soon(_start_flush, options, context, window_key, window)

    future = loop.create_future()
    window.keys.append(key)
    window.futures.append(future)
    return await future


def _start_flush(
    options: BatchKeyResolver, context: GatewayContext, window_key: Hashable, window: _BatchWindow
) -> None:
    """Close the window to further registrations and run its remote call."""
    if context.batch_windows.get(window_key) is window:
        del context.batch_windows[window_key]
    flush = asyncio.ensure_future(_flush(options, context, window))
    context.pending_flushes.add(flush)
    flush.add_done_callback(context.pending_flushes.discard)


async def _flush(options: BatchKeyResolver, context: GatewayContext, window: _BatchWindow) -> None:
    """Resolve the keys of the window and resume every registration still waiting."""
    try:
        values = await options.resolve_keys(window.keys, context, window.info)
    except Exception as e:
        # The whole window fails uniformly; abandoned registrations are skipped.
        for future in window.futures:
            if not future.done():
                future.set_exception(e)
        return

    for future, value in zip(window.futures, values):
        if not future.done():
            future.set_result(value)
