# Copyright 2021-present Kensho Technologies, LLC.
"""Commonly-used functions and data types from this package."""
from .config import GatewayConfig, get_gateway_config, load_gateway_config  # noqa
from .delegation.batch_delegate import BatchKeyResolver, batch_delegate_to_schema  # noqa
from .delegation.delegate import delegate_to_schema, make_delegating_resolver  # noqa
from .delegation.result_shapes import (  # noqa
    ResultShape,
    make_connection_key_matcher,
    make_list_key_matcher,
    normalize_connection,
)
from .delegation.wrap_schema import RemoteSchemaHandle, wrap_schema  # noqa
from .exceptions import (  # noqa
    CorrelationError,
    GraphQLGatewayError,
    IntrospectionError,
    RemoteExecutionError,
    RemoteFieldError,
    SchemaCompositionError,
    ShapeError,
)
from .gateway import (  # noqa
    FieldResolver,
    GatewayExtensions,
    GatewaySchema,
    compose_gateway_schema,
    execute_query,
    make_gateway_schema,
)
from .introspection import introspect_schema  # noqa
from .remote_executor import RemoteExecutor, make_remote_executor  # noqa
from .server import create_app  # noqa
from .typedefs import BackendDescriptor, GatewayContext  # noqa


__package_name__ = "graphql-gateway"
__version__ = "1.0.0"
