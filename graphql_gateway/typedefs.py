# Copyright 2021-present Kensho Technologies, LLC.
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Set, Union

from graphql import DocumentNode
from pydantic import BaseModel, ConfigDict, Field


# A document sent to a backend, either as an AST or already printed.
QueryDocument = Union[DocumentNode, str]

# Raw JSON response of a backend: a dict with "data" and optionally "errors".
RemoteResult = Dict[str, Any]

# Signature of a remote executor: (document, variables, context) -> awaitable raw response.
Executor = Callable[[QueryDocument, Optional[Dict[str, Any]], Any], Awaitable[RemoteResult]]


class BackendDescriptor(BaseModel):
    """Describes one backend service that the gateway federates."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Identifier of the backend, used as the schema id when merging schemas and in error messages.
    backend_id: str = Field(min_length=1)

    # Address of the backend's GraphQL endpoint.
    url: str = Field(min_length=1)

    # Authorization header of the gateway's own calls, i.e. introspection at startup. Never sent
    # on behalf of a client.
    default_authorization: Optional[str] = None

    # Maps original type names of the backend to the names exposed by the gateway.
    type_renamings: Dict[str, str] = Field(default_factory=dict)

    # Maps original object type names to a mapping of original field names to exposed names.
    field_renamings: Dict[str, Dict[str, str]] = Field(default_factory=dict)

    # Bound on a single HTTP call to the backend.
    timeout_seconds: float = Field(default=30.0, gt=0, strict=True)


@dataclass
class GatewayContext:
    """Per-request context handed to every resolver of one client query execution."""

    # Opaque credential forwarded as the Authorization header of every delegated call.
    authorization: Optional[str] = None

    # Open batch windows of this execution, keyed by batch resolver and caller field nodes.
    # Discarded together with the context once the execution completes.
    batch_windows: Dict[Hashable, Any] = field(default_factory=dict)

    # Flushes of batch windows that are still running.
    pending_flushes: Set["asyncio.Future[None]"] = field(default_factory=set)
