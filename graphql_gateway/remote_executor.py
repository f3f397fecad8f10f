# Copyright 2021-present Kensho Technologies, LLC.
"""Executor performing one HTTP call against a backend's GraphQL endpoint.

Any customization of the transport (headers, timeouts, connection pooling) belongs here. An
executor receives a query document, its variables and the request context, and asynchronously
returns the JSON response of the backend.
"""
import json
import logging
from typing import Any, Dict, Optional

from graphql import print_ast
import httpx

from .exceptions import RemoteExecutionError
from .typedefs import BackendDescriptor, QueryDocument, RemoteResult


logger = logging.getLogger(__name__)


def print_query_document(document: QueryDocument) -> str:
    """Return the text of a query document, printing it if it is an AST."""
    if isinstance(document, str):
        return document
    return print_ast(document)


class RemoteExecutor:
    """Send GraphQL documents to one backend, forwarding the request's authorization."""

    def __init__(
        self, backend: BackendDescriptor, client: Optional[httpx.AsyncClient] = None
    ) -> None:
        """Create an executor for the backend.

        Args:
            backend: descriptor of the backend to send queries to
            client: shared client to send requests with. If None, every call opens and closes
                    its own client.
        """
        self.backend = backend
        self.client = client

    def _get_headers(self, context: Any) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        authorization = getattr(context, "authorization", None)
        if authorization is not None:
            headers["Authorization"] = authorization
        return headers

    async def __call__(
        self,
        document: QueryDocument,
        variables: Optional[Dict[str, Any]] = None,
        context: Any = None,
    ) -> RemoteResult:
        """Execute the document on the backend and return its JSON response.

        Args:
            document: query to send, either a string or a DocumentNode which is printed first
            variables: values of the variables the document declares
            context: request context; its "authorization" attribute, if any, is sent as the
                     Authorization header. Nothing else is sent in its place.

        Returns:
            dict, the decoded response of the backend, containing "data" and possibly "errors"

        Raises:
            RemoteExecutionError if the request fails, the backend answers with a non-success
            status, or the response is not a JSON object
        """
        query = print_query_document(document)
        payload = {"query": query, "variables": variables or {}}
        logger.debug(
            "Sending query to backend %s: %s with variables %s",
            self.backend.backend_id,
            query,
            json.dumps(payload["variables"]),
        )

        try:
            if self.client is None:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, payload, context)
            else:
                response = await self._post(self.client, payload, context)
        except httpx.HTTPError as e:
            logger.warning("Request to backend %s failed: %s", self.backend.backend_id, e)
            raise RemoteExecutionError(self.backend.backend_id, f"Request failed: {e!r}") from e

        if not response.is_success:
            logger.warning(
                "Backend %s answered with status %s", self.backend.backend_id, response.status_code
            )
            raise RemoteExecutionError(
                self.backend.backend_id,
                f"Unexpected HTTP status {response.status_code}.",
                response_body=response.text,
            )

        try:
            result = response.json()
        except ValueError as e:
            raise RemoteExecutionError(
                self.backend.backend_id,
                "Response body is not valid JSON.",
                response_body=response.text,
            ) from e
        if not isinstance(result, dict):
            raise RemoteExecutionError(
                self.backend.backend_id,
                "Response body is not a JSON object.",
                response_body=response.text,
            )

        logger.debug("Backend %s responded: %s", self.backend.backend_id, response.text)
        return result

    async def _post(
        self, client: httpx.AsyncClient, payload: Dict[str, Any], context: Any
    ) -> httpx.Response:
        return await client.post(
            self.backend.url,
            json=payload,
            headers=self._get_headers(context),
            timeout=self.backend.timeout_seconds,
        )


def make_remote_executor(
    backend: BackendDescriptor, client: Optional[httpx.AsyncClient] = None
) -> RemoteExecutor:
    """Build the executor for a backend."""
    return RemoteExecutor(backend, client=client)
