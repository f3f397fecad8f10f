# Copyright 2021-present Kensho Technologies, LLC.
"""HTTP surface of the gateway: the GraphQL endpoint and its GraphiQL page, and health checks."""
from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
import httpx

from .config import GatewayConfig
from .gateway import GatewayExtensions, execute_query, make_gateway_schema


logger = logging.getLogger(__name__)

# In-browser IDE for the GraphQL endpoint, loaded from a CDN. It posts queries to the page's URL.
GRAPHIQL_PAGE = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>GraphQL gateway</title>
    <style>body { margin: 0; } #graphiql { height: 100vh; }</style>
    <link rel="stylesheet" href="https://unpkg.com/graphiql@3/graphiql.min.css" />
    <script crossorigin src="https://unpkg.com/react@18/umd/react.production.min.js"></script>
    <script
      crossorigin
      src="https://unpkg.com/react-dom@18/umd/react-dom.production.min.js"
    ></script>
    <script crossorigin src="https://unpkg.com/graphiql@3/graphiql.min.js"></script>
  </head>
  <body>
    <div id="graphiql">Loading...</div>
    <script>
      const fetcher = GraphiQL.createFetcher({ url: window.location.href });
      ReactDOM.createRoot(document.getElementById("graphiql")).render(
        React.createElement(GraphiQL, { fetcher: fetcher })
      );
    </script>
  </body>
</html>
"""


def _error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"errors": [{"message": message}]}, status_code=status_code)


def create_app(
    config: GatewayConfig,
    http_client: Optional[httpx.AsyncClient] = None,
    extensions: Optional[GatewayExtensions] = None,
) -> FastAPI:
    """Create the gateway application.

    The gateway schema is built when the application starts. Until then, the readiness check and
    the GraphQL endpoint answer 503; if building it fails, the application does not start.

    Args:
        config: gateway configuration
        http_client: client used for every call to backends. If None, the application opens one
                     on startup and closes it on shutdown.
        extensions: local schemas, type definitions and resolvers added by the gateway
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        client = http_client if http_client is not None else httpx.AsyncClient()
        try:
            app.state.gateway_schema = await make_gateway_schema(
                config, client=client, extensions=extensions
            )
            logger.info("The gateway is ready to serve queries.")
            yield
        finally:
            app.state.gateway_schema = None
            if http_client is None:
                await client.aclose()

    app = FastAPI(title="GraphQL gateway", lifespan=lifespan)
    app.state.gateway_schema = None

    @app.get("/healthz")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz")
    async def readiness(request: Request) -> JSONResponse:
        if request.app.state.gateway_schema is None:
            return JSONResponse({"status": "starting"}, status_code=503)
        return JSONResponse({"status": "ready"})

    if config.graphiql:

        @app.get("/graphql", response_class=HTMLResponse)
        async def graphiql() -> HTMLResponse:
            return HTMLResponse(GRAPHIQL_PAGE)

    @app.post("/graphql")
    async def graphql(request: Request) -> JSONResponse:
        gateway_schema = request.app.state.gateway_schema
        if gateway_schema is None:
            return _error_response("The gateway is not ready to serve queries.", 503)

        try:
            body: Any = await request.json()
        except ValueError:
            return _error_response("The request body is not valid JSON.", 400)
        if not isinstance(body, dict) or not isinstance(body.get("query"), str):
            return _error_response('The request body should be an object with a "query".', 400)
        variables = body.get("variables")
        if variables is not None and not isinstance(variables, dict):
            return _error_response('"variables" should be an object.', 400)
        operation_name = body.get("operationName")
        if operation_name is not None and not isinstance(operation_name, str):
            return _error_response('"operationName" should be a string.', 400)

        result = await execute_query(
            gateway_schema,
            body["query"],
            variables=variables,
            operation_name=operation_name,
            authorization=request.headers.get("Authorization"),
        )
        return JSONResponse(result.formatted)

    return app
