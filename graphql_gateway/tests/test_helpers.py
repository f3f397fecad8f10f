# Copyright 2021-present Kensho Technologies, LLC.
"""Common test data and helper functions."""
from dataclasses import dataclass
import json
import re
from textwrap import dedent
from typing import Any, Callable, Collection, Dict, List, Mapping, Optional, Tuple
from unittest import TestCase

from graphql import (
    GraphQLResolveInfo,
    GraphQLSchema,
    build_schema,
    graphql,
    lexicographic_sort_schema,
    print_schema,
)
import httpx

from ..delegation.batch_delegate import BatchKeyResolver
from ..delegation.delegate import delegate_to_schema
from ..delegation.result_shapes import (
    make_connection_key_matcher,
    make_list_key_matcher,
    normalize_connection,
)
from ..delegation.wrap_schema import RemoteSchemaHandle, wrap_schema
from ..gateway import (
    FieldResolver,
    GatewayExtensions,
    GatewaySchema,
    ResolverMap,
    compose_gateway_schema,
)
from ..remote_executor import make_remote_executor, print_query_document
from ..typedefs import BackendDescriptor, GatewayContext, QueryDocument, RemoteResult


WHITESPACE_PATTERN = re.compile("[\t\n ]*", flags=re.UNICODE)


def transform(emitted_output: str) -> str:
    """Transform emitted_output into a unique representation, regardless of lines / indentation."""
    return WHITESPACE_PATTERN.sub("", emitted_output)


def compare_ignoring_whitespace(
    test_case: TestCase, expected: str, received: str, msg: Optional[str]
) -> None:
    """Compare expected and received code, ignoring whitespace, with the given failure message."""
    test_case.assertEqual(transform(expected), transform(received), msg=msg)


def _lexicographic_sort_schema_text(schema_text: str) -> str:
    """Sort the schema types and fields in a lexicographic order."""
    return print_schema(lexicographic_sort_schema(build_schema(schema_text)))


def compare_schema_texts_order_independently(
    test_case: TestCase,
    expected_schema_text: str,
    received_schema_text: str,
) -> None:
    """Compare expected and received schema texts, ignoring order of definitions."""
    sorted_expected_schema_text = _lexicographic_sort_schema_text(expected_schema_text)
    sorted_received_schema_text = _lexicographic_sort_schema_text(received_schema_text)
    msg = "\n{}\n\n!=\n\n{}".format(sorted_expected_schema_text, sorted_received_schema_text)
    compare_ignoring_whitespace(
        test_case, sorted_expected_schema_text, sorted_received_schema_text, msg
    )


def make_executable_schema(
    schema_text: str, resolvers: Mapping[str, Mapping[str, Callable[..., Any]]]
) -> GraphQLSchema:
    """Build a schema from SDL and attach resolvers, keyed by type name and field name."""
    schema = build_schema(schema_text)
    for type_name, field_resolvers in resolvers.items():
        graphql_type = schema.get_type(type_name)
        for field_name, resolver in field_resolvers.items():
            graphql_type.fields[field_name].resolve = resolver
    return schema


@dataclass(frozen=True)
class ReceivedQuery:
    """A query received by an in-process backend."""

    query: str
    variables: Dict[str, Any]
    authorization: Optional[str]


class InProcessBackend:
    """Executor answering queries with a local executable schema, recording every query."""

    def __init__(self, schema: GraphQLSchema) -> None:
        """Serve the given executable schema."""
        self.schema = schema
        self.received_queries: List[ReceivedQuery] = []

    async def __call__(
        self,
        document: QueryDocument,
        variables: Optional[Dict[str, Any]] = None,
        context: Any = None,
    ) -> RemoteResult:
        """Execute the document and return the JSON-compatible response."""
        query = print_query_document(document)
        self.received_queries.append(
            ReceivedQuery(
                query=query,
                variables=variables or {},
                authorization=getattr(context, "authorization", None),
            )
        )
        result = await graphql(self.schema, query, variable_values=variables)
        # Responses travel as JSON between the gateway and its backends.
        return json.loads(json.dumps(result.formatted))

    def get_data_queries(self) -> List[ReceivedQuery]:
        """Return the received queries other than introspection queries."""
        return [
            received_query
            for received_query in self.received_queries
            if "__schema" not in received_query.query
        ]


def make_mock_transport(
    backends_by_url: Mapping[str, InProcessBackend],
    unavailable_urls: Collection[str] = (),
    received_requests: Optional[List[httpx.Request]] = None,
) -> httpx.MockTransport:
    """Build an httpx transport routing requests to in-process backends by URL.

    Requests to unavailable_urls are answered with a 502 status. Every request is appended to
    received_requests, if given.
    """

    async def handle_request(request: httpx.Request) -> httpx.Response:
        if received_requests is not None:
            received_requests.append(request)
        if str(request.url) in unavailable_urls:
            return httpx.Response(502, text="Bad gateway")
        backend = backends_by_url.get(str(request.url))
        if backend is None:
            return httpx.Response(404, text="Not found")
        payload = json.loads(request.content)
        context = GatewayContext(authorization=request.headers.get("Authorization"))
        result = await backend(payload["query"], payload.get("variables"), context)
        return httpx.Response(200, json=result)

    return httpx.MockTransport(handle_request)


VACCINE_SCHEMA_TEXT = dedent(
    """\
    type Query {
      fipsCodeStateByStateFipsCode(stateFipsCode: String!): FipsCodeState
      allFipsCodeStates(filter: FipsCodeStateFilter): FipsCodeStatesConnection
      allFipsCodeStatesList(filter: FipsCodeStateFilter): [FipsCodeState!]
    }

    type FipsCodeState {
      stateFipsCode: String!
      stateName: String
      statePostalAbbreviation: String
      censusRegion: Int
    }

    type FipsCodeStatesConnection {
      edges: [FipsCodeStatesEdge!]!
      nodes: [FipsCodeState]!
      totalCount: Int!
    }

    type FipsCodeStatesEdge {
      cursor: String
      node: FipsCodeState
    }

    input FipsCodeStateFilter {
      stateFipsCode: StringFilter
    }

    input StringFilter {
      in: [String!]
      equalTo: String
    }
    """
)

COVID_SCHEMA_TEXT = dedent(
    """\
    type Query {
      allStateMetas(filter: StateMetaFilter): StateMetasConnection
    }

    type StateMeta {
      stateFipsCode: String
      stateAbbr: String
      stateName: String
      population: Int
    }

    type StateMetasConnection {
      edges: [StateMetasEdge!]!
      nodes: [StateMeta]!
    }

    type StateMetasEdge {
      node: StateMeta
    }

    input StateMetaFilter {
      stateFipsCode: StringFilter
    }

    input StringFilter {
      in: [String!]
    }
    """
)

FIPS_CODE_STATES = {
    "01": {"stateFipsCode": "01", "stateName": "Alabama", "statePostalAbbreviation": "AL"},
    "02": {"stateFipsCode": "02", "stateName": "Alaska", "statePostalAbbreviation": "AK"},
    "06": {"stateFipsCode": "06", "stateName": "California", "statePostalAbbreviation": "CA"},
    "36": {"stateFipsCode": "36", "stateName": "New York", "statePostalAbbreviation": "NY"},
}

STATE_METAS = {
    "01": {
        "stateFipsCode": "01",
        "stateAbbr": "AL",
        "stateName": "Alabama",
        "population": 4903185,
    },
    "02": {"stateFipsCode": "02", "stateAbbr": "AK", "stateName": "Alaska", "population": 731545},
    "06": {
        "stateFipsCode": "06",
        "stateAbbr": "CA",
        "stateName": "California",
        "population": 39512223,
    },
    "31": {
        "stateFipsCode": "31",
        "stateAbbr": "NE",
        "stateName": "Nebraska",
        "population": 1934408,
    },
}


def _get_filtered_codes(args: Dict[str, Any], all_codes: List[str]) -> List[str]:
    filter_value = args.get("filter")
    if not filter_value or not filter_value.get("stateFipsCode"):
        return all_codes
    condition = filter_value["stateFipsCode"]
    if condition.get("in") is not None:
        return list(condition["in"])
    return [condition["equalTo"]]


def _resolve_all_fips_code_states_list(root: Any, info: Any, **args: Any) -> List[Dict[str, Any]]:
    codes = _get_filtered_codes(args, sorted(FIPS_CODE_STATES))
    # Backends return matches in their own order, not in the order of the filter.
    return [
        dict(FIPS_CODE_STATES[code])
        for code in sorted(set(codes), reverse=True)
        if code in FIPS_CODE_STATES
    ]


def _resolve_all_fips_code_states(root: Any, info: Any, **args: Any) -> Dict[str, Any]:
    records = _resolve_all_fips_code_states_list(root, info, **args)
    return {
        "edges": [
            {"cursor": f"cursor-{record['stateFipsCode']}", "node": record} for record in records
        ],
        "nodes": records,
        "totalCount": len(records),
    }


def _resolve_census_region(state: Dict[str, Any], info: Any) -> int:
    if state["stateFipsCode"] == "02":
        raise ValueError("Census region unavailable for Alaska.")
    return int(state["stateFipsCode"]) % 4 + 1


def _resolve_all_state_metas(root: Any, info: Any, **args: Any) -> Dict[str, Any]:
    # Duplicated codes in the filter produce duplicated records, in the order of the filter.
    codes = _get_filtered_codes(args, sorted(STATE_METAS))
    records = [dict(STATE_METAS[code]) for code in codes if code in STATE_METAS]
    return {"edges": [{"node": record} for record in records], "nodes": records}


def make_vaccine_backend() -> InProcessBackend:
    """Return a backend serving FIPS code states."""
    schema = make_executable_schema(
        VACCINE_SCHEMA_TEXT,
        {
            "Query": {
                "fipsCodeStateByStateFipsCode": lambda root, info, stateFipsCode: (
                    FIPS_CODE_STATES.get(stateFipsCode)
                ),
                "allFipsCodeStates": _resolve_all_fips_code_states,
                "allFipsCodeStatesList": _resolve_all_fips_code_states_list,
            },
            "FipsCodeState": {"censusRegion": _resolve_census_region},
        },
    )
    return InProcessBackend(schema)


def make_covid_backend() -> InProcessBackend:
    """Return a backend serving state metadata."""
    schema = make_executable_schema(
        COVID_SCHEMA_TEXT, {"Query": {"allStateMetas": _resolve_all_state_metas}}
    )
    return InProcessBackend(schema)


CHARACTER_SCHEMA_TEXT = dedent(
    """\
    type Query {
      characters: [Character]
      charactersByKind(kind: Kind!): [Character!]
      failingCharacter: Character
    }

    type Mutation {
      addDroid(id: String!, primaryFunction: String): Droid
    }

    interface Character {
      id: String!
      name: String
    }

    type Droid implements Character {
      id: String!
      name: String
      primaryFunction: String
    }

    type Human implements Character {
      id: String!
      name: String
      homePlanet: String
    }

    enum Kind {
      DROID
      HUMAN
    }
    """
)

CHARACTERS = [
    {"__typename": "Droid", "id": "2001", "name": "R2-D2", "primaryFunction": "Astromech"},
    {"__typename": "Human", "id": "1000", "name": "Luke Skywalker", "homePlanet": "Tatooine"},
]


def _resolve_failing_character(root: Any, info: Any) -> None:
    raise ValueError("The character is unavailable.")


def make_character_backend() -> InProcessBackend:
    """Return a backend serving characters through an interface."""
    schema = make_executable_schema(
        CHARACTER_SCHEMA_TEXT,
        {
            "Query": {
                "characters": lambda root, info: [dict(character) for character in CHARACTERS],
                "charactersByKind": lambda root, info, kind: [
                    dict(character)
                    for character in CHARACTERS
                    if character["__typename"].upper() == kind
                ],
                "failingCharacter": _resolve_failing_character,
            },
            "Mutation": {
                "addDroid": lambda root, info, id, primaryFunction=None: {
                    "id": id,
                    "primaryFunction": primaryFunction,
                },
            },
        },
    )
    return InProcessBackend(schema)


def make_local_schema() -> GraphQLSchema:
    """Return an executable schema served by the gateway process itself."""
    return make_executable_schema(
        "type Query { heartbeat: String! }", {"Query": {"heartbeat": lambda root, info: "OK"}}
    )


# The covid and vaccine backends both define StringFilter, with different fields.
COVID_TYPE_RENAMINGS = {"StringFilter": "CovidStringFilter"}

FIPS_GATEWAY_TYPE_DEFS = dedent(
    """\
    extend type StateMeta {
      hey: FipsCodeState
      batch: FipsCodeStatesConnection!
      batchList: [FipsCodeState!]!
    }
    """
)


def _get_state_fips_code(parent: Dict[str, Any]) -> str:
    return parent["stateFipsCode"]


def _make_state_fips_code_filter(keys: List[Any]) -> Dict[str, Any]:
    return {"filter": {"stateFipsCode": {"in": keys}}}


def make_fips_resolvers(
    handles: Mapping[str, RemoteSchemaHandle],
    batch_values_from_results: Optional[Callable[..., Any]] = None,
) -> ResolverMap:
    """Build resolvers joining StateMeta records of covid to FipsCodeState records of vaccine."""
    vaccine = handles["vaccine"]

    async def resolve_hey(parent: Dict[str, Any], info: GraphQLResolveInfo) -> Any:
        return await delegate_to_schema(
            vaccine,
            "query",
            "fipsCodeStateByStateFipsCode",
            {"stateFipsCode": _get_state_fips_code(parent)},
            info.context,
            info,
        )

    if batch_values_from_results is None:
        batch_values_from_results = make_connection_key_matcher("stateFipsCode")
    resolve_batch = BatchKeyResolver(
        vaccine,
        "allFipsCodeStates",
        key_from_parent=_get_state_fips_code,
        args_from_keys=_make_state_fips_code_filter,
        values_from_results=batch_values_from_results,
        result_normalizer=normalize_connection,
        selection_set="{ edges { node { stateFipsCode } } nodes { stateFipsCode } }",
    )
    resolve_batch_list = BatchKeyResolver(
        vaccine,
        "allFipsCodeStatesList",
        key_from_parent=_get_state_fips_code,
        args_from_keys=_make_state_fips_code_filter,
        values_from_results=make_list_key_matcher("stateFipsCode"),
        selection_set="{ stateFipsCode }",
    )
    return {
        "StateMeta": {
            "hey": FieldResolver(resolve_hey, selection_set="{ stateFipsCode }"),
            "batch": FieldResolver(resolve_batch, selection_set="{ stateFipsCode }"),
            "batchList": FieldResolver(resolve_batch_list, selection_set="{ stateFipsCode }"),
        }
    }


def wrap_backend(
    backend_id: str, backend: InProcessBackend, type_renamings: Optional[Dict[str, str]] = None
) -> RemoteSchemaHandle:
    """Expose an in-process backend to the gateway, as if it had been introspected."""
    return wrap_schema(backend_id, backend.schema, backend, type_renamings=type_renamings)


def make_fips_gateway_schema(
    vaccine_backend: InProcessBackend,
    covid_backend: InProcessBackend,
    batch_values_from_results: Optional[Callable[..., Any]] = None,
) -> GatewaySchema:
    """Compose the gateway over the vaccine and covid backends and a local schema."""
    handles = {
        "vaccine": wrap_backend("vaccine", vaccine_backend),
        "covid": wrap_backend("covid", covid_backend, type_renamings=COVID_TYPE_RENAMINGS),
    }
    return compose_gateway_schema(
        {**handles, "local": make_local_schema()},
        type_defs=FIPS_GATEWAY_TYPE_DEFS,
        resolvers=make_fips_resolvers(
            handles, batch_values_from_results=batch_values_from_results
        ),
    )


VACCINE_URL = "http://vaccine.test/graphql"
COVID_URL = "http://covid.test/graphql"
APP_TOKEN = "Bearer app-token"


def make_fips_backend_descriptors() -> Tuple[BackendDescriptor, ...]:
    """Describe the vaccine and covid backends as reachable through make_mock_transport."""
    return (
        BackendDescriptor(backend_id="vaccine", url=VACCINE_URL, default_authorization=APP_TOKEN),
        BackendDescriptor(
            backend_id="covid",
            url=COVID_URL,
            default_authorization=APP_TOKEN,
            type_renamings=COVID_TYPE_RENAMINGS,
        ),
    )


def make_fips_gateway_extensions() -> GatewayExtensions:
    """Return the local schema, type definitions and resolvers of the FIPS gateway."""
    return GatewayExtensions(
        local_schemas={"local": make_local_schema()},
        type_defs=FIPS_GATEWAY_TYPE_DEFS,
        make_resolvers=make_fips_resolvers,
    )


def make_http_fips_gateway_schema(client: httpx.AsyncClient) -> GatewaySchema:
    """Compose the FIPS gateway over backends reached through HTTP with the given client."""
    handles = {
        backend.backend_id: wrap_schema(
            backend.backend_id,
            backend_schema,
            make_remote_executor(backend, client=client),
            type_renamings=backend.type_renamings,
        )
        for backend, backend_schema in zip(
            make_fips_backend_descriptors(),
            (make_vaccine_backend().schema, make_covid_backend().schema),
        )
    }
    return compose_gateway_schema(
        {**handles, "local": make_local_schema()},
        type_defs=FIPS_GATEWAY_TYPE_DEFS,
        resolvers=make_fips_resolvers(handles),
    )
