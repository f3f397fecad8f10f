# Copyright 2021-present Kensho Technologies, LLC.
"""Gateway joining COVID state metadata with the state FIPS codes of a vaccination backend.

The "covid" backend exposes StateMeta records; the "vaccine" backend exposes FipsCodeState
records, and filters them with "in" conditions. The gateway adds two fields to StateMeta:
    - hey: the FipsCodeState of the state, fetched with one call per StateMeta;
    - batch: the FipsCodeStates of the state as a connection, fetched with one call for all the
      StateMeta records of a query.

Example query:

    {
      allStateMetas(filter: {stateFipsCode: {in: ["06", "02", "01", "01"]}}) {
        edges {
          node {
            stateName
            batch {
              edges { node { stateFipsCode statePostalAbbreviation } }
              nodes { stateName }
            }
          }
        }
      }
    }
"""
from typing import Any, Dict, Hashable, List, Mapping

from graphql import (
    GraphQLField,
    GraphQLNonNull,
    GraphQLObjectType,
    GraphQLResolveInfo,
    GraphQLSchema,
    GraphQLString,
)

from graphql_gateway import (
    BatchKeyResolver,
    FieldResolver,
    GatewayExtensions,
    RemoteSchemaHandle,
    delegate_to_schema,
    make_connection_key_matcher,
    normalize_connection,
)
from graphql_gateway.gateway import ResolverMap


VACCINE_BACKEND_ID = "vaccine"

# Served by the gateway process itself.
LOCAL_SCHEMA = GraphQLSchema(
    query=GraphQLObjectType(
        "Query",
        {"heartbeat": GraphQLField(GraphQLNonNull(GraphQLString), resolve=lambda *_: "OK")},
    )
)

GATEWAY_TYPE_DEFS = """
type StateMeta {
  hey: FipsCodeState!
  batch: FipsCodeStatesConnection!
}
"""


def get_state_fips_code(parent: Dict[str, Any]) -> Hashable:
    """Return the key of a StateMeta record."""
    return parent["stateFipsCode"]


def make_state_fips_code_filter(state_fips_codes: List[Hashable]) -> Dict[str, Any]:
    """Build the arguments of allFipsCodeStates matching any of the given codes."""
    return {"filter": {"stateFipsCode": {"in": state_fips_codes}}}


def make_fips_resolvers(handles: Mapping[str, RemoteSchemaHandle]) -> ResolverMap:
    """Build the resolvers of the fields the gateway adds to StateMeta."""
    vaccine_schema = handles[VACCINE_BACKEND_ID]

    async def resolve_hey(parent: Dict[str, Any], info: GraphQLResolveInfo) -> Any:
        return await delegate_to_schema(
            vaccine_schema,
            "query",
            "fipsCodeStateByStateFipsCode",
            {"stateFipsCode": get_state_fips_code(parent)},
            info.context,
            info,
        )

    resolve_batch = BatchKeyResolver(
        vaccine_schema,
        "allFipsCodeStates",
        key_from_parent=get_state_fips_code,
        args_from_keys=make_state_fips_code_filter,
        values_from_results=make_connection_key_matcher("stateFipsCode"),
        result_normalizer=normalize_connection,
        # Results are matched to keys by stateFipsCode, whatever the client selected.
        selection_set="{ edges { node { stateFipsCode } } nodes { stateFipsCode } }",
    )

    return {
        "StateMeta": {
            "hey": FieldResolver(resolve_hey, selection_set="{ stateFipsCode }"),
            "batch": FieldResolver(resolve_batch, selection_set="{ stateFipsCode }"),
        }
    }


gateway_extensions = GatewayExtensions(
    local_schemas={"local": LOCAL_SCHEMA},
    type_defs=GATEWAY_TYPE_DEFS,
    make_resolvers=make_fips_resolvers,
)
