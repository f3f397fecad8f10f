"""Examples directory.

This directory primarily exists so that we can:
1. Run linting checks on the examples we embed in our documentation. All of python files in
   this directory are linted as part of CI.
2. Serve the examples directly: a configuration document can name the GatewayExtensions defined
   here, e.g. "examples.fips_gateway:gateway_extensions", when the gateway runs from the root of
   the repository.
"""
