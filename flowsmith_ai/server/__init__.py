"""
FlowSmith-AI Server Package.

This package contains the web server that exposes the Agent block executor.

Subpackages:
    api: FastAPI route definitions and endpoint logic.
    core: Configuration, constants and database connections.
    exception_handlers: Mapping of domain errors to HTTP responses.
    services: Construction of the handler and its collaborators.
"""
