"""Certificate issuing workflows.

    routes / cli -> services -> repositories, storage, rendering

Services raise domain errors that the routes map to HTTP status codes and
the CLI prints. They never import FastAPI. Only bulk generation opens and
commits its own sessions, one per recipient.
"""
