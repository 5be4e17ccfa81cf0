"""
docgate service package.

Authenticates inbound callers with a bearer token and forwards their reads
to an OCI Object Storage bucket, either signing each request or going
through a cached pre-authenticated request.

Structure:
- app.main: FastAPI app, routes, and service wiring.
- app.credentials: credential providers and the provider chain.
- app.signing: request signing and the signing strategies.
- app.adapters: object storage transport and PAR creation.
- app.caching: scoped token cache.
- app.domain: inbound auth gate and the proxy gateway.
"""
