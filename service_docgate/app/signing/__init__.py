"""
Outbound request signing.

- signing.request: request value types.
- signing.signer: the OCI HTTP signature implementation.
- signing.strategies: direct signing versus pre-authenticated URLs.
"""
