"""
Docgate caching package.

Holds the scoped token cache. Refreshes are coalesced and invalidation is
explicit.
"""
