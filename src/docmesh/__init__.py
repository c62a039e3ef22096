"""DocMesh: resilient client core for a clustered document store.

Provides composable retry/repeat policies with backoff and jitter, an
async execution engine that drives attempts under those policies, and
document-backed collections that stay consistent under concurrent
writers by relying on compare-and-swap (CAS) tokens.
"""

__version__ = "1.0.0"
