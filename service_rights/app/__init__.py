"""
Rights Service package for the access layer.

This package answers who may do what on which directory entry and lets
delegated administrators hand rights on to others. It provides:

- app.main: API surface for right lookups, checks, effective rights,
  grants and revokes, plus health and metrics.
- app.rights: Right catalog, capability models, the aggregation engine,
  transport documents and the grant/revoke protocol.
- app.backends: In-memory directory, ACL store and rule evaluator used
  when the service runs standalone.

Guidelines:
- Keep the protocol independent of any backend; it only talks to the
  collaborator contracts in app.rights.interfaces.
- Every mutation is logged and counted (metrics + logs).
"""
