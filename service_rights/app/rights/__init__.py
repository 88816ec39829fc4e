"""
Rights package.

Defines the right catalog, the capability value types and the protocol
that queries and mutates grants. Effective rights are snapshots: they
never refer back to the directory or the ACL store.

Modules of interest:
- models: ACE, ACL, right definitions and effective-rights snapshots.
- aggregation: Grouping of entries that share identical rights.
- catalog: YAML-backed right catalog.
- command: Queries plus the grant/revoke verification pipeline.
- codec: Transport documents for ACLs, effective rights and rights.
"""
