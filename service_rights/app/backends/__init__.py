"""
Backend package.

In-memory implementations of the directory, ACL store and rule evaluator
contracts. They keep all state in process and are meant for standalone
runs and tests.
"""
