"""
batchflow: declarative batch migrations

Jobs read rows from sources, transform them and hand them to a chain of
loaders. Every loader's side effects are recorded in ledgers that later jobs
can look up.
"""
__version__ = "0.1.0"
