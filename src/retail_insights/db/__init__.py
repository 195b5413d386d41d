"""SQL helpers for the query runner.

Analyses are compiled to DuckDB SQL and evaluated against the orders frame
registered in an in-memory DuckDB connection. These helpers keep identifier
quoting and column extraction in one place so the runner can validate every
attribute a definition touches before anything is executed.
"""
