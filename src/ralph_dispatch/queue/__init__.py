"""Durable job queue for sandboxed coding-agent runs.

Jobs live in a single SQLite database. Pollers claim work with one
conditional ``UPDATE ... RETURNING`` statement, so two workers pointed at
the same file never run the same job, and no broker is needed for what is
a single-machine tool.
"""
