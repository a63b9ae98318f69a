"""
nexus-workforce persistence layer.

Purpose
- Store protocols the engine is written against, their in-memory
  implementations, and the SQLite write-through event journal.
"""
