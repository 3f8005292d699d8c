"""Scriptwriter package.

Engine for AI-assisted long-form writing: batched outline generation,
immutable draft snapshots and a memory index built from command output.
The CLI in scriptwriter.cli is a thin layer over scriptwriter.engine.
"""

__version__ = "0.1.0"

__all__ = [
    "context",
    "env",
    "config",
    "store",
    "parsing",
    "outline",
    "project",
    "drafts",
    "memory",
    "workflow",
    "templates",
    "validation",
    "llm",
    "tokenizer",
    "artifacts",
    "resume",
    "export",
    "engine",
]
