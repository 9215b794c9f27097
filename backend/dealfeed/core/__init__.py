"""Core cross-cutting pieces (exceptions, logging)."""
