"""
Feature modules live under this package.

Keep module boundaries clean: each module owns its routes/models/services,
while reusing platform primitives (sessions, guard, audit, storage, DB session).
"""
