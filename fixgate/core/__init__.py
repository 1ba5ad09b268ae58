"""Core layer package.

Shared models, the error taxonomy and collaborator protocols. Nothing here
imports from the domain, infra or pipeline layers.
"""
