# card_identity/__init__.py
"""
card_identity: a polymorphic store of identity cards (KTP, SIM, BPJS, passport, ...)
attached to any owning entity by a weak (reference_type, reference_id) pair, with a
read-through, tag-invalidated cache in front of it.
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
