"""Audit trail: redaction, immutable entries, the append-only store and the recorder.

Import from the submodules directly; ``medgate.utils.logging`` depends on
``medgate.audit.redaction`` so this package must not import its siblings.
"""
