"""
Typed records parsed from human-facing governance documents.

Only labeled fields are read (see ``fields``); prose is ignored.
"""

from .fields import LabeledDocument, load_document, parse_document
from .packet import WorkPacket, load_packet, parse_packet
from .refinement import RefinementDocument, validate_refinement

__all__ = [
    "LabeledDocument",
    "load_document",
    "parse_document",
    "WorkPacket",
    "load_packet",
    "parse_packet",
    "RefinementDocument",
    "validate_refinement",
]
