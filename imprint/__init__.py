"""
Imprint - Content Provenance Service

Signed, offline-checkable authorship claims over media content: exact and
perceptual fingerprinting, did:key identities, Ed25519 signatures over a
canonical payload, and a two-tier match resolver.
"""

__version__ = "1.0.0"
__author__ = "Imprint Team"
__description__ = "Content Provenance Service"
