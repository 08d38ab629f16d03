"""
Provenance services: fingerprints, identity, canonical payloads, signing and matching.
"""

from .fingerprint import *
from .image_hash import *
from .identity import *
from .canonical import *
from .signing import *
from .provenance import *
from .matching import *
