"""
Pydantic models for provenance records, usage policies and verification results.
"""

from .record import *
from .similarity import *
