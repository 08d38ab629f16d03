"""
Core infrastructure: errors, record store and shared utilities.
"""

from .errors import *
from .database import *
from .utils import *
