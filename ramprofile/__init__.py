"""
RAM Profile - run an application profile from RAM, safely.

Load the profile into memory, save it back, and keep zip backups of it.
"""

from importlib.metadata import version as _version

__version__ = _version("ramprofile")
