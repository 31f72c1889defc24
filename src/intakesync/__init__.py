"""
intakesync: offline-first draft persistence for intake-form wizards.

Encrypted autosave on the device, an edit lease so two sessions never
silently clobber each other, and a background sync engine that pushes
drafts to a remote store with optimistic concurrency.
"""

import os

__version__ = "0.1.0"
__author__ = "intakesync contributors"

INTAKE_HOME = os.environ.get("INTAKE_HOME", "~/.intakesync")
