"""
Admission handler factories.

A factory takes the synced watch caches keyed by name and returns the
admission handlers keyed by callback path.
"""
