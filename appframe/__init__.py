"""
appframe
========

Scaffolding for web database applications: one Application per request
wires together the configuration, the request, a cached database handle,
a session and templates, and reports fatal errors in one place.
"""

__version__ = "0.3.0"
