"""
Shared Kernel Module
====================

Generic infrastructure used by every part of the framework: structured
logging and the web middleware that turns a terminated request into a
response.
"""
