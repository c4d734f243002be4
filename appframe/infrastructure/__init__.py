"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Database handles and the process-wide handle registry
- Optional capability loading
- Request adapters (CGI environment, Starlette)
- Session store, SQL statement directory and templates
"""
