"""
Storeflow - workflow automation engine for the storefront CMS.

Architecture:
- registry/: Primitive registry (schema-described callable operations)
- primitives/: Built-in primitive table (data, text, http, shipping, stripe)
- workflows/: Definitions, graph validator, interpreter, templates, service
- storage/: Workflow definition store (memory or Redis)
- api/: FastAPI surface used by the admin editor
- integrations/: Celery tasks for triggered and scheduled runs
"""

__version__ = "1.0.0"
