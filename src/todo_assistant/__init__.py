"""
Todo Assistant backend package.

A FastAPI service exposing CRUD for todos behind session authentication,
plus a streaming chat assistant that manages todos through tools. The ASGI
application lives in `todo_assistant.main:app`.
"""

__version__ = "0.1.0"
