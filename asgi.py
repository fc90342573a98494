"""
asgi.py -- Application assembly for the self-administration add-on.

This is the ONLY file that mounts the web UI onto the API app. api/main.py
knows nothing about web/; web/routes.py shares nothing with the API routes
except the rate limiter from api/limiter.py and the services on app.state.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import router as web_router

# Mount the web UI router here, not in api/main.py.
app.include_router(web_router, tags=["Web UI"])
