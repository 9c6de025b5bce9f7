"""Serve the FruitGuard HTTP API.

Exposes the FastAPI ``app`` built in api/main.py at the repository root,
so ``uvicorn main:app`` starts the prediction, feedback and reload routes.
"""

from api.main import app  # re-export for uvicorn
