# HushKey: FastAPI Backend
#
# Local REST API for backup export/restore. Bound to localhost by default;
# every route requires the current vault-session token.

import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .backup_routes import router as backup_router
from .security import current_session_token, issue_session_token
from .vault_routes import router as vault_router

logger = logging.getLogger(__name__)

app = FastAPI(
    title="HushKey Backup API",
    description="Encrypted backup and restore for HushKey vaults",
    version=__version__,
)

_allowed_origins = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:8000", "http://127.0.0.1:8000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(vault_router)
app.include_router(backup_router)


@app.on_event("startup")
async def startup_event():
    """Generate the session token unless one was already issued."""
    try:
        current_session_token()
    except RuntimeError:
        issue_session_token()
    logger.info("HushKey API started (session token issued)")


@app.get("/api/session")
async def session_info():
    """Hand the session token to the local client.

    Only reachable on the bound interface (localhost by default).
    """
    return {"session_token": current_session_token()}


def start_api_server(host: str = "127.0.0.1", port: int = 8000):
    """
    Start the FastAPI server.

    Args:
        host: Host to bind to (default: localhost only)
        port: Port to listen on
    """
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    start_api_server()
