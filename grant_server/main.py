"""
Grant server: authorization-code grant with PKCE, refresh rotation, introspection.
Port 9000.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from grant_server.authorize import router as authorize_router
from grant_server.bearer import require_scope
from grant_server.config import LOG_LEVEL
from grant_server.context import AppContext, build_context
from grant_server.introspect import router as introspect_router
from grant_server.revoke import router as revoke_router
from grant_server.seed import seed_from_env
from grant_server.token_endpoint import router as token_router
from grant_server.tokens import DecodedToken, SigningError
from grant_server.well_known import router as well_known_router

logger = logging.getLogger(__name__)


def create_app(context: AppContext | None = None) -> FastAPI:
    """Build the app. Without a context one is built from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "context", None) is None:
            logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
            app.state.context = build_context()
            seed_from_env(app.state.context.registry)
        yield
        app.state.context.engine.dispose()

    app = FastAPI(title="Grant Server", version="1.0.0", lifespan=lifespan)
    app.state.context = context
    app.include_router(authorize_router, tags=["authorize"])
    app.include_router(token_router, tags=["token"])
    app.include_router(introspect_router, tags=["introspect"])
    app.include_router(revoke_router, tags=["revoke"])
    app.include_router(well_known_router, tags=["well-known"])

    @app.exception_handler(SigningError)
    async def signing_error_handler(request: Request, exc: SigningError):
        # Key misconfiguration: the system is broken, the client did nothing wrong
        logger.exception("Token signing failed on %s", request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": {"error": "server_error"}})

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "grant_server"}

    @app.get("/tokeninfo")
    def tokeninfo(token: DecodedToken = require_scope()):
        """Claims of the presented access token."""
        claims = token.claims
        return {
            "client_id": claims.client_id,
            "sub": claims.user_id,
            "scope": " ".join(claims.scope),
            "exp": token.expires_at,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "grant_server.main:app",
        host="127.0.0.1",
        port=9000,
        reload=True,
    )
