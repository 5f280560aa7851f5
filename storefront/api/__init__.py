# storefront/api/__init__.py
from contextlib import asynccontextmanager

from fastapi import FastAPI

from storefront.api.deps import ClientFactory, SessionRegistry
from storefront.api.routers import cart, orders
from storefront.data.database import SessionLocal
from storefront.services.storefront_client import StorefrontClient


def create_app(client_factory: ClientFactory | None = None, session_factory=None) -> FastAPI:
    registry = SessionRegistry(
        client_factory=client_factory or StorefrontClient,
        session_factory=session_factory or SessionLocal,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # pending quantity edits are sent before shutdown
        await registry.close()

    app = FastAPI(title="Storefront BFF", version="1.0.0", lifespan=lifespan)
    app.state.sessions = registry

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok"}

    app.include_router(cart.router)
    app.include_router(orders.router)
    return app
