# coursepay/api/__init__.py
from fastapi import FastAPI

from coursepay.api.routers import admin, carts, health, purchases


def create_app() -> FastAPI:
    app = FastAPI(
        title="CoursePay",
        version="1.0.0",
    )

    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(purchases.router)
    app.include_router(admin.router)

    return app
