"""Entrypoint for the FastAPI application."""

import os
from dotenv import load_dotenv

# Load .env locally only; deployed environments inject variables directly.
env_path = os.path.join(os.path.dirname(__file__), "../.env")
if os.path.exists(env_path):
    load_dotenv(dotenv_path=os.path.abspath(env_path))

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import health, invoices
from .core.logging import configure_logging
from .services.exceptions import BillingError


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Gym Billing", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BillingError, billing_error_handler)

    app.include_router(health.router, prefix="/api")
    app.include_router(invoices.router, prefix="/api")

    return app


app = create_app()
