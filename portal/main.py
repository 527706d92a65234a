from typing import Optional
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from portal.src import schemas
from portal.src.config import Config
from portal.src.constants import API_TITLE, API_VERSION
from portal.src.db import Store, createStore
from portal.src.exceptions import apiExceptionHandler, validationExceptionHandler
from portal.api.controller import route_api


def createApp(config: Optional[Config] = None, engine: Optional[Engine] = None):
    """
    Build the application.

    Args:
        config (Optional[Config]): Configuration, read from the environment when omitted.
        engine (Optional[Engine]): Store engine, created from the configuration when omitted.

    Returns:
        FastAPI: The application with the configuration and the store attached
        to its state. The store is None when the configuration lacks it.
    """
    if config is None:
        config = Config.fromEnvironment()
    app = FastAPI(title=API_TITLE, version=API_VERSION)
    app.state.config = config
    app.state.store = Store(engine) if engine is not None else createStore(config)

    origins = ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, apiExceptionHandler)
    app.add_exception_handler(RequestValidationError, validationExceptionHandler)

    app.include_router(route_api)

    # Health check endpoint
    @app.get("/health", tags=["Health Check"], response_model=schemas.HealthStatus)
    async def health_check():
        return {
            "status": "OK",
            "version": API_VERSION,
            "store": app.state.store is not None,
        }

    return app


app = createApp()
