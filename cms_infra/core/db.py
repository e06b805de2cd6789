import logging
from fastapi import FastAPI
from tortoise import Tortoise
from tortoise.contrib.fastapi import RegisterTortoise
from cms_infra.core.config import DB_URL

log = logging.getLogger(__name__)

# Define all models modules for the ORM
MODELS_MODULES = [
    "cms_infra.models.outbox",
]


def register_db(app: FastAPI, db_url: str = DB_URL) -> RegisterTortoise:
    """
    ORM lifecycle for the web app, used as `async with register_db(app):` in the lifespan.
    Request handlers run outside the lifespan task, so the ORM context is registered globally.
    """
    return RegisterTortoise(
        app,
        db_url=db_url,
        modules={"models": MODELS_MODULES},
        generate_schemas=True,
    )


async def init_db(db_url: str = DB_URL):
    """Initializes the Tortoise ORM connection and generates schemas (standalone dispatcher)."""
    try:
        await Tortoise.init(
            db_url=db_url,
            modules={"models": MODELS_MODULES},
        )
        # Generate the database schema (create tables)
        await Tortoise.generate_schemas(safe=True)
        log.info("Database connection established and schemas generated.")
    except Exception as e:
        log.error(f"FATAL ERROR: Could not connect to database. Error: {e}")
        # Re-raise to prevent the process from starting without a database
        raise

async def close_db():
    """Closes all database connections."""
    await Tortoise.close_connections()
    log.info("Database connections closed.")
