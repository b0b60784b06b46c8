#!/usr/bin/env python3
"""Create the invoicer tables (tenants, users, credentials) if they are missing."""

from __future__ import annotations

import asyncio

from config.settings import get_settings
from invoicer.core.logging import get_logger, setup_logging
from invoicer.data.db import close_engine, init_schema, metadata

log = get_logger("setup_db")


async def create_tables() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.invoicer_env == "prod")
    log.info("schema_init_started", env=settings.invoicer_env, tables=sorted(metadata.tables))
    try:
        await init_schema()
    finally:
        await close_engine()
    log.info("schema_init_done")


if __name__ == "__main__":
    asyncio.run(create_tables())
