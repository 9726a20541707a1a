"""Optional Sentry error tracking."""

import logging

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from infrastructure.config.settings import Settings

logger = logging.getLogger(__name__)


def init_sentry(settings: Settings) -> bool:
    """
    Initialise Sentry when ``SENTRY_DSN`` is set and looks valid.

    Returns True when Sentry was initialised.
    """
    dsn = settings.sentry_dsn
    if not dsn:
        return False
    if not dsn.startswith("https://"):
        logger.warning("SENTRY_DSN appears malformed (%s...), Sentry disabled", dsn[:30])
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=settings.environment,
        release=f"llm-navigator@{settings.app_version}",
        integrations=[
            FastApiIntegration(transaction_style="url"),
            SqlalchemyIntegration(),
            RedisIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        send_default_pii=False,
    )
    logger.info("Sentry error tracking initialised (env=%s)", settings.environment)
    return True
