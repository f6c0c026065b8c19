"""Boot-time summary of the effective settings."""

from sqlalchemy.engine import make_url

from donaflow.common.config import CommonSettings
from donaflow.common.logging import logger

SECRET_MARKERS = ("key", "secret", "password", "token")


def _display(field: str, value) -> str:
    if value is None or value == "" or value == []:
        return "<unset>"
    if any(marker in field.lower() for marker in SECRET_MARKERS):
        return "<redacted>"
    if field == "database_url":
        return make_url(value).render_as_string(hide_password=True)
    return str(value)


def log_startup_config(config: CommonSettings, fields: list[str]) -> None:
    """Log the chosen settings plus the resulting per-row send bound.

    Secret-looking fields are redacted; empty ones show as `<unset>`.
    """

    summary = {field: _display(field, getattr(config, field)) for field in fields}
    summary["max_outbound_calls_per_log"] = config.conversion_max_attempts * config.sender_max_tries
    logger.info("startup_config service=%s config=%s", config.service_name, summary)
