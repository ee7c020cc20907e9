"""Environment-driven settings for the prep application."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
import logging
import os
from pathlib import Path
import secrets

from dotenv import load_dotenv

from prep_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from prep_app.constants.test_constants import DEFAULT_PDF_MAX_IMAGE_PAGES
from prep_app.core.models import ClearedMarkPolicy

logger = logging.getLogger(__name__)

_DEFAULT_DATA_FILE = "db.json"
_DEFAULT_MODEL = "gemini-2.5-flash"
_DEFAULT_TOKEN_TTL_DAYS = 7


@dataclass(slots=True)
class Settings:
    """Runtime configuration resolved once at startup."""

    data_file: Path
    jwt_secret: str
    token_ttl: timedelta
    gemini_api_key: str = ""
    gemini_model: str = _DEFAULT_MODEL
    pdf_max_image_pages: int = DEFAULT_PDF_MAX_IMAGE_PAGES
    cleared_mark_policy: ClearedMarkPolicy = ClearedMarkPolicy.REVERT_TO_MARKED
    log_level: str = "INFO"
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from the process environment and an optional ``.env`` file."""
        load_dotenv()

        jwt_secret = os.getenv("JWT_SECRET", "")
        if not jwt_secret:
            # Tokens issued with a per-process secret stop validating on restart.
            logger.warning("JWT_SECRET is not set; using a random secret for this process.")
            jwt_secret = secrets.token_urlsafe(32)

        policy_value = os.getenv("CLEARED_MARK_POLICY", ClearedMarkPolicy.REVERT_TO_MARKED.value)
        try:
            policy = ClearedMarkPolicy(policy_value)
        except ValueError as exc:
            raise ValueError(
                f"CLEARED_MARK_POLICY must be one of {[p.value for p in ClearedMarkPolicy]}."
            ) from exc

        return cls(
            data_file=Path(os.getenv("PREP_DATA_FILE", _DEFAULT_DATA_FILE)),
            jwt_secret=jwt_secret,
            token_ttl=timedelta(days=_read_int("TOKEN_TTL_DAYS", _DEFAULT_TOKEN_TTL_DAYS)),
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            gemini_model=os.getenv("GEMINI_MODEL", _DEFAULT_MODEL),
            pdf_max_image_pages=_read_int("PDF_MAX_IMAGE_PAGES", DEFAULT_PDF_MAX_IMAGE_PAGES),
            cleared_mark_policy=policy,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            host=os.getenv("API_HOST", DEFAULT_HOST),
            port=_read_int("API_PORT", DEFAULT_PORT),
        )


def _read_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        parsed_value = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer.") from exc
    if parsed_value <= 0:
        raise ValueError(f"{name} must be a positive integer.")
    return parsed_value
