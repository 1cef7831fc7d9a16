from __future__ import annotations
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import sqlalchemy as sa
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from invoicing.errors import ValidationError
from invoicing.services.invoice_service import InvoiceService
from invoicing.storage.repo import InMemoryInvoiceRepository, InvoiceRepository
from invoicing.storage.sql_repo import SqlInvoiceRepository

log = logging.getLogger(__name__)

# --- Chemins de base ---
ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT_DIR / "data"
SETTINGS_JSON = DATA_DIR / "settings.json"

ENV_KEYS = {
    "INVOICING_BACKEND": "backend",
    "INVOICING_DATABASE_URL": "database_url",
    "INVOICING_ECHO_SQL": "echo_sql",
}


def _default_database_url() -> str:
    return f"sqlite:///{(DATA_DIR / 'invoices.db').as_posix()}"


class Settings(BaseModel):
    backend: Literal["sql", "memory"] = "sql"
    database_url: str = Field(default_factory=_default_database_url)
    echo_sql: bool = False


def _load_json(path: os.PathLike | str) -> Optional[Any]:
    p = Path(path)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        log.warning("settings file %s ignored (%s)", p, e)
        return None


def load_settings(
    settings_path: os.PathLike | str = SETTINGS_JSON,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> Settings:
    """
    Résout la config stockage :
    - arguments explicites
    - variables d'env (INVOICING_BACKEND, INVOICING_DATABASE_URL, INVOICING_ECHO_SQL)
    - data/settings.json -> section "storage"
    - valeurs par défaut
    """
    values: Dict[str, Any] = {}

    s = _load_json(settings_path) or {}
    storage = s.get("storage") if isinstance(s, dict) else None
    if isinstance(storage, dict):
        values.update({k: v for k, v in storage.items() if k in Settings.model_fields})

    env = os.environ if env is None else env
    for env_key, field in ENV_KEYS.items():
        val = env.get(env_key)
        if val not in (None, ""):
            values[field] = val

    values.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return Settings(**values)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid storage settings: {exc}") from exc


def build_repository(settings: Optional[Settings] = None) -> InvoiceRepository:
    settings = settings or load_settings()
    if settings.backend == "memory":
        return InMemoryInvoiceRepository()
    log.info("using SQL storage at %s", sa.make_url(settings.database_url).render_as_string(hide_password=True))
    return SqlInvoiceRepository(settings.database_url, echo=settings.echo_sql)


def build_service(settings: Optional[Settings] = None) -> InvoiceService:
    return InvoiceService(build_repository(settings))
