from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

from pydantic import TypeAdapter, ValidationError

from notification_engine.core.errors import StoreError, TemplateError
from notification_engine.core.logging import get_logger
from notification_engine.store.supabase import QueryParams, SupabaseRestClient
from notification_engine.templates.renderer import NotificationTemplate

logger = get_logger("templates.sources")

_CATALOG = TypeAdapter(list[NotificationTemplate])


class TemplateSource(Protocol):
    async def fetch(
        self,
        tenant_id: str,
        *,
        template_id: str | None = None,
        template_code: str | None = None,
    ) -> NotificationTemplate | None:
        ...


def load_template_catalog(path: str | Path) -> list[NotificationTemplate]:
    """Read a JSON catalog: either a list of templates or ``{"templates": [...]}``."""
    catalog_path = Path(path)
    try:
        raw = catalog_path.read_bytes()
    except OSError as exc:
        raise TemplateError(f"Template catalog {catalog_path} could not be read.") from exc

    try:
        if raw.lstrip().startswith(b"{"):
            wrapper = TypeAdapter(dict[str, list[NotificationTemplate]]).validate_json(raw)
            templates = wrapper.get("templates", [])
        else:
            templates = _CATALOG.validate_json(raw)
    except ValidationError as exc:
        raise TemplateError(f"Template catalog {catalog_path} is invalid: {exc.error_count()} error(s).") from exc

    logger.info(
        "templates.catalog_loaded",
        extra={"component": "templates", "path": str(catalog_path), "count": len(templates)},
    )
    return templates


class SupabaseTemplateSource:
    """Looks templates up in the tenant's ``notification_templates`` rows."""

    def __init__(self, client: SupabaseRestClient, *, table: str = "notification_templates") -> None:
        self.client = client
        self.table = table

    async def fetch(
        self,
        tenant_id: str,
        *,
        template_id: str | None = None,
        template_code: str | None = None,
    ) -> NotificationTemplate | None:
        params: QueryParams = [("select", "*"), ("tenant_id", f"eq.{tenant_id}")]
        if template_id:
            params.append(("id", f"eq.{template_id}"))
        elif template_code:
            params.append(("code", f"eq.{template_code}"))
        else:
            return None
        params.append(("limit", "1"))

        response = await self.client.request(
            "GET",
            self.table,
            params=params,
            error_detail="Failed to fetch notification template from Supabase.",
        )
        try:
            rows: Any = response.json()
        except ValueError as exc:
            raise StoreError("Invalid notification template response from Supabase.") from exc
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise StoreError("Invalid notification template response from Supabase.")
        if not rows:
            return None
        try:
            return NotificationTemplate.model_validate(rows[0])
        except ValidationError as exc:
            raise StoreError(f"Invalid notification template row {rows[0].get('id')!r} in Supabase.") from exc
