from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from jinja2 import StrictUndefined
from jinja2 import TemplateError as JinjaTemplateError
from jinja2.sandbox import SandboxedEnvironment
from pydantic import BaseModel, Field, field_validator

from notification_engine.core.errors import TemplateError
from notification_engine.core.logging import get_logger
from notification_engine.domain.models import CHANNELS, Channel

if TYPE_CHECKING:
    from notification_engine.templates.sources import TemplateSource

logger = get_logger("templates.renderer")


class NotificationTemplate(BaseModel):
    id: str
    tenant_id: str
    code: str
    subject: str | None = None
    body: str | None = None
    supported_channels: list[Channel] = Field(default_factory=lambda: list(CHANNELS))
    default_variables: dict[str, Any] = Field(default_factory=dict)

    @field_validator("supported_channels", mode="before")
    @classmethod
    def _default_channels(cls, value: Any) -> Any:
        return list(CHANNELS) if not value else value

    @field_validator("default_variables", mode="before")
    @classmethod
    def _variables_dict(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class RenderedTemplate:
    template_id: str
    template_code: str
    subject: str | None
    body: str | None
    supported_channels: tuple[Channel, ...] = field(default_factory=lambda: CHANNELS)


class TemplateRenderer(Protocol):
    async def render(
        self,
        *,
        tenant_id: str,
        template_id: str | None,
        template_code: str | None,
        variables: dict[str, Any],
    ) -> RenderedTemplate:
        ...


class JinjaTemplateRenderer:
    """Renders tenant templates from an in-process catalog, falling back to an optional source.

    Undefined variables are an error rather than an empty string, so a caller
    that forgets a variable gets a ``TemplateError`` instead of a half-filled
    message.
    """

    def __init__(self, templates: Iterable[NotificationTemplate] = (), *, source: TemplateSource | None = None) -> None:
        self.source = source
        self._env = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)
        self._by_id: dict[tuple[str, str], NotificationTemplate] = {}
        self._by_code: dict[tuple[str, str], NotificationTemplate] = {}
        for template in templates:
            self.add(template)

    def add(self, template: NotificationTemplate) -> None:
        self._by_id[(template.tenant_id, template.id)] = template
        self._by_code[(template.tenant_id, template.code)] = template

    def find(
        self,
        tenant_id: str,
        *,
        template_id: str | None = None,
        template_code: str | None = None,
    ) -> NotificationTemplate | None:
        if template_id:
            return self._by_id.get((tenant_id, template_id))
        if template_code:
            return self._by_code.get((tenant_id, template_code))
        return None

    async def render(
        self,
        *,
        tenant_id: str,
        template_id: str | None,
        template_code: str | None,
        variables: dict[str, Any],
    ) -> RenderedTemplate:
        template = self.find(tenant_id, template_id=template_id, template_code=template_code)
        if template is None and self.source is not None:
            template = await self.source.fetch(tenant_id, template_id=template_id, template_code=template_code)
        if template is None:
            reference = template_id or template_code or "<none>"
            raise TemplateError(f"Template {reference} not found.")

        context = {**template.default_variables, **variables}
        return RenderedTemplate(
            template_id=template.id,
            template_code=template.code,
            subject=self._render_string(template, "subject", template.subject, context),
            body=self._render_string(template, "body", template.body, context),
            supported_channels=tuple(template.supported_channels),
        )

    def _render_string(
        self,
        template: NotificationTemplate,
        part: str,
        source: str | None,
        context: dict[str, Any],
    ) -> str | None:
        if source is None:
            return None
        try:
            return self._env.from_string(source).render(context)
        except JinjaTemplateError as exc:
            logger.warning(
                "templates.render_failed",
                extra={
                    "component": "templates",
                    "template_code": template.code,
                    "part": part,
                    "error": str(exc),
                },
            )
            raise TemplateError(f"Failed to render {part} of template {template.code}: {exc}") from exc
