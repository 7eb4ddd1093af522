from __future__ import annotations

"""
Template catalog router. Read-only; served from the compiled-in registry.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from magic_server.app.deps import enforce_api_key, get_template_registry
from magic_server.app.models import CategoryInfo, TemplateInfo, TemplateListResponse
from magic_server.app.workspaces.templates import Template, TemplateRegistry

router = APIRouter(dependencies=[Depends(enforce_api_key)])


def _template_info(t: Template) -> TemplateInfo:
    return TemplateInfo(
        id=t.id,
        name=t.name,
        description=t.description,
        icon=t.icon,
        category=t.category,
        features=list(t.features),
        image=t.image,
        env=list(t.env),
        ports=t.port_map(),
    )


@router.get(
    "",
    response_model=TemplateListResponse,
)
async def list_templates(
    category: Optional[str] = Query(None, description="Only return templates in this category"),
    registry: TemplateRegistry = Depends(get_template_registry),
) -> TemplateListResponse:
    templates = registry.by_category(category) if category else registry.list()
    return TemplateListResponse(
        templates=[_template_info(t) for t in templates],
        categories=[CategoryInfo(id=c.id, name=c.name, icon=c.icon) for c in registry.categories()],
    )


@router.get(
    "/{template_id}",
    response_model=TemplateInfo,
)
async def get_template(
    template_id: str,
    registry: TemplateRegistry = Depends(get_template_registry),
) -> TemplateInfo:
    return _template_info(registry.get(template_id))
