"""
Card template API router.

Lists templates, serves sliced card faces, and edits template metadata.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from templates import TemplateStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/templates", tags=["templates"])


# =============================================================================
# Request Models
# =============================================================================


class GridRequest(BaseModel):
    grid: Optional[Any] = None


class RenameRequest(BaseModel):
    name: Optional[str] = None


# =============================================================================
# Dependencies
# =============================================================================

_template_store: Optional[TemplateStore] = None


def set_template_store(store: TemplateStore) -> None:
    """Set the template store instance (called from main.py)."""
    global _template_store
    _template_store = store


def get_template_store() -> TemplateStore:
    if _template_store is None:
        raise HTTPException(status_code=503, detail="Template store not initialized")
    return _template_store


def _result(ok: bool):
    if not ok:
        return JSONResponse(status_code=400, content={"ok": False})
    return {"ok": True}


# =============================================================================
# Endpoints
# =============================================================================


@router.get("")
async def list_templates():
    return {"templates": [t.to_dict() for t in get_template_store().list_templates()]}


@router.get("/{template_id}/slice/{idx}")
async def get_slice(template_id: str, idx: int):
    """One sliced card face as PNG."""
    store = get_template_store()
    if store.load_template(template_id) is None:
        raise HTTPException(status_code=404, detail="not found")
    path = store.slice_path(template_id, idx)
    if path is None:
        raise HTTPException(status_code=404, detail="no slice")
    return FileResponse(path, media_type="image/png")


@router.post("/{template_id}/grid")
async def set_grid(template_id: str, request: GridRequest):
    return _result(get_template_store().set_grid(template_id, request.grid))


@router.post("/{template_id}/rename")
async def rename_template(template_id: str, request: RenameRequest):
    return _result(get_template_store().rename(template_id, request.name))


@router.delete("/{template_id}")
async def delete_template(template_id: str):
    return _result(get_template_store().delete(template_id))
