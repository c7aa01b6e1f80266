"""Entry editor API：当前选中日记本的条目列表、新建 composer、编辑弹窗"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ..schemas import (
    ConfirmRequest,
    EditorStateResponse,
    EntryPreviewResponse,
    EntryResponse,
    FieldUpdateRequest,
    FormFieldsResponse,
)
from ..services.client_state import ClientState
from ..services.entry_editor import EntryEditor
from .deps import get_client_state

router = APIRouter(prefix="/editor", tags=["editor"])


def build_editor_state(editor: EntryEditor) -> EditorStateResponse:
    return EditorStateResponse(
        diary_id=editor.diary.id,
        diary_title=editor.diary.title,
        mode=str(editor.mode),
        status=editor.status,
        entries=[EntryPreviewResponse(**p.model_dump()) for p in editor.previews()],
        composer=FormFieldsResponse(title=editor.composer.title, content=editor.composer.content),
        edit_form=FormFieldsResponse(title=editor.edit_form.title, content=editor.edit_form.content),
        editing_entry_id=editor.editing_entry.id if editor.editing_entry else None,
        draft_id=editor.draft_id,
        has_unsaved_changes=editor.has_unsaved_changes,
        saving=editor.saving,
        last_saved_at=editor.last_saved_at,
        last_error=editor.last_error,
    )


@router.get("", response_model=EditorStateResponse)
async def get_editor(state: ClientState = Depends(get_client_state)):
    return build_editor_state(state.require_editor())


@router.post("/composer/open", response_model=EditorStateResponse)
async def open_composer(body: ConfirmRequest, state: ClientState = Depends(get_client_state)):
    editor = state.require_editor()
    editor.open_composer(confirmed=body.confirmed)
    return build_editor_state(editor)


@router.post("/composer/close", response_model=EditorStateResponse)
async def close_composer(body: ConfirmRequest, state: ClientState = Depends(get_client_state)):
    editor = state.require_editor()
    editor.close_composer(confirmed=body.confirmed)
    return build_editor_state(editor)


@router.patch("/fields", response_model=EditorStateResponse)
async def update_fields(body: FieldUpdateRequest, state: ClientState = Depends(get_client_state)):
    """按键：写入当前打开的表单（标题 / 内容）"""
    editor = state.require_editor()
    if body.title is not None:
        editor.set_title(body.title)
    if body.content is not None:
        editor.set_content(body.content)
    return build_editor_state(editor)


@router.post("/autosave", response_model=EditorStateResponse)
async def autosave_now(state: ClientState = Depends(get_client_state)):
    editor = state.require_editor()
    await editor.autosave()
    return build_editor_state(editor)


@router.post("/publish", response_model=EntryResponse)
async def publish(state: ClientState = Depends(get_client_state)):
    entry = await state.require_editor().publish()
    return EntryResponse.model_validate(entry.model_dump())


@router.post("/entries/{entry_id}/edit", response_model=EditorStateResponse)
async def open_edit(entry_id: str, body: ConfirmRequest, state: ClientState = Depends(get_client_state)):
    editor = state.require_editor()
    editor.open_edit(entry_id, confirmed=body.confirmed)
    return build_editor_state(editor)


@router.post("/edit/save", response_model=EntryResponse)
async def save_edit(state: ClientState = Depends(get_client_state)):
    entry = await state.require_editor().save_edit()
    return EntryResponse.model_validate(entry.model_dump())


@router.post("/edit/close", response_model=EditorStateResponse)
async def close_edit(body: ConfirmRequest, state: ClientState = Depends(get_client_state)):
    editor = state.require_editor()
    editor.close_edit(confirmed=body.confirmed)
    return build_editor_state(editor)


@router.delete("/entries/{entry_id}", response_model=EditorStateResponse)
async def delete_entry(
    entry_id: str,
    confirmed: bool = Query(False),
    state: ClientState = Depends(get_client_state),
):
    editor = state.require_editor()
    await editor.delete_entry(entry_id, confirmed=confirmed)
    return build_editor_state(editor)


@router.get("/before-unload")
async def before_unload(state: ClientState = Depends(get_client_state)) -> dict[str, bool]:
    return {"prompt": state.require_editor().before_unload()}
