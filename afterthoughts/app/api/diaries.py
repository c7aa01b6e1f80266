"""Diary API：目录、新建、选中 / 返回、改名、删除"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from ..models import RowId
from ..schemas import (
    ConfirmRequest,
    DiaryDeleteResponse,
    DiaryListResponse,
    DiaryResponse,
    DiaryTitleRequest,
    EditorStateResponse,
)
from ..services.client_state import ClientState
from ..services.diary_management import DiaryManager
from ..services.session_gate import HOME_PATH
from .deps import get_client_state
from .editor import build_editor_state

router = APIRouter(prefix="/diaries", tags=["diaries"])
logger = logging.getLogger(__name__)


def _list_response(state: ClientState) -> DiaryListResponse:
    directory = state.require_directory()
    return DiaryListResponse(
        diaries=[DiaryResponse.model_validate(d.model_dump()) for d in directory.diaries],
        selected_id=directory.selected.id if directory.selected else None,
    )


def _manager_for(state: ClientState, diary_id: RowId) -> DiaryManager:
    """改名 / 删除只作用于当前选中的日记本"""
    manager = state.require_manager()
    if str(manager.diary.id) != str(diary_id):
        raise LookupError(f"Diary not selected: {diary_id}")
    return manager


@router.get("", response_model=DiaryListResponse)
async def list_diaries(
    refresh: bool = Query(False, description="是否重新拉取（默认使用本会话缓存）"),
    state: ClientState = Depends(get_client_state),
):
    if refresh:
        await state.require_directory().load()
    return _list_response(state)


@router.post("", response_model=DiaryResponse)
async def create_diary(body: DiaryTitleRequest, state: ClientState = Depends(get_client_state)):
    diary = await state.require_directory().create(body.title)
    return DiaryResponse.model_validate(diary.model_dump())


@router.post("/back", response_model=DiaryListResponse)
async def back_to_list(body: ConfirmRequest, state: ClientState = Depends(get_client_state)):
    await state.back_to_list(confirmed=body.confirmed)
    return _list_response(state)


@router.post("/{diary_id}/select", response_model=EditorStateResponse)
async def select_diary(diary_id: str, body: ConfirmRequest, state: ClientState = Depends(get_client_state)):
    editor = await state.select_diary(diary_id, confirmed=body.confirmed)
    return build_editor_state(editor)


@router.patch("/{diary_id}", response_model=DiaryResponse)
async def rename_diary(diary_id: str, body: DiaryTitleRequest, state: ClientState = Depends(get_client_state)):
    diary = await _manager_for(state, diary_id).rename(body.title)
    return DiaryResponse.model_validate(diary.model_dump())


@router.delete("/{diary_id}", response_model=DiaryDeleteResponse)
async def delete_diary(
    diary_id: str,
    confirmed: bool = Query(False),
    state: ClientState = Depends(get_client_state),
):
    deleted = await _manager_for(state, diary_id).delete(confirmed=confirmed)
    logger.info("[DIARY] Diary deleted via API: client=%s diary=%s entries=%s", state.client_id, diary_id, deleted)
    return DiaryDeleteResponse(deleted_entries=deleted, redirect=HOME_PATH)
