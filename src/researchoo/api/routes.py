"""API router: project, files, affinity map, sidebar, transcript edits, history, tasks, SSE."""

from __future__ import annotations

import json
import logging
import queue
import shutil
from pathlib import Path
from typing import Any

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from researchoo import config
from researchoo.api.task_manager import DONE_EVENTS, TaskManager
from researchoo.errors import NoDocumentError
from researchoo.models import Cluster, ProjectFile, Screen, new_id
from researchoo.project.session import ProjectSession
from researchoo.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)

router = APIRouter()
_task_manager = TaskManager()

# Lazy-initialized session backed by the SQLite blob store
_session: ProjectSession | None = None


def _get_session() -> ProjectSession:
    global _session
    if _session is None:
        store = BlobStore(config.SQLITE_PATH)
        store.init_db()
        _session = ProjectSession(store)
        _session.load()
    return _session


def _no_document() -> HTTPException:
    return HTTPException(status_code=409, detail=str(NoDocumentError()))


# ── Health ──


@router.get("/health")
def health():
    return {"status": "ok"}


# ── Project ──


class RenameRequest(BaseModel):
    name: str


class ScreenRequest(BaseModel):
    screen: str


class LanguageRequest(BaseModel):
    language: str


@router.get("/project")
def get_project():
    return _get_session().to_dict()


@router.post("/project")
def new_project():
    session = _get_session()
    project_id = session.new_project()
    return {"id": project_id, "projectName": session.project_name}


@router.post("/project/start")
def start_project():
    project_id = _get_session().start_analysis()
    return {"id": project_id}


@router.put("/project/name")
def rename_project(req: RenameRequest):
    session = _get_session()
    try:
        session.rename(req.name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"id": session.id, "projectName": session.project_name}


@router.post("/project/screen")
def navigate(req: ScreenRequest):
    try:
        screen = Screen(req.screen)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown screen {req.screen!r}")
    _get_session().navigate(screen)
    return {"currentScreen": screen.value}


@router.put("/project/language")
def set_language(req: LanguageRequest):
    try:
        _get_session().set_language(req.language)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"language": req.language}


# ── Files ──


def _make_progress_callback(task_id: str, file_id: str):
    """Create a progress callback bound to a task and file ID."""
    def callback(status: str, progress: int | None):
        _task_manager.push_progress(
            task_id, {"fileId": file_id, "status": status, "progress": progress},
        )
    return callback


def _store_upload(file_id: str, upload: UploadFile) -> Path:
    name = Path(upload.filename or "upload").name
    dest_dir = config.get_upload_dir(file_id)
    dest_dir.mkdir(parents=True, exist_ok=True)
    dest = dest_dir / name
    with dest.open("wb") as out:
        shutil.copyfileobj(upload.file, out)
    return dest


@router.post("/project/files")
def upload_files(
    files: list[UploadFile] = File(...),
    project_name: str | None = Form(None),
):
    """Store uploaded files and start one analysis task per file."""
    session = _get_session()
    if project_name:
        session.rename(project_name)

    started = []
    for upload in files:
        file_id = new_id()
        path = _store_upload(file_id, upload)
        pf = session.add_file(path.name, path, upload.content_type, file_id=file_id)
        task_id = new_id()

        def _run(pf: ProjectFile = pf, task_id: str = task_id) -> dict[str, Any]:
            data = session.analyze_file(pf.id, on_progress=_make_progress_callback(task_id, pf.id))
            if data is None:
                return {"fileId": pf.id, "discarded": True}
            return {
                "fileId": pf.id,
                "discarded": False,
                "tags": len(data.tags),
                "highlights": len(data.highlights),
                "clusters": len(data.clusters),
                "warning": pf.warning,
            }

        _task_manager.submit("analyze", _run, task_id=task_id, meta={"file_id": pf.id})
        logger.info("Queued analysis of %s (%s) as task %s", pf.name, pf.type, task_id)
        started.append({"fileId": pf.id, "name": pf.name, "type": pf.type, "task_id": task_id})
    session.save()
    return {"files": started}


@router.delete("/project/files/{file_id}")
def remove_file(file_id: str):
    if not _get_session().remove_file(file_id):
        raise HTTPException(status_code=404, detail="File not found")
    return {"removed": True, "fileId": file_id}


@router.post("/project/files/{file_id}/select")
def select_file(file_id: str):
    try:
        data = _get_session().select_file(file_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="File not found")
    except NoDocumentError:
        raise HTTPException(status_code=409, detail="File has no analysis yet")
    return {"activeFileId": file_id, "data": data.to_dict()}


# ── Affinity map ──


class ItemBody(BaseModel):
    id: str
    text: str = ""
    highlightIds: list[str] | None = None
    type: str | None = None
    unresolvedHighlightIds: list[str] = []


class ClusterBody(BaseModel):
    id: str
    title: str = ""
    items: list[ItemBody] = []
    color: str = "#E2E8F0"
    x: float | None = None
    y: float | None = None
    width: float | None = None
    height: float | None = None


class ClustersRequest(BaseModel):
    clusters: list[ClusterBody]


class MoveItemRequest(BaseModel):
    source_cluster_id: str
    item_id: str
    target_cluster_id: str
    before_item_id: str | None = None


@router.put("/project/clusters")
def update_clusters(req: ClustersRequest):
    clusters = [Cluster.from_dict(c.model_dump()) for c in req.clusters]
    try:
        _get_session().update_clusters(clusters)
    except NoDocumentError:
        raise _no_document()
    return {"clusters": [c.to_dict() for c in clusters]}


@router.post("/project/clusters/layout")
def layout_clusters():
    try:
        board = _get_session().board()
    except NoDocumentError:
        raise _no_document()
    board.auto_layout()
    return {"clusters": [c.to_dict() for c in board.clusters]}


@router.post("/project/clusters/items/move")
def move_item(req: MoveItemRequest):
    try:
        board = _get_session().board()
    except NoDocumentError:
        raise _no_document()
    moved = board.move_item(
        req.source_cluster_id, req.item_id, req.target_cluster_id, req.before_item_id,
    )
    return {"moved": moved, "clusters": [c.to_dict() for c in board.clusters]}


@router.post("/project/clusters/generate")
def generate_clusters():
    """Start affinity mapping of the open document as a background task."""
    session = _get_session()
    if session.data is None:
        raise _no_document()
    if not session.data.highlights:
        raise HTTPException(status_code=400, detail="The document has no highlights to map")

    def _run() -> dict[str, Any]:
        clusters = session.generate_affinity()
        return {"clusters": len(clusters)}

    task_id = _task_manager.submit("affinity", _run, meta={"project_id": session.id})
    return {"task_id": task_id}


class NewClusterRequest(BaseModel):
    title: str | None = None
    viewport_width: float = 1200
    viewport_height: float = 800
    scale: float = 1.0
    offset_x: float = 0.0
    offset_y: float = 0.0


class ClusterTitleRequest(BaseModel):
    title: str


class NoteRequest(BaseModel):
    text: str | None = None


@router.post("/project/clusters")
def add_cluster(req: NewClusterRequest):
    try:
        cluster = _get_session().add_cluster(
            req.viewport_width, req.viewport_height, req.title,
            scale=req.scale, offset_x=req.offset_x, offset_y=req.offset_y,
        )
    except NoDocumentError:
        raise _no_document()
    return cluster.to_dict()


@router.put("/project/clusters/{cluster_id}/title")
def rename_cluster(cluster_id: str, req: ClusterTitleRequest):
    try:
        _get_session().rename_cluster(cluster_id, req.title)
    except NoDocumentError:
        raise _no_document()
    except KeyError:
        raise HTTPException(status_code=404, detail="Cluster not found")
    return {"id": cluster_id, "title": req.title}


@router.delete("/project/clusters/{cluster_id}")
def delete_cluster(cluster_id: str, confirm: bool = Query(False)):
    """Two-step delete: the first call asks for confirmation, ``?confirm=true`` deletes."""
    session = _get_session()
    try:
        if not confirm:
            if not session.request_delete_cluster(cluster_id):
                raise HTTPException(status_code=404, detail="Cluster not found")
            return {"pending": cluster_id, "confirmed": False}
        if session.pending_cluster_delete != cluster_id:
            raise HTTPException(status_code=409, detail="Deletion was not requested for this cluster")
        session.confirm_delete_cluster()
    except NoDocumentError:
        raise _no_document()
    return {"deleted": cluster_id, "confirmed": True}


@router.post("/project/clusters/delete/cancel")
def cancel_delete_cluster():
    _get_session().cancel_delete_cluster()
    return {"pending": None}


@router.post("/project/clusters/{cluster_id}/notes")
def add_note(cluster_id: str, req: NoteRequest):
    try:
        item = _get_session().add_note(cluster_id, req.text)
    except NoDocumentError:
        raise _no_document()
    except KeyError:
        raise HTTPException(status_code=404, detail="Cluster not found")
    return item.to_dict()


@router.put("/project/clusters/{cluster_id}/notes/{item_id}")
def edit_note(cluster_id: str, item_id: str, req: NoteRequest):
    try:
        _get_session().edit_note(cluster_id, item_id, req.text or "")
    except NoDocumentError:
        raise _no_document()
    except KeyError:
        raise HTTPException(status_code=404, detail="Note not found")
    return {"id": item_id, "text": req.text or ""}


@router.delete("/project/clusters/{cluster_id}/notes/{item_id}")
def delete_note(cluster_id: str, item_id: str):
    try:
        _get_session().delete_note(cluster_id, item_id)
    except NoDocumentError:
        raise _no_document()
    except KeyError:
        raise HTTPException(status_code=404, detail="Note not found")
    return {"deleted": item_id}


# ── Sidebar ──


@router.get("/project/tags")
def list_tags():
    return [t.to_dict() for t in _get_session().sidebar_tags()]


@router.get("/project/highlights")
def list_highlights(tag: str | None = Query(None)):
    """Highlights of every analyzed document, optionally filtered by tag label."""
    return [h.to_dict() for h in _get_session().highlights(tag)]


@router.get("/project/quotes/{highlight_id}")
def get_quote(highlight_id: str):
    try:
        text = _get_session().quote(highlight_id)
    except NoDocumentError:
        raise _no_document()
    return {"id": highlight_id, "text": text}


# ── Transcript edits ──


class TagRequest(BaseModel):
    label: str


class HighlightRequest(BaseModel):
    text: str
    tag_id: str | None = None
    tag_label: str | None = None
    tag_color: str | None = None


class InboxRequest(BaseModel):
    text: str


@router.post("/project/tags/{tag_id}")
def rename_tag(tag_id: str, req: TagRequest):
    try:
        _get_session().rename_tag(tag_id, req.label)
    except NoDocumentError:
        raise _no_document()
    except KeyError:
        raise HTTPException(status_code=404, detail="Tag not found")
    return {"id": tag_id, "label": req.label}


@router.post("/project/highlights")
def add_highlight(req: HighlightRequest):
    try:
        highlight = _get_session().add_highlight(req.text, req.tag_id, req.tag_label, req.tag_color)
    except NoDocumentError:
        raise _no_document()
    except KeyError:
        raise HTTPException(status_code=404, detail="Tag not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return highlight.to_dict()


@router.post("/project/inbox")
def add_to_inbox(req: InboxRequest):
    try:
        item = _get_session().add_to_inbox(req.text)
    except NoDocumentError:
        raise _no_document()
    return item.to_dict()


# ── History ──


@router.get("/history")
def list_history():
    return [p.to_dict() for p in _get_session().history]


@router.post("/history/{project_id}/load")
def load_project(project_id: str):
    session = _get_session()
    try:
        session.load_project(project_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Project not found")
    return session.to_dict()


@router.delete("/history/{project_id}")
def delete_project(project_id: str, confirm: bool = Query(False)):
    """Two-step delete: the first call asks for confirmation, ``?confirm=true`` deletes."""
    session = _get_session()
    if not confirm:
        if not session.request_delete_project(project_id):
            raise HTTPException(status_code=404, detail="Project not found")
        return {"pending": project_id, "confirmed": False}
    if session.pending_delete != project_id:
        raise HTTPException(status_code=409, detail="Deletion was not requested for this project")
    session.confirm_delete_project()
    return {"deleted": project_id, "confirmed": True, "currentProject": session.id}


@router.post("/history/delete/cancel")
def cancel_delete_project():
    _get_session().cancel_delete_project()
    return {"pending": None}


# ── Tasks ──


@router.get("/tasks")
def list_tasks():
    """List all tasks with status."""
    tasks = _task_manager.list_tasks()
    # Strip progress_events from list view
    return [
        {k: v for k, v in t.items() if k not in ("progress_events", "traceback")}
        for t in tasks
    ]


@router.get("/tasks/{task_id}")
def get_task(task_id: str):
    task = _task_manager.get_status(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    task.pop("traceback", None)
    return task


# ── SSE streaming ──


@router.get("/tasks/{task_id}/stream")
def stream_task(task_id: str):
    """SSE stream of progress events for a task."""
    subscription = _task_manager.subscribe(task_id)
    if subscription is None:
        raise HTTPException(status_code=404, detail="Task not found")
    task, sub_queue = subscription

    def event_generator():
        # Replay progress recorded before the subscription
        for evt in task.get("progress_events", []):
            yield f"data: {json.dumps({'type': 'progress', **evt})}\n\n"

        if task["status"] == "completed":
            yield f"data: {json.dumps({'type': 'done', 'result': task.get('result')})}\n\n"
            return
        if task["status"] == "failed":
            yield f"data: {json.dumps({'type': 'error', 'error': task.get('error', '')})}\n\n"
            return

        while True:
            try:
                event = sub_queue.get(timeout=30)
            except queue.Empty:
                yield ": keepalive\n\n"
                continue
            yield f"data: {json.dumps(event)}\n\n"
            if event.get("type") in DONE_EVENTS:
                break

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
