"""Active project state, per-file analysis lifecycle and project history.

State is held in memory and written to the blob store after every change
to a persisted field. Two blobs are kept: the session snapshot
(``{id, currentScreen, data, projectName}``) and the history list. Either
may be missing or corrupt; both cases load as "absent".

Several files can be analyzed at once. Each file keeps its own result in
``ProjectFile.analysis_data``. The first result to arrive becomes the open
document only if no document is open; later results never replace it, and
``select_file`` opens another file's result explicitly. Edits to the open
document are written back to the file it came from.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from researchoo import config
from researchoo.analysis import editing
from researchoo.analysis.merge import affinity_clusters
from researchoo.analysis.parse import MainResult
from researchoo.analysis.pipeline import QUOTA_STAGE_ERROR, AnalysisPipeline
from researchoo.canvas.board import NEW_CLUSTER_TITLE, NEW_NOTE_TEXT, AffinityBoard
from researchoo.errors import (
    QUOTA_MESSAGE,
    NoDocumentError,
    QuotaExhaustedError,
    StageFailedError,
    describe_failure,
)
from researchoo.models import (
    AffinityItem,
    Cluster,
    Highlight,
    ProjectFile,
    ResearchData,
    SavedProject,
    Screen,
    Tag,
    detect_file_type,
    new_id,
)
from researchoo.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)

SESSION_KEY = "researchoo.session"
HISTORY_KEY = "researchoo.history"
DEFAULT_PROJECT_NAME = "New Research Project"

ProgressCallback = Callable[[str, int | None], None]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProjectSession:
    def __init__(
        self,
        store: BlobStore | None = None,
        pipeline_factory: Callable[[], AnalysisPipeline] | None = None,
        history_limit: int | None = None,
        language: str | None = None,
    ) -> None:
        self._store = store
        self._pipeline_factory = pipeline_factory or AnalysisPipeline
        self._history_limit = history_limit or config.HISTORY_LIMIT
        self._lock = threading.RLock()

        self.language = language or config.DEFAULT_LANGUAGE
        self.id: str | None = None
        self.project_name = DEFAULT_PROJECT_NAME
        self.current_screen = Screen.START
        self.files: list[ProjectFile] = []
        self.data: ResearchData | None = None
        self.error: str | None = None
        self.active_file_id: str | None = None
        self.history: list[SavedProject] = []
        self.pending_delete: str | None = None
        self.pending_cluster_delete: str | None = None

    # ── Persistence ──

    def load(self) -> None:
        """Restore the snapshot and history from the store.

        Uploaded files are not part of the snapshot; a restored session
        starts with an empty file list.
        """
        if self._store is None:
            return
        with self._lock:
            snapshot = self._read_blob(SESSION_KEY)
            if snapshot is not None:
                try:
                    self.id = snapshot.get("id")
                    self.current_screen = Screen(snapshot.get("currentScreen", Screen.START.value))
                    self.project_name = snapshot.get("projectName") or DEFAULT_PROJECT_NAME
                    raw_data = snapshot.get("data")
                    self.data = ResearchData.from_dict(raw_data) if raw_data else None
                except (AttributeError, KeyError, TypeError, ValueError) as e:
                    logger.warning("Discarding unreadable session snapshot: %s", e)
                    self._store.remove(SESSION_KEY)
                    self._reset(None, DEFAULT_PROJECT_NAME, Screen.START)
            self.files = []
            self.active_file_id = None
            self.error = None

            entries = self._read_blob(HISTORY_KEY)
            self.history = []
            if entries is not None:
                try:
                    self.history = [SavedProject.from_dict(e) for e in entries][: self._history_limit]
                except (AttributeError, KeyError, TypeError, ValueError) as e:
                    logger.warning("Discarding unreadable project history: %s", e)
                    self._store.remove(HISTORY_KEY)
        logger.info(
            "Session loaded: project=%s, screen=%s, %d history entries",
            self.id, self.current_screen.value, len(self.history),
        )

    def save(self) -> None:
        if self._store is None:
            return
        with self._lock:
            self._store.set(SESSION_KEY, json.dumps(self.snapshot(), ensure_ascii=False))
            self._store.set(
                HISTORY_KEY,
                json.dumps([p.to_dict() for p in self.history], ensure_ascii=False),
            )

    def _read_blob(self, key: str):
        if self._store is None:
            return None
        raw = self._store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Discarding corrupt blob %s: %s", key, e)
            self._store.remove(key)
            return None

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "currentScreen": self.current_screen.value,
            "data": self.data.to_dict() if self.data else None,
            "projectName": self.project_name,
        }

    def to_dict(self) -> dict:
        """Full state for the dashboard."""
        with self._lock:
            d = self.snapshot()
            d.update({
                "files": [f.to_dict() for f in self.files],
                "error": self.error,
                "activeFileId": self.active_file_id,
                "pendingDelete": self.pending_delete,
                "pendingClusterDelete": self.pending_cluster_delete,
                "language": self.language,
                "isProcessing": any(f.status in ("uploading", "processing") for f in self.files),
            })
            return d

    # ── Project lifecycle ──

    def _reset(self, project_id: str | None, name: str, screen: Screen) -> None:
        self.id = project_id
        self.project_name = name
        self.current_screen = screen
        self.files = []
        self.data = None
        self.error = None
        self.active_file_id = None
        self.pending_cluster_delete = None

    def _upsert_history(self, entry: SavedProject) -> None:
        others = [p for p in self.history if p.id != entry.id]
        self.history = [entry, *others][: self._history_limit]

    def _blank_entry(self, project_id: str, name: str) -> SavedProject:
        return SavedProject(
            id=project_id,
            name=name,
            date=_now(),
            file_type="text",
            data=ResearchData(),
            file_count=len(self.files),
        )

    def _record_history(self) -> None:
        """Snapshot the open document into the history list."""
        if self.id is None or self.data is None:
            return
        owner = self._file(self.active_file_id) if self.active_file_id else None
        self._upsert_history(SavedProject(
            id=self.id,
            name=self.project_name,
            date=_now(),
            file_type=owner.type if owner else "text",
            data=self.data.copy(),
            file_count=len(self.files),
        ))

    def start_analysis(self) -> str:
        """Leave the start screen, creating a project if there is none."""
        with self._lock:
            if self.id is None:
                self.id = new_id()
                self.project_name = DEFAULT_PROJECT_NAME
                self._upsert_history(self._blank_entry(self.id, self.project_name))
            self.current_screen = Screen.UPLOAD
            self.save()
            return self.id

    def new_project(self) -> str:
        with self._lock:
            project_id = new_id()
            self._reset(project_id, DEFAULT_PROJECT_NAME, Screen.UPLOAD)
            self._upsert_history(self._blank_entry(project_id, DEFAULT_PROJECT_NAME))
            self.save()
            logger.info("New project %s", project_id)
            return project_id

    def rename(self, name: str) -> None:
        name = name.strip()
        if not name:
            raise ValueError("Project name is empty")
        with self._lock:
            if self.id is None:
                self.id = new_id()
            self.project_name = name
            for entry in self.history:
                if entry.id == self.id:
                    entry.name = name
                    break
            else:
                self._upsert_history(self._blank_entry(self.id, name))
            self.save()

    def load_project(self, project_id: str) -> SavedProject:
        """Open a project from history. Raises KeyError if it is unknown."""
        with self._lock:
            entry = next((p for p in self.history if p.id == project_id), None)
            if entry is None:
                raise KeyError(project_id)
            self._reset(entry.id, entry.name, Screen.TRANSCRIPT)
            self.data = entry.data.copy()
            self.save()
            logger.info("Loaded project %s (%r)", entry.id, entry.name)
            return entry

    def request_delete_project(self, project_id: str) -> bool:
        with self._lock:
            if not any(p.id == project_id for p in self.history):
                return False
            self.pending_delete = project_id
            return True

    def confirm_delete_project(self) -> str | None:
        """Delete the project awaiting confirmation.

        Deleting the open project starts a new one.
        """
        with self._lock:
            project_id = self.pending_delete
            self.pending_delete = None
            if project_id is None:
                return None
            self.history = [p for p in self.history if p.id != project_id]
            logger.info("Deleted project %s", project_id)
            if self.id == project_id:
                self.new_project()
            else:
                self.save()
            return project_id

    def cancel_delete_project(self) -> None:
        with self._lock:
            self.pending_delete = None

    def navigate(self, screen: Screen | str) -> None:
        with self._lock:
            self.current_screen = Screen(screen)
            self.error = None
            self.save()

    def set_language(self, language: str) -> None:
        """Output language for analyses started from now on."""
        if language not in config.LANGUAGES:
            raise ValueError(f"Unsupported language {language!r}")
        with self._lock:
            self.language = language

    # ── Files ──

    def _file(self, file_id: str | None) -> ProjectFile | None:
        return next((f for f in self.files if f.id == file_id), None)

    def add_file(
        self,
        name: str,
        path: Path,
        mime_type: str | None = None,
        file_id: str | None = None,
    ) -> ProjectFile:
        with self._lock:
            if self.id is None:
                self.id = new_id()
            pf = ProjectFile(
                id=file_id or new_id(),
                name=name,
                path=path,
                type=detect_file_type(name, mime_type),
                mime_type=mime_type,
            )
            self.files.append(pf)
            return pf

    def add_files(
        self,
        uploads: list[tuple[str, Path, str | None]],
        project_name: str | None = None,
    ) -> list[ProjectFile]:
        """Register uploaded files; analysis is started separately per file."""
        with self._lock:
            if project_name:
                self.project_name = project_name
            added = [self.add_file(name, path, mime) for name, path, mime in uploads]
            self.save()
            return added

    def remove_file(self, file_id: str) -> bool:
        """Forget a file. An analysis still running for it is discarded on completion."""
        with self._lock:
            before = len(self.files)
            self.files = [f for f in self.files if f.id != file_id]
            if self.active_file_id == file_id:
                self.active_file_id = None
            return len(self.files) < before

    def analyze_file(
        self, file_id: str, on_progress: ProgressCallback | None = None,
    ) -> ResearchData | None:
        """Run the pipeline for one registered file.

        Returns the file's analysis, or None if the file was removed before
        the analysis finished.

        Raises whatever the pipeline raises, after recording it on the file.
        """
        with self._lock:
            pf = self._file(file_id)
            if pf is None:
                raise KeyError(file_id)
            path, file_type, mime, language = pf.path, pf.type, pf.mime_type, self.language

        def progress(status: str, pct: int | None) -> None:
            with self._lock:
                current = self._file(file_id)
                if current is None:
                    return
                current.status = status
                if pct is not None:
                    current.progress = pct
            if on_progress:
                on_progress(status, pct)

        try:
            pipeline = self._pipeline_factory()
            data = pipeline.run(path, file_type, mime, language=language, on_progress=progress)
        except Exception as e:
            message = describe_failure(e)
            with self._lock:
                current = self._file(file_id)
                if current is not None:
                    current.status = "error"
                    current.error = message
                    self.error = message
                    self.save()
            logger.error("Analysis of %s failed: %s", path.name, message)
            raise

        with self._lock:
            current = self._file(file_id)
            if current is None:
                logger.info("File %s was removed during analysis; discarding result", file_id)
                return None
            current.status = "uploaded"
            current.progress = 100
            current.analysis_data = data
            # Quota-skipped stages leave clusters or insights empty
            current.warning = QUOTA_MESSAGE if pipeline.quota_degraded else None
            if self.data is None:
                self.data = data.copy()
                self.active_file_id = file_id
            self.error = current.warning
            self._record_history()
            self.save()
            return data

    def select_file(self, file_id: str) -> ResearchData:
        """Open an analyzed file's result as the project document."""
        with self._lock:
            pf = self._file(file_id)
            if pf is None:
                raise KeyError(file_id)
            if pf.analysis_data is None:
                raise NoDocumentError()
            self.data = pf.analysis_data.copy()
            self.active_file_id = file_id
            self._record_history()
            self.save()
            return self.data

    # ── Document edits ──

    def _require_data(self) -> ResearchData:
        if self.data is None:
            raise NoDocumentError()
        return self.data

    def _commit_data(self, data: ResearchData) -> None:
        self.data = data
        owner = self._file(self.active_file_id) if self.active_file_id else None
        if owner is not None:
            owner.analysis_data = data.copy()
        self._record_history()
        self.save()

    def update_clusters(self, clusters: list[Cluster]) -> None:
        with self._lock:
            data = self._require_data().copy()
            data.clusters = [Cluster.from_dict(c.to_dict()) for c in clusters]
            self._commit_data(data)

    def board(self) -> AffinityBoard:
        """An affinity board over the open document that saves on commit."""
        with self._lock:
            return AffinityBoard(self._require_data().clusters, on_commit=self.update_clusters)

    def rename_tag(self, tag_id: str, label: str) -> None:
        with self._lock:
            data = self._require_data()
            if tag_id not in data.tag_map():
                raise KeyError(tag_id)
            self._commit_data(editing.rename_tag(data, tag_id, label))

    def add_highlight(
        self,
        text: str,
        tag_id: str | None = None,
        tag_label: str | None = None,
        tag_color: str | None = None,
    ) -> Highlight:
        with self._lock:
            data, highlight = editing.add_highlight(
                self._require_data(), text, tag_id, tag_label, tag_color,
            )
            self._commit_data(data)
            return highlight

    def add_to_inbox(self, text: str) -> AffinityItem:
        with self._lock:
            data, item = editing.add_to_inbox(self._require_data(), text)
            self._commit_data(data)
            return item

    # ── Affinity map ──

    def generate_affinity(self) -> list[Cluster]:
        """Cluster the open document's highlights, replacing its clusters.

        Used when the affinity stage was skipped during analysis. The
        generation call runs without holding the session lock; if another
        project was opened meanwhile the result is dropped.

        Raises:
            NoDocumentError: No document is open.
            ValueError: The document has no highlights.
            QuotaExhaustedError: The service quota ran out.
            StageFailedError: The stage failed for any other reason.
        """
        with self._lock:
            data = self._require_data().copy()
            project_id, language = self.id, self.language
        if not data.highlights:
            raise ValueError("The document has no highlights to map")

        pipeline = self._pipeline_factory()
        main = MainResult(transcript=data.transcript, tags=data.tags, highlights=data.highlights)
        affinity = pipeline.run_affinity(main, language)
        outcome = pipeline.outcomes[-1]
        if not outcome.ok:
            if outcome.error == QUOTA_STAGE_ERROR:
                raise QuotaExhaustedError()
            raise StageFailedError(f"Affinity mapping failed: {outcome.error}")
        clusters = affinity_clusters(affinity, [h.id for h in data.highlights])

        with self._lock:
            if self.id != project_id or self.data is None:
                logger.info("Project changed during affinity mapping; discarding %d clusters", len(clusters))
                return clusters
            current = self.data.copy()
            current.clusters = clusters
            self._commit_data(current)
        logger.info("Generated %d clusters for project %s", len(clusters), project_id)
        return clusters

    def add_cluster(
        self,
        viewport_width: float,
        viewport_height: float,
        title: str | None = None,
        scale: float = 1.0,
        offset_x: float = 0.0,
        offset_y: float = 0.0,
    ) -> Cluster:
        """Add an empty cluster in the middle of the client's current view."""
        with self._lock:
            board = self.board()
            board.viewport.zoom_to(scale)
            board.viewport.offset_x = offset_x
            board.viewport.offset_y = offset_y
            return board.add_cluster(viewport_width, viewport_height, title or NEW_CLUSTER_TITLE)

    def rename_cluster(self, cluster_id: str, title: str) -> None:
        with self._lock:
            board = self.board()
            if not board.rename_cluster(cluster_id, title):
                raise KeyError(cluster_id)
            board.commit_edits()

    def request_delete_cluster(self, cluster_id: str) -> bool:
        with self._lock:
            if self.board().get(cluster_id) is None:
                return False
            self.pending_cluster_delete = cluster_id
            return True

    def confirm_delete_cluster(self) -> Cluster | None:
        with self._lock:
            cluster_id = self.pending_cluster_delete
            self.pending_cluster_delete = None
            if cluster_id is None or self.data is None:
                return None
            board = self.board()
            board.request_delete_cluster(cluster_id)
            return board.confirm_delete()

    def cancel_delete_cluster(self) -> None:
        with self._lock:
            self.pending_cluster_delete = None

    def add_note(self, cluster_id: str, text: str | None = None) -> AffinityItem:
        with self._lock:
            item = self.board().add_note(cluster_id, text or NEW_NOTE_TEXT)
            if item is None:
                raise KeyError(cluster_id)
            return item

    def _board_with_item(self, cluster_id: str, item_id: str) -> AffinityBoard:
        board = self.board()
        cluster = board.get(cluster_id)
        if cluster is None or not any(i.id == item_id for i in cluster.items):
            raise KeyError(item_id)
        return board

    def edit_note(self, cluster_id: str, item_id: str, text: str) -> None:
        with self._lock:
            board = self._board_with_item(cluster_id, item_id)
            board.edit_note(cluster_id, item_id, text)
            board.commit_edits()

    def delete_note(self, cluster_id: str, item_id: str) -> None:
        with self._lock:
            self._board_with_item(cluster_id, item_id).delete_note(cluster_id, item_id)

    # ── Sidebar ──

    def documents(self) -> list[ResearchData]:
        """Every analyzed document of the project, the open one first."""
        with self._lock:
            docs = [self.data] if self.data is not None else []
            docs.extend(
                f.analysis_data for f in self.files
                if f.analysis_data is not None and f.id != self.active_file_id
            )
            return docs

    def sidebar_tags(self) -> list[Tag]:
        return editing.sidebar_tags(self.documents())

    def highlights(self, label: str | None = None) -> list[Highlight]:
        return editing.filter_highlights(self.documents(), label)

    def quote(self, highlight_id: str) -> str:
        with self._lock:
            return editing.resolve_quote(self._require_data(), highlight_id)
