import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Dict, Iterator, List, Literal, Optional

from pydantic import BaseModel

from chatsift.models import Document
from chatsift.services.config_service import config_service

logger = logging.getLogger(__name__)

DATA_DIR = config_service.get_data_dir()
DB_FILE = os.path.join(DATA_DIR, "files.db")

FileType = Literal["text", "audio", "image", "other"]
UploadStatus = Literal["processing", "completed", "error"]
TranscriptionStatus = Literal["pending", "processing", "completed", "error", "not_applicable"]


class StorageError(RuntimeError):
    pass


class Upload(BaseModel):
    id: int
    filename: str
    original_name: str
    file_size: int
    upload_date: str
    status: UploadStatus
    total_files: int = 0
    error_message: Optional[str] = None


class ExtractedFile(BaseModel):
    id: int
    upload_id: int
    filename: str
    file_path: str
    file_type: FileType
    file_size: int
    mime_type: Optional[str] = None
    extracted_date: str
    content_text: Optional[str] = None
    transcription: Optional[str] = None
    transcription_status: TranscriptionStatus = "not_applicable"
    metadata: Optional[str] = None
    upload_name: Optional[str] = None

    def to_document(self) -> Document:
        return Document(
            id=self.id,
            filename=self.filename,
            upload_id=self.upload_id,
            text=self.content_text or self.transcription,
            extracted_date=self.extracted_date,
        )


class FileFilters(BaseModel):
    keyword: Optional[str] = None
    file_type: Optional[FileType] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    time_from: Optional[str] = None
    time_to: Optional[str] = None
    upload_id: Optional[int] = None


def _fts_query(keyword: str) -> str:
    # every whitespace-separated term becomes a quoted prefix term, implicitly AND-ed
    terms = [t.replace('"', '""') for t in keyword.split() if t]
    return " ".join(f'"{t}"*' for t in terms)


class FileStore:
    def __init__(self, db_file: Optional[str] = None):
        self.db_file = db_file or DB_FILE
        self.fts_enabled = False
        self._ensure_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_file)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def _ensure_db(self):
        data_dir = os.path.dirname(os.path.abspath(self.db_file))
        if not os.path.exists(data_dir):
            os.makedirs(data_dir)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS uploads (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    filename TEXT NOT NULL,
                    original_name TEXT NOT NULL,
                    file_size INTEGER NOT NULL,
                    upload_date DATETIME DEFAULT CURRENT_TIMESTAMP,
                    status TEXT DEFAULT 'processing' CHECK (status IN ('processing', 'completed', 'error')),
                    total_files INTEGER DEFAULT 0,
                    error_message TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS extracted_files (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    upload_id INTEGER NOT NULL,
                    filename TEXT NOT NULL,
                    file_path TEXT NOT NULL,
                    file_type TEXT NOT NULL CHECK (file_type IN ('text', 'audio', 'image', 'other')),
                    file_size INTEGER NOT NULL,
                    mime_type TEXT,
                    extracted_date DATETIME DEFAULT CURRENT_TIMESTAMP,
                    content_text TEXT,
                    transcription TEXT,
                    transcription_status TEXT DEFAULT 'pending' CHECK (transcription_status IN ('pending', 'processing', 'completed', 'error', 'not_applicable')),
                    metadata TEXT,
                    FOREIGN KEY (upload_id) REFERENCES uploads(id) ON DELETE CASCADE
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_extracted_files_upload_id ON extracted_files(upload_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_extracted_files_file_type ON extracted_files(file_type)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_extracted_files_extracted_date ON extracted_files(extracted_date)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_uploads_upload_date ON uploads(upload_date)")

        # FTS5 is optional; some sqlite builds ship without it
        try:
            with self._connect() as conn:
                conn.execute("""
                    CREATE VIRTUAL TABLE IF NOT EXISTS files_fts USING fts5(
                        content_text,
                        transcription,
                        filename,
                        content='extracted_files',
                        content_rowid='id'
                    )
                """)
                conn.execute("""
                    CREATE TRIGGER IF NOT EXISTS files_fts_insert AFTER INSERT ON extracted_files BEGIN
                        INSERT INTO files_fts(rowid, content_text, transcription, filename)
                        VALUES (NEW.id, NEW.content_text, NEW.transcription, NEW.filename);
                    END
                """)
                conn.execute("""
                    CREATE TRIGGER IF NOT EXISTS files_fts_update AFTER UPDATE ON extracted_files BEGIN
                        INSERT INTO files_fts(files_fts, rowid, content_text, transcription, filename)
                        VALUES ('delete', OLD.id, OLD.content_text, OLD.transcription, OLD.filename);
                        INSERT INTO files_fts(rowid, content_text, transcription, filename)
                        VALUES (NEW.id, NEW.content_text, NEW.transcription, NEW.filename);
                    END
                """)
                conn.execute("""
                    CREATE TRIGGER IF NOT EXISTS files_fts_delete AFTER DELETE ON extracted_files BEGIN
                        INSERT INTO files_fts(files_fts, rowid, content_text, transcription, filename)
                        VALUES ('delete', OLD.id, OLD.content_text, OLD.transcription, OLD.filename);
                    END
                """)
            self.fts_enabled = True
        except StorageError as e:
            logger.warning("FTS5 unavailable, keyword filter falls back to LIKE: %s", e)

    # Uploads

    def create_upload(self, filename: str, original_name: str, file_size: int) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO uploads (filename, original_name, file_size) VALUES (?, ?, ?)",
                (filename, original_name, file_size)
            )
            return cursor.lastrowid

    def update_upload_status(
        self,
        upload_id: int,
        status: UploadStatus,
        total_files: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE uploads
                SET status = ?, total_files = COALESCE(?, total_files), error_message = ?
                WHERE id = ?
                """,
                (status, total_files, error_message, upload_id)
            )

    def get_upload(self, upload_id: int) -> Optional[Upload]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM uploads WHERE id = ?", (upload_id,)).fetchone()
            return Upload(**dict(row)) if row else None

    def list_uploads(self) -> List[Upload]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM uploads ORDER BY upload_date DESC, id DESC").fetchall()
            return [Upload(**dict(r)) for r in rows]

    def delete_upload(self, upload_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM uploads WHERE id = ?", (upload_id,))
            return cursor.rowcount > 0

    # Extracted files

    def create_extracted_file(
        self,
        upload_id: int,
        filename: str,
        file_path: str,
        file_type: FileType,
        file_size: int,
        mime_type: Optional[str] = None,
        content_text: Optional[str] = None,
        transcription_status: Optional[TranscriptionStatus] = None,
        extracted_date: Optional[str] = None,
    ) -> int:
        if transcription_status is None:
            transcription_status = "pending" if file_type == "audio" else "not_applicable"
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO extracted_files
                    (upload_id, filename, file_path, file_type, file_size, mime_type, content_text,
                     transcription_status, extracted_date)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, COALESCE(?, CURRENT_TIMESTAMP))
                """,
                (upload_id, filename, file_path, file_type, file_size, mime_type, content_text,
                 transcription_status, extracted_date)
            )
            return cursor.lastrowid

    def get_extracted_file(self, file_id: int) -> Optional[ExtractedFile]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM extracted_files WHERE id = ?", (file_id,)).fetchone()
            return ExtractedFile(**dict(row)) if row else None

    def list_files_by_upload(self, upload_id: int) -> List[ExtractedFile]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM extracted_files WHERE upload_id = ? ORDER BY filename", (upload_id,)
            ).fetchall()
            return [ExtractedFile(**dict(r)) for r in rows]

    def delete_extracted_file(self, file_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM extracted_files WHERE id = ?", (file_id,))
            return cursor.rowcount > 0

    def update_content_text(self, file_id: int, content_text: str) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE extracted_files SET content_text = ? WHERE id = ?", (content_text, file_id))

    def update_transcription(self, file_id: int, transcription: str, status: TranscriptionStatus) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE extracted_files SET transcription = ?, transcription_status = ? WHERE id = ?",
                (transcription, status, file_id)
            )

    # Documents handed to the search engine

    def get_document(self, file_id: int) -> Optional[Document]:
        f = self.get_extracted_file(file_id)
        return f.to_document() if f else None

    def get_documents_by_type(
        self,
        file_type: FileType = "text",
        scope: Optional[int] = None,
        limit: Optional[int] = None,
        chat_marker: Optional[str] = None,
    ) -> List[Document]:
        """
        Documents of ``file_type``, chat-like filenames first, newest first.

        ``chat_marker`` is matched as a literal substring of the filename.
        """
        marker = chat_marker or config_service.get_search_config()['chat_filename_marker']
        sql = """
            SELECT id, filename, upload_id, content_text, transcription, extracted_date
            FROM extracted_files
            WHERE file_type = ?
        """
        params: list = [file_type]
        if scope is not None:
            sql += " AND upload_id = ?"
            params.append(scope)
        sql += " ORDER BY (CASE WHEN instr(filename, ?) > 0 THEN 0 ELSE 1 END), extracted_date DESC, id DESC"
        params.append(marker)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            Document(
                id=r["id"],
                filename=r["filename"],
                upload_id=r["upload_id"],
                text=r["content_text"] or r["transcription"],
                extracted_date=r["extracted_date"],
            )
            for r in rows
        ]

    def search_files(self, filters: FileFilters, ids: Optional[List[int]] = None) -> List[ExtractedFile]:
        """
        Lists files matching ``filters``.

        When ``ids`` is given (keyword hits from the external index) it replaces
        the local keyword filter.
        """
        conditions: List[str] = []
        params: list = []

        if ids is not None:
            if not ids:
                return []
            conditions.append(f"ef.id IN ({','.join('?' for _ in ids)})")
            params.extend(ids)
        elif filters.keyword and filters.keyword.strip():
            if self.fts_enabled:
                conditions.append("ef.id IN (SELECT rowid FROM files_fts WHERE files_fts MATCH ?)")
                params.append(_fts_query(filters.keyword))
            else:
                like = f"%{filters.keyword.strip()}%"
                conditions.append("(ef.content_text LIKE ? OR ef.transcription LIKE ? OR ef.filename LIKE ?)")
                params.extend([like, like, like])

        if filters.file_type:
            conditions.append("ef.file_type = ?")
            params.append(filters.file_type)
        if filters.date_from:
            conditions.append("date(ef.extracted_date) >= date(?)")
            params.append(filters.date_from)
        if filters.date_to:
            conditions.append("date(ef.extracted_date) <= date(?)")
            params.append(filters.date_to)
        if filters.time_from:
            conditions.append("time(ef.extracted_date) >= time(?)")
            params.append(filters.time_from)
        if filters.time_to:
            conditions.append("time(ef.extracted_date) <= time(?)")
            params.append(filters.time_to)
        if filters.upload_id:
            conditions.append("ef.upload_id = ?")
            params.append(filters.upload_id)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        sql = f"""
            SELECT ef.*, u.original_name AS upload_name
            FROM extracted_files ef
            LEFT JOIN uploads u ON ef.upload_id = u.id
            {where}
            ORDER BY ef.extracted_date DESC, ef.id DESC
        """
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [ExtractedFile(**dict(r)) for r in rows]

    def get_statistics(self) -> Dict[str, int]:
        with self._connect() as conn:
            def count(sql: str) -> int:
                return conn.execute(sql).fetchone()[0]

            return {
                "total_uploads": count("SELECT COUNT(*) FROM uploads"),
                "total_files": count("SELECT COUNT(*) FROM extracted_files"),
                "text_files": count("SELECT COUNT(*) FROM extracted_files WHERE file_type = 'text'"),
                "audio_files": count("SELECT COUNT(*) FROM extracted_files WHERE file_type = 'audio'"),
                "image_files": count("SELECT COUNT(*) FROM extracted_files WHERE file_type = 'image'"),
                "pending_transcriptions": count(
                    "SELECT COUNT(*) FROM extracted_files WHERE transcription_status = 'pending'"
                ),
            }


file_store = FileStore()
