import os
import shutil
import sqlite3
import tempfile

import pytest

from chatsift.services.file_store import FileFilters, FileStore, StorageError


@pytest.fixture
def temp_db():
    temp_dir = tempfile.mkdtemp()
    db_file = os.path.join(temp_dir, "test_files.db")
    service = FileStore(db_file=db_file)
    yield service, db_file
    shutil.rmtree(temp_dir)


def _text_file(service, upload_id, filename, text, date=None):
    return service.create_extracted_file(
        upload_id, filename, f"/data/{filename}", "text", len(text), "text/plain",
        content_text=text, extracted_date=date,
    )


def test_ensure_db_creates_tables(temp_db):
    service, db_file = temp_db
    assert os.path.exists(db_file)

    with sqlite3.connect(db_file) as conn:
        cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = [row[0] for row in cursor.fetchall()]
    assert "uploads" in tables
    assert "extracted_files" in tables


def test_create_and_get_upload(temp_db):
    service, _ = temp_db
    upload_id = service.create_upload("x.zip", "Family", 123)
    upload = service.get_upload(upload_id)
    assert upload.original_name == "Family"
    assert upload.status == "processing"

    service.update_upload_status(upload_id, "completed", 3)
    upload = service.get_upload(upload_id)
    assert upload.status == "completed"
    assert upload.total_files == 3
    assert service.get_upload(999) is None


def test_transcription_status_defaults(temp_db):
    service, _ = temp_db
    upload_id = service.create_upload("x.zip", "x", 1)
    audio_id = service.create_extracted_file(upload_id, "a.opus", "/a.opus", "audio", 10)
    text_id = _text_file(service, upload_id, "t.txt", "hi")
    assert service.get_extracted_file(audio_id).transcription_status == "pending"
    assert service.get_extracted_file(text_id).transcription_status == "not_applicable"


def test_documents_ordered_chat_first_then_newest(temp_db):
    service, _ = temp_db
    up = service.create_upload("x.zip", "x", 1)
    old_chat = _text_file(service, up, "group_chat.txt", "a", "2024-01-01 08:00:00")
    new_plain = _text_file(service, up, "readme.txt", "b", "2024-06-01 08:00:00")
    new_chat = _text_file(service, up, "other_chat.txt", "c", "2024-05-01 08:00:00")
    service.create_extracted_file(up, "img.png", "/img.png", "image", 5)

    docs = service.get_documents_by_type("text")
    assert [d.id for d in docs] == [new_chat, old_chat, new_plain]
    assert [d.id for d in service.get_documents_by_type("text", limit=1)] == [new_chat]


def test_chat_marker_is_literal(temp_db):
    service, _ = temp_db
    up = service.create_upload("x.zip", "x", 1)
    # "xchat" would match a LIKE '%_chat%' pattern but does not contain "_chat"
    xchat = _text_file(service, up, "xchat.txt", "a", "2024-06-01 08:00:00")
    chat = _text_file(service, up, "my_chat.txt", "b", "2024-01-01 08:00:00")
    assert [d.id for d in service.get_documents_by_type("text")] == [chat, xchat]


def test_documents_scoped_to_upload(temp_db):
    service, _ = temp_db
    up1 = service.create_upload("1.zip", "1", 1)
    up2 = service.create_upload("2.zip", "2", 1)
    _text_file(service, up1, "a_chat.txt", "a")
    b = _text_file(service, up2, "b.txt", "b")
    docs = service.get_documents_by_type("text", scope=up2)
    assert [d.id for d in docs] == [b]
    assert docs[0].upload_id == up2


def test_get_document_uses_transcription_when_no_text(temp_db):
    service, _ = temp_db
    up = service.create_upload("x.zip", "x", 1)
    audio = service.create_extracted_file(up, "a.opus", "/a.opus", "audio", 10)
    assert service.get_document(audio).text is None
    service.update_transcription(audio, "spoken words", "completed")
    assert service.get_document(audio).text == "spoken words"
    assert service.get_document(12345) is None


def test_delete_upload_cascades(temp_db):
    service, _ = temp_db
    up = service.create_upload("x.zip", "x", 1)
    f = _text_file(service, up, "a.txt", "a")
    assert service.delete_upload(up) is True
    assert service.get_extracted_file(f) is None
    assert service.delete_upload(up) is False


def test_delete_extracted_file(temp_db):
    service, _ = temp_db
    up = service.create_upload("x.zip", "x", 1)
    f = _text_file(service, up, "a.txt", "a")
    assert service.delete_extracted_file(f) is True
    assert service.delete_extracted_file(f) is False


def test_search_files_keyword_and_filters(temp_db):
    service, _ = temp_db
    up1 = service.create_upload("1.zip", "Family", 1)
    up2 = service.create_upload("2.zip", "Work", 1)
    a = _text_file(service, up1, "a.txt", "the barbecue is on sunday", "2024-01-10 09:00:00")
    b = _text_file(service, up2, "b.txt", "barbecues are great", "2024-02-10 21:00:00")
    _text_file(service, up2, "c.txt", "nothing to see", "2024-03-10 09:00:00")

    hits = service.search_files(FileFilters(keyword="barbecue"))
    assert [f.id for f in hits] == [b, a]
    assert hits[1].upload_name == "Family"

    assert [f.id for f in service.search_files(FileFilters(keyword="barbecue", upload_id=up1))] == [a]
    assert [f.id for f in service.search_files(FileFilters(date_from="2024-02-01", date_to="2024-02-28"))] == [b]
    assert [f.id for f in service.search_files(FileFilters(time_from="20:00"))] == [b]


def test_search_files_keyword_after_content_update(temp_db):
    service, _ = temp_db
    up = service.create_upload("1.zip", "1", 1)
    f = _text_file(service, up, "a.txt", "old words")
    service.update_content_text(f, "fresh words")
    assert [x.id for x in service.search_files(FileFilters(keyword="fresh"))] == [f]
    assert service.search_files(FileFilters(keyword="old")) == []


def test_search_files_with_index_ids(temp_db):
    service, _ = temp_db
    up = service.create_upload("1.zip", "1", 1)
    a = _text_file(service, up, "a.txt", "alpha")
    _text_file(service, up, "b.txt", "beta")
    assert [f.id for f in service.search_files(FileFilters(keyword="ignored"), ids=[a])] == [a]
    assert service.search_files(FileFilters(), ids=[]) == []


def test_statistics(temp_db):
    service, _ = temp_db
    up = service.create_upload("1.zip", "1", 1)
    _text_file(service, up, "a.txt", "alpha")
    service.create_extracted_file(up, "a.opus", "/a.opus", "audio", 10)
    service.create_extracted_file(up, "i.png", "/i.png", "image", 10)
    stats = service.get_statistics()
    assert stats == {
        "total_uploads": 1,
        "total_files": 3,
        "text_files": 1,
        "audio_files": 1,
        "image_files": 1,
        "pending_transcriptions": 1,
    }


def test_invalid_file_type_raises_storage_error(temp_db):
    service, _ = temp_db
    up = service.create_upload("1.zip", "1", 1)
    with pytest.raises(StorageError):
        service.create_extracted_file(up, "x.bin", "/x.bin", "binary", 1)
