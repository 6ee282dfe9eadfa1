import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch
from chatsift.main import app
from chatsift.services.file_store import ExtractedFile, Upload
from chatsift.services.search_index import SearchIndexError

def _created(**overrides):
    data = dict(
        id=9, upload_id=3, filename="group_chat.txt", file_path="group_chat.txt", file_type="text",
        file_size=5, extracted_date="2024-01-01 10:00:00", content_text="hello",
    )
    data.update(overrides)
    return ExtractedFile(**data)

@pytest.fixture
def client():
    return TestClient(app)

@pytest.fixture
def mock_file_store():
    with patch("chatsift.api.uploads.file_store") as mock:
        mock.create_upload.return_value = 3
        mock.create_extracted_file.return_value = 9
        mock.list_files_by_upload.return_value = [_created()]
        mock.get_extracted_file.return_value = _created()
        yield mock

@pytest.fixture
def mock_search_index():
    with patch("chatsift.api.uploads.search_index") as mock:
        yield mock

def test_create_text_document_with_new_upload(client, mock_file_store, mock_search_index):
    response = client.post("/api/uploads/text", json={"filename": "group_chat.txt", "content": "hello"})
    assert response.status_code == 200
    assert response.json()["id"] == 9

    mock_file_store.create_upload.assert_called_once_with("group_chat.txt", "group_chat.txt", 5)
    args = mock_file_store.create_extracted_file.call_args
    assert args.args[:5] == (3, "group_chat.txt", "group_chat.txt", "text", 5)
    assert args.kwargs["content_text"] == "hello"
    mock_file_store.update_upload_status.assert_called_once_with(3, "completed", 1)
    mock_search_index.index_extracted_file.assert_called_once_with(_created())

def test_create_text_document_in_existing_upload(client, mock_file_store, mock_search_index):
    mock_file_store.get_upload.return_value = Upload(
        id=3, filename="x", original_name="x", file_size=1, upload_date="2024-01-01", status="completed"
    )
    response = client.post("/api/uploads/text", json={"filename": "b.txt", "content": "hi", "upload_id": 3})
    assert response.status_code == 200
    mock_file_store.create_upload.assert_not_called()

def test_create_text_document_unknown_upload(client, mock_file_store, mock_search_index):
    mock_file_store.get_upload.return_value = None
    response = client.post("/api/uploads/text", json={"filename": "b.txt", "content": "hi", "upload_id": 77})
    assert response.status_code == 404
    mock_file_store.create_extracted_file.assert_not_called()

def test_create_text_document_requires_filename(client, mock_file_store, mock_search_index):
    response = client.post("/api/uploads/text", json={"filename": "  ", "content": "hi"})
    assert response.status_code == 400

def test_index_failure_does_not_fail_ingest(client, mock_file_store, mock_search_index):
    mock_search_index.index_extracted_file.side_effect = SearchIndexError("down")
    response = client.post("/api/uploads/text", json={"filename": "a.txt", "content": "hello"})
    assert response.status_code == 200

def test_delete_upload(client, mock_file_store, mock_search_index):
    mock_file_store.delete_upload.return_value = True
    response = client.delete("/api/uploads/3")
    assert response.status_code == 200
    mock_search_index.remove_by_upload.assert_called_once_with(3)

def test_delete_upload_not_found(client, mock_file_store, mock_search_index):
    mock_file_store.delete_upload.return_value = False
    assert client.delete("/api/uploads/3").status_code == 404

def test_list_upload_files_not_found(client, mock_file_store, mock_search_index):
    mock_file_store.get_upload.return_value = None
    assert client.get("/api/uploads/3/files").status_code == 404
