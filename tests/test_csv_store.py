import pytest
from google.api_core import exceptions as google_exceptions

from errors import NetworkError, StorePermissionError
from services.csv_store import CsvStore, _load_credentials_dict


class FakeSnapshot:
    def __init__(self, data):
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return self._data


class FakeDocument:
    def __init__(self, store, path):
        self.store = store
        self.path = path

    def get(self):
        if self.store.read_error:
            raise self.store.read_error
        return FakeSnapshot(self.store.docs.get(self.path))

    def set(self, data):
        if self.store.write_error:
            raise self.store.write_error
        self.store.docs[self.path] = data


class FakeCollection:
    def __init__(self, store, name):
        self.store = store
        self.name = name

    def document(self, doc_id):
        return FakeDocument(self.store, f"{self.name}/{doc_id}")


class FakeFirestore:
    def __init__(self, docs=None):
        self.docs = docs or {}
        self.read_error = None
        self.write_error = None

    def collection(self, name):
        return FakeCollection(self, name)


def test_load_existing_and_missing_documents():
    client = FakeFirestore({"csv_data/threads": {"content": "a,b\n1,2"}})
    store = CsvStore(client=client)
    assert store.is_configured
    assert store.load("threads") == "a,b\n1,2"
    assert store.load("non-threads") is None
    assert store.load_all() == {"threads": "a,b\n1,2"}


def test_document_without_content_is_treated_as_missing():
    store = CsvStore(client=FakeFirestore({"csv_data/threads": {"other": 1}}))
    assert store.load("threads") is None


def test_save_writes_content_field():
    client = FakeFirestore()
    CsvStore(client=client, collection="uploads").save("non-threads", "x\n1", "n.csv")
    assert client.docs == {"uploads/non-threads": {"content": "x\n1"}}


def test_unknown_document_rejected():
    with pytest.raises(ValueError):
        CsvStore(client=FakeFirestore()).load("other")


def test_denied_write_raises_permission_error_with_context():
    client = FakeFirestore()
    client.write_error = google_exceptions.PermissionDenied("denied")
    store = CsvStore(client=client)

    with pytest.raises(StorePermissionError) as excinfo:
        store.save("threads", "a\n1", "threads.csv")

    error = excinfo.value
    assert error.context.path == "csv_data/threads"
    assert error.context.operation == "create"
    assert error.to_diagnostic()["requestResourceData"] == {"content": "[CSV content of threads.csv]"}
    assert "create request was denied at path: csv_data/threads" in error.message


def test_denied_read_raises_permission_error():
    client = FakeFirestore()
    client.read_error = google_exceptions.PermissionDenied("denied")
    with pytest.raises(StorePermissionError) as excinfo:
        CsvStore(client=client).load("threads")
    assert excinfo.value.context.operation == "get"


def test_other_api_errors_become_network_errors():
    client = FakeFirestore()
    client.read_error = google_exceptions.ServiceUnavailable("down")
    with pytest.raises(NetworkError):
        CsvStore(client=client).load("threads")


def test_save_rejects_empty_content():
    with pytest.raises(ValueError):
        CsvStore(client=FakeFirestore()).save("threads", "")


def test_credentials_with_literal_newlines():
    raw = '{"type": "service_account", "private_key": "-----BEGIN\nKEY-----\n"}'
    cred = _load_credentials_dict(raw)
    assert cred["private_key"] == "-----BEGIN\nKEY-----\n"


def test_invalid_credentials_json():
    with pytest.raises(ValueError):
        _load_credentials_dict("{not json")
