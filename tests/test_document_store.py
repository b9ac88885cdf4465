"""Tests for the SQLite document store."""

import sqlite3
from unittest.mock import patch

import pytest

from docchat.document_store import SQLiteDocumentStore
from docchat.errors import DocumentStoreError
from tests.conftest import TestConstants

USER = TestConstants.USER_ID


def test_add_and_get_document(document_store):
    stored = document_store.add_document(USER, "resume.txt", TestConstants.RESUME_TEXT)

    assert len(stored.id) == 32
    assert stored.user_id == USER
    assert stored.filename == "resume.txt"
    assert stored.uploaded_at.endswith("+00:00")
    assert document_store.get_document_text(stored.id) == TestConstants.RESUME_TEXT


def test_list_documents_in_upload_order_without_text(document_store):
    first = document_store.add_document(USER, "a.txt", "alpha")
    second = document_store.add_document(USER, "b.txt", "beta")
    document_store.add_document("other-user", "c.txt", "gamma")

    listed = document_store.list_documents(USER)

    assert [doc.id for doc in listed] == [first.id, second.id]
    assert all(doc.text == "" for doc in listed)
    assert document_store.list_documents("nobody") == []


def test_missing_document_raises(document_store):
    with pytest.raises(DocumentStoreError, match="not found"):
        document_store.get_document_text("missing")


def test_delete_is_scoped_to_owner(document_store):
    stored = document_store.add_document(USER, "a.txt", "alpha")

    assert document_store.delete_document("other-user", stored.id) is False
    assert document_store.delete_document(USER, stored.id) is True
    assert document_store.delete_document(USER, stored.id) is False
    assert document_store.list_documents(USER) == []


def test_data_persists_across_instances(tmp_path):
    db_path = tmp_path / "nested" / "documents.db"
    stored = SQLiteDocumentStore(db_path).add_document(USER, "a.txt", "alpha")

    reopened = SQLiteDocumentStore(db_path)

    assert reopened.get_document_text(stored.id) == "alpha"


def test_sqlite_errors_are_wrapped(document_store):
    with (
        patch.object(
            document_store, "_connect", side_effect=sqlite3.OperationalError("locked")
        ),
        pytest.raises(DocumentStoreError, match="Could not list documents"),
    ):
        document_store.list_documents(USER)
