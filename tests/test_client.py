"""
Tests for the Supabase REST client and repository filters.
"""

import pytest
import requests

from database import (
    SupabaseClient, RecordStoreError,
    create_element, bump_element, get_screenshots_by_batch, update_batch
)


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b'' if payload is None else b'x'
        self.text = '' if payload is None else str(payload)

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def request(self, method, url, headers=None, json=None, timeout=None):
        self.requests.append((method, url, json))
        if self.error:
            raise self.error
        return self.response


def test_builds_postgrest_url():
    session = FakeSession(FakeResponse(200, [{"batch_id": 1}]))
    client = SupabaseClient(url="https://db.test/", key="k", session=session)

    rows = client.request('GET', 'batch', filters={'batch_id': 'eq.1', 'order': 'batch_id'})

    assert rows == [{"batch_id": 1}]
    assert session.requests == [('GET', "https://db.test/rest/v1/batch?batch_id=eq.1&order=batch_id", None)]


def test_empty_body_is_empty_list():
    client = SupabaseClient(url="https://db.test", key="k", session=FakeSession(FakeResponse(204)))
    assert client.request('DELETE', 'element', filters={'element_id': 'eq.1'}) == []


def test_error_status_raises():
    client = SupabaseClient(url="https://db.test", key="k", session=FakeSession(FakeResponse(409, {"message": "conflict"})))

    with pytest.raises(RecordStoreError, match="409"):
        client.request('POST', 'batch', {"batch_name": "x"})


def test_transport_failure_raises():
    client = SupabaseClient(url="https://db.test", key="k", session=FakeSession(error=requests.Timeout("slow")))

    with pytest.raises(RecordStoreError):
        client.request('GET', 'batch')


def test_unsupported_method():
    with pytest.raises(ValueError):
        SupabaseClient(url="https://db.test", key="k", session=FakeSession()).request('PUT', 'batch')


class TestRepositories:

    def test_element_versions_increase(self, store):
        element = create_element(store, {'screenshot_id': 1, 'component_id': 1, 'element_text_label': 'A > B'})
        assert element['element_version_number'] == 1

        updated = bump_element(store, element, {'element_accuracy_score': 40})
        assert updated['element_version_number'] == 2

        again = bump_element(store, updated, {'element_accuracy_score': 90})
        assert again['element_version_number'] == 3
        assert again['element_accuracy_score'] == 90

    def test_screenshots_filtered_by_status(self, store):
        store.request('POST', 'screenshot', {'batch_id': 1, 'screenshot_processing_status': 'error'})
        store.request('POST', 'screenshot', {'batch_id': 1, 'screenshot_processing_status': 'completed'})
        store.request('POST', 'screenshot', {'batch_id': 2, 'screenshot_processing_status': 'error'})

        assert len(get_screenshots_by_batch(store, 1)) == 2
        assert len(get_screenshots_by_batch(store, 1, status='error')) == 1

    def test_update_batch_stamps_updated_at(self, store):
        store.request('POST', 'batch', {'batch_status': 'uploading'})

        rows = update_batch(store, 1, {'batch_status': 'extracting'})
        row = rows[0]

        assert row['batch_status'] == 'extracting'
        assert row['updated_at']
