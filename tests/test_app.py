"""
Tests for the HTTP routes.
"""

import concurrent.futures

import pytest

from app import create_app
from tests.conftest import public_url


class FakeBackground:
    """Records scheduled runs instead of executing them"""

    def __init__(self):
        self.submitted = []

    def submit(self, coro):
        self.submitted.append(coro.cr_code.co_name)
        coro.close()
        return concurrent.futures.Future()


@pytest.fixture
def background():
    return FakeBackground()


@pytest.fixture
def controller(make_controller):
    return make_controller()


@pytest.fixture
def client(controller, background):
    app = create_app(controller=controller, background=background)
    app.config['TESTING'] = True
    return app.test_client()


def _create(client, *paths):
    response = client.post('/create-batch', json={
        'batch_name': 'Onboarding',
        'file_urls': [public_url(p) for p in paths]
    })
    assert response.status_code == 201
    return response.get_json()['batch']['batch_id']


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'


def test_module_exposes_wsgi_app():
    import app as app_module

    rules = {rule.rule for rule in app_module.app.url_map.iter_rules()}
    assert {'/health', '/start-batch', '/batch-status'} <= rules


def test_create_batch_requires_urls(client):
    assert client.post('/create-batch', json={}).status_code == 400
    assert client.post('/create-batch', json={'file_urls': 'a.png'}).status_code == 400


def test_start_batch_is_scheduled(client, background):
    batch_id = _create(client, "a/one.png", "a/two.png")

    response = client.post('/start-batch', json={'batch_id': batch_id})

    assert response.status_code == 202
    assert response.get_json()['status'] == 'extracting'
    assert background.submitted == ['start_batch_extraction']


def test_start_batch_validation(client, store):
    assert client.post('/start-batch', json={}).status_code == 400
    assert client.post('/start-batch', json={'batch_id': 'abc'}).status_code == 400
    assert client.post('/start-batch', json={'batch_id': 41}).status_code == 404


def test_start_batch_in_wrong_state_conflicts(client, store, background):
    batch_id = _create(client, "a/one.png")
    store.request('PATCH', 'batch', {'batch_status': 'annotating'}, {'batch_id': f'eq.{batch_id}'})

    response = client.post('/start-batch', json={'batch_id': batch_id})

    assert response.status_code == 409
    assert background.submitted == []


def test_reprocess_is_allowed_after_extraction(client, store, background):
    batch_id = _create(client, "a/one.png")
    store.request('PATCH', 'batch', {'batch_status': 'done'}, {'batch_id': f'eq.{batch_id}'})

    response = client.post('/reprocess-batch', json={'batch_id': batch_id})

    assert response.status_code == 202
    assert background.submitted == ['start_batch_extraction']


def test_cancel_when_not_running(client):
    batch_id = _create(client, "a/one.png")
    assert client.post('/cancel-batch', json={'batch_id': batch_id}).status_code == 409


def test_complete_review(client, store):
    batch_id = _create(client, "a/one.png")
    assert client.post('/complete-review', json={'batch_id': batch_id}).status_code == 409

    store.request('PATCH', 'batch', {'batch_status': 'validating'}, {'batch_id': f'eq.{batch_id}'})
    response = client.post('/complete-review', json={'batch_id': batch_id})

    assert response.status_code == 200
    assert response.get_json()['previous_status'] == 'validating'
    assert store.rows('batch')[0]['batch_status'] == 'done'


def test_status_and_analytics(client):
    batch_id = _create(client, "a/one.png")

    status = client.get(f'/batch-status?batch_id={batch_id}')
    assert status.status_code == 200
    assert status.get_json()['screenshot_counts'] == {'pending': 1}

    assert client.get('/batch-status?batch_id=77').status_code == 404
    assert client.get('/batch-analytics?batch_id=77').status_code == 404
    assert client.get(f'/batch-analytics?batch_id={batch_id}').get_json()['batch_summary']['total_prompts'] == 0
    assert client.get(f'/batch-annotations?batch_id={batch_id}').get_json()['screenshots'][0]['components'] == []


def test_list_batches(client):
    first = _create(client, "a/one.png")
    second = _create(client, "b/one.png")

    response = client.get('/batches?limit=1')

    assert response.status_code == 200
    ids = [b['batch_id'] for b in response.get_json()['batches']]
    assert len(ids) == 1
    assert ids[0] in (first, second)
