"""
Pytest configuration and fixtures.

Everything external is faked in memory: the Supabase record store, the
storage signer, the model providers and image downloads.
"""

import asyncio
import json
import threading
from collections import defaultdict

import pytest

from config import config
from core.base import ProviderResponse
from core.images import ImageRef
from database.client import RecordStoreError
from services.batch_service import BatchController
from services.signed_url_cache import SignedUrlCache


PRIMARY_KEYS = {
    'batch': 'batch_id',
    'screenshot': 'screenshot_id',
    'component': 'component_id',
    'element': 'element_id',
    'prompt_log': 'prompt_log_id',
}


# ============================================================
# RECORD STORE
# ============================================================

class FakeSupabaseClient:
    """In-memory stand-in for SupabaseClient honouring PostgREST filters"""

    def __init__(self):
        self.tables = defaultdict(list)
        self.calls = []
        self.fail_on = set()
        self._next_id = defaultdict(int)
        self._lock = threading.Lock()

    def rows(self, table):
        with self._lock:
            return [dict(r) for r in self.tables[table]]

    def status_history(self, batch_id):
        """Every batch_status written for a batch, in order"""
        return [
            data['batch_status'] for method, table, data, filters in self.calls
            if table == 'batch' and method in ('POST', 'PATCH')
            and 'batch_status' in (data or {})
            and (method == 'POST' or filters.get('batch_id') == f'eq.{batch_id}')
        ]

    @staticmethod
    def _matches(row, filters):
        for key, expression in (filters or {}).items():
            if key in ('order', 'limit', 'select'):
                continue
            op, _, value = expression.partition('.')
            actual = row.get(key)
            if op == 'eq' and str(actual) != value:
                return False
            if op == 'neq' and str(actual) == value:
                return False
            if op == 'in' and str(actual) not in value.strip('()').split(','):
                return False
            if op == 'is' and value == 'null' and actual is not None:
                return False
        return True

    @staticmethod
    def _ordered(rows, filters):
        order = (filters or {}).get('order')
        if not order:
            return rows
        for part in reversed(order.split(',')):
            column, _, direction = part.partition('.')
            rows = sorted(
                rows,
                key=lambda r: (r.get(column) is None, str(r.get(column)).zfill(12)),
                reverse=direction == 'desc'
            )
        return rows

    def request(self, method, endpoint, data=None, filters=None):
        with self._lock:
            self.calls.append((method, endpoint, data, filters or {}))

            if endpoint in self.fail_on or (method, endpoint) in self.fail_on:
                raise RecordStoreError(f"Supabase {method} {endpoint} error: 503")

            table = self.tables[endpoint]

            if method == 'POST':
                row = dict(data)
                pk = PRIMARY_KEYS.get(endpoint, 'id')
                if pk not in row:
                    self._next_id[endpoint] += 1
                    row[pk] = self._next_id[endpoint]
                table.append(row)
                return [dict(row)]

            matched = [r for r in table if self._matches(r, filters)]

            if method == 'GET':
                rows = self._ordered(matched, filters)
                if filters and 'limit' in filters:
                    rows = rows[:int(filters['limit'])]
                return [dict(r) for r in rows]

            if method == 'PATCH':
                for row in matched:
                    row.update(data)
                return [dict(r) for r in matched]

            if method == 'DELETE':
                self.tables[endpoint] = [r for r in table if r not in matched]
                return [dict(r) for r in matched]

            raise ValueError(method)


# ============================================================
# STORAGE
# ============================================================

class FakeStorage:
    """Counts upstream signing requests"""

    def __init__(self, unsignable=()):
        self.unsignable = set(unsignable)
        self.single_calls = []
        self.batch_calls = []
        self.fail = False
        self._lock = threading.Lock()

    def _url(self, path):
        return f"https://signed.test/{path}?token=t{len(self.single_calls) + len(self.batch_calls)}"

    def create_signed_url(self, path, ttl_seconds):
        with self._lock:
            self.single_calls.append(path)
            if self.fail:
                from database.storage import StorageError
                raise StorageError("signing down")
            return self._url(path)

    def create_signed_urls(self, paths, ttl_seconds):
        with self._lock:
            self.batch_calls.append(list(paths))
            if self.fail:
                from database.storage import StorageError
                raise StorageError("signing down")
            return {p: self._url(p) for p in paths if p not in self.unsignable}


# ============================================================
# MODEL PROVIDERS
# ============================================================

def _between(text, start, end):
    return text.split(start, 1)[1].split(end, 1)[0].strip()


def default_components(image, prompt):
    return json.dumps([{"component_name": "Header", "description": "Top bar with title"}])


def default_claude(image, prompt):
    if '<component_list>' in prompt:
        names = _between(prompt, '<component_list>', '</component_list>').splitlines()
        return json.dumps({f"{name} > Title": f"Bold title text inside {name}" for name in names})

    if '<element_list>' in prompt:
        elements = json.loads(_between(prompt, '<element_list>', '</element_list>'))
        anchored = {label: f"{text}, at the top of the screen" for label, text in elements.items()}
        return "Here you go:\n```json\n" + json.dumps(anchored) + "\n```"

    if '<detections>' in prompt:
        items = json.loads(_between(prompt, '<detections>', '</detections>'))
        return json.dumps([
            {"id": item["id"], "label": item["label"], "accuracy": 92, "hidden": False, "explanation": "Tight fit"}
            for item in items
        ])

    return '{}'


def default_boxes(image, description):
    return [{"x_min": 0.1, "y_min": 0.05, "x_max": 0.9, "y_max": 0.15}]


class FakeTextProvider:
    """Scripted generate() provider; respond(image, prompt) returns text or raises"""

    def __init__(self, name, model, respond, delay=0.0, input_tokens=1000, output_tokens=200):
        self.name = name
        self.model = model
        self.respond = respond
        self.delay = delay
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls = []

    async def generate(self, session, image, prompt):
        self.calls.append((image.url if image else None, prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        text = self.respond(image, prompt)
        return ProviderResponse(
            text=text,
            model=self.model,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens
        )


class FakeDetector:
    """Scripted detect() provider returning fractional boxes"""

    name = 'moondream'
    model = 'Moondream-vl-Detect'

    def __init__(self, respond=default_boxes, delay=0.0):
        self.respond = respond
        self.delay = delay
        self.calls = []

    async def detect(self, session, image, description):
        self.calls.append((image.url, description))
        if self.delay:
            await asyncio.sleep(self.delay)
        objects = self.respond(image, description)
        return ProviderResponse(
            text=json.dumps({"request_id": "req-1", "objects": objects}),
            model=self.model,
            objects=objects,
            request_id='req-1'
        )


def make_providers(components=default_components, claude=default_claude, boxes=default_boxes, delay=0.0):
    return {
        'openai': FakeTextProvider('openai', 'gpt-4.1-mini-2025-04-14', components, delay=delay),
        'claude': FakeTextProvider('claude', 'claude-3-7-sonnet-20250219', claude, delay=delay),
        'moondream': FakeDetector(boxes, delay=delay),
    }


# ============================================================
# IMAGES / SESSION
# ============================================================

async def fake_image_loader(url):
    return ImageRef(url=url, data=b'', media_type='image/png', width=400, height=800)


class NullSession:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def public_url(path):
    return f"{config.SUPABASE_URL}/storage/v1/object/public/{config.SUPABASE_BUCKET_NAME}/{path}"


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def store():
    return FakeSupabaseClient()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def url_cache(storage):
    return SignedUrlCache(storage, max_entries=50, ttl_seconds=3600)


@pytest.fixture
def make_controller(store, url_cache):
    """Factory for a controller wired to fakes; keyword args override"""
    def _make(providers=None, **kwargs):
        options = {
            'image_loader': fake_image_loader,
            'max_concurrency': 3,
            'score_accuracy': False,
            'session_factory': NullSession,
        }
        options.update(kwargs)
        return BatchController(store, url_cache, providers or make_providers(), **options)
    return _make
