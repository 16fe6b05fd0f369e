"""
Supabase database client

A SupabaseClient is constructed once per process (or per test) and handed to
every repository call, so nothing in the pipeline reaches for a global
connection.
"""

import requests
from config import config


class RecordStoreError(Exception):
    """The record store could not be read or written."""


class SupabaseClient:
    """Thin wrapper over the Supabase REST (PostgREST) API"""

    def __init__(self, url=None, key=None, timeout=30, session=None):
        self.url = (url or config.SUPABASE_URL).rstrip('/')
        self.key = key or config.SUPABASE_KEY
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self):
        return {
            'Authorization': f'Bearer {self.key}',
            'apikey': self.key,
            'Content-Type': 'application/json',
            'Prefer': 'return=representation'
        }

    def request(self, method, endpoint, data=None, filters=None):
        """
        Generic Supabase REST API request handler.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            endpoint: Table name
            data: Request body for POST/PATCH
            filters: PostgREST query parameters, e.g. {'batch_id': 'eq.12'}

        Returns:
            List of rows (empty list when the response has no body)

        Raises:
            RecordStoreError: on transport failure or any 4xx/5xx response
        """
        if method not in ('GET', 'POST', 'PATCH', 'DELETE'):
            raise ValueError(f"Unsupported method: {method}")

        url = f"{self.url}/rest/v1/{endpoint}"

        if filters:
            filter_parts = [f"{k}={v}" for k, v in filters.items()]
            url += "?" + "&".join(filter_parts)

        try:
            response = self.session.request(
                method,
                url,
                headers=self._headers(),
                json=data if method in ('POST', 'PATCH') else None,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise RecordStoreError(f"Supabase {method} {endpoint} failed: {e}") from e

        if response.status_code >= 400:
            print(f"Supabase {method} error: {response.status_code} - {response.text}", flush=True)
            raise RecordStoreError(
                f"Supabase {method} {endpoint} error: {response.status_code} - {response.text[:200]}"
            )

        return response.json() if response.content else []


def create_client():
    """Build a client from environment configuration"""
    return SupabaseClient(config.SUPABASE_URL, config.SUPABASE_KEY)
