"""Supabase clients for the target database, auth admin API and storage."""

import logging
import secrets
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import ObjectStorage, StoreError, TargetStore

logger = logging.getLogger(__name__)

AUTH_USERS_PAGE_SIZE = 1000


def create_session(
    service_role_key: str,
    max_retries: int = 3,
    backoff_factor: float = 1.0,
) -> requests.Session:
    """
    Create a requests session authenticated with the service role key.

    The adapter retries idempotent requests (GET, HEAD, PUT, DELETE) on
    gateway and rate-limit statuses. Inserts are POSTs and are left to the
    batch processor's own retry policy.
    """
    session = requests.Session()

    retries = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    session.headers["apikey"] = service_role_key
    session.headers["Authorization"] = f"Bearer {service_role_key}"
    return session


def _raise_for_response(response: requests.Response, action: str) -> None:
    if response.ok:
        return
    message = response.reason or "request failed"
    details = None
    try:
        details = response.json()
        if isinstance(details, dict):
            message = (
                details.get("message")
                or details.get("msg")
                or details.get("error_description")
                or details.get("error")
                or message
            )
    except ValueError:
        if response.text:
            message = response.text[:200]
    raise StoreError(f"{action} failed ({response.status_code}): {message}", response.status_code, details)


class _SupabaseClient:
    def __init__(
        self,
        url: str,
        service_role_key: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = url.rstrip("/")
        self.timeout = timeout
        self._session = session or create_session(service_role_key)

    def _request(self, method: str, path: str, action: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RetryError as e:
            raise StoreError(f"{action} failed after retries: {e}", 503) from e
        _raise_for_response(response, action)
        return response


class SupabaseStore(_SupabaseClient, TargetStore):
    """
    Target store over the PostgREST and GoTrue admin HTTP APIs.

    Rows are exchanged as JSON; every write asks for the stored
    representation back.
    """

    def _table_path(self, table: str) -> str:
        return f"/rest/v1/{quote(table)}"

    @staticmethod
    def _filter_params(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
        return {column: f"eq.{value}" for column, value in (filters or {}).items()}

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = self.batch_insert(table, [row])
        return rows[0] if rows else row

    def batch_insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not rows:
            return []
        response = self._request(
            "POST",
            self._table_path(table),
            f"Insert into {table}",
            json=rows,
            headers={"Prefer": "return=representation"},
        )
        inserted = response.json() if response.content else []
        if len(inserted) != len(rows):
            raise StoreError(f"Insert into {table} returned {len(inserted)} of {len(rows)} rows")
        return inserted

    def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        response = self._request(
            "HEAD",
            self._table_path(table),
            f"Count {table}",
            params=self._filter_params(filters),
            headers={"Prefer": "count=exact", "Range": "0-0"},
        )
        content_range = response.headers.get("Content-Range", "")
        total = content_range.rsplit("/", 1)[-1]
        if not total.isdigit():
            raise StoreError(f"Count {table} returned no total: {content_range!r}")
        return int(total)

    def exists(self, table: str, column: str, value: Any) -> bool:
        response = self._request(
            "GET",
            self._table_path(table),
            f"Lookup in {table}",
            params={"select": column, column: f"eq.{value}", "limit": "1"},
        )
        return bool(response.json())

    def update_by_id(self, table: str, record_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        response = self._request(
            "PATCH",
            self._table_path(table),
            f"Update {table} {record_id}",
            params={"id": f"eq.{record_id}"},
            json=values,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json() if response.content else []
        if not rows:
            raise StoreError(f"Update {table} {record_id} matched no rows", 404)
        return rows[0]

    def create_auth_user(self, email: str, user_metadata: Optional[Dict[str, Any]] = None) -> str:
        # Migrated users sign in with one-time codes, the password is never shown
        payload = {
            "email": email,
            "password": f"migrated-{secrets.token_urlsafe(24)}",
            "email_confirm": True,
            "user_metadata": user_metadata or {},
        }
        response = self._request("POST", "/auth/v1/admin/users", f"Create auth user {email}", json=payload)
        data = response.json()
        user = data.get("user", data) if isinstance(data, dict) else {}
        user_id = user.get("id")
        if not user_id:
            raise StoreError(f"Create auth user {email} returned no user id")
        return user_id

    def list_auth_users(self) -> Dict[str, str]:
        users: Dict[str, str] = {}
        page = 1
        while True:
            response = self._request(
                "GET",
                "/auth/v1/admin/users",
                "List auth users",
                params={"page": page, "per_page": AUTH_USERS_PAGE_SIZE},
            )
            batch = response.json().get("users", [])
            for user in batch:
                if user.get("email"):
                    users[user["email"].lower()] = user["id"]
            if len(batch) < AUTH_USERS_PAGE_SIZE:
                return users
            page += 1

    def test_connection(self) -> bool:
        try:
            self._request("GET", "/rest/v1/profiles", "Connection test", params={"select": "id", "limit": "1"})
            return True
        except (StoreError, requests.exceptions.RequestException) as e:
            logger.error(f"Connection test failed: {e}")
            return False


class SupabaseStorage(_SupabaseClient, ObjectStorage):
    """Object storage over the Supabase Storage HTTP API."""

    def _object_path(self, bucket: str, path: str) -> str:
        return f"/storage/v1/object/{quote(bucket)}/{quote(path)}"

    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        self._request(
            "POST",
            self._object_path(bucket, path),
            f"Upload {bucket}/{path}",
            data=data,
            headers={"Content-Type": content_type, "x-upsert": "true", "cache-control": "max-age=3600"},
        )
        return path

    def exists(self, bucket: str, path: str) -> bool:
        return self.size(bucket, path) is not None

    def size(self, bucket: str, path: str) -> Optional[int]:
        try:
            response = self._request(
                "HEAD",
                self._object_path(bucket, path),
                f"Stat {bucket}/{path}",
            )
        except StoreError as e:
            if e.status_code in (400, 404):
                return None
            raise
        length = response.headers.get("Content-Length")
        return int(length) if length and length.isdigit() else 0
