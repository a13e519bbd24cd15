"""
HTTP client for the catalog REST API.

The bearer token lives on the client instance (an explicit session) rather
than in any global storage. Pass an existing ``httpx.Client`` (for example
FastAPI's ``TestClient``) to reuse its transport.
"""

from typing import Any, Dict, Iterator, List, Optional, Union

import httpx

DEFAULT_TIMEOUT = 30.0


class CatalogAPIError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class CatalogClient:
    def __init__(self, base_url: Union[str, httpx.Client] = "http://localhost:5000", token: Optional[str] = None):
        if isinstance(base_url, httpx.Client):
            self.http = base_url
            self._owns_http = False
        else:
            self.http = httpx.Client(base_url=base_url.rstrip("/"), timeout=DEFAULT_TIMEOUT)
            self._owns_http = True
        self.token = token

    def close(self) -> None:
        if self._owns_http:
            self.http.close()

    def __enter__(self) -> "CatalogClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -----------------------------
    # Transport
    # -----------------------------
    def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if "params" in kwargs:
            kwargs["params"] = {k: v for k, v in kwargs["params"].items() if v is not None}
        try:
            response = self.http.request(method, f"/api{path}", headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise CatalogAPIError(0, f"Network error: {e}") from e

        if response.is_error:
            raise CatalogAPIError(response.status_code, _error_message(response))
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # -----------------------------
    # Auth
    # -----------------------------
    def login(self, email: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.token = data["token"]
        return data["admin"]

    def logout(self) -> None:
        self.token = None

    def profile(self) -> Dict[str, Any]:
        return self._request("GET", "/auth/profile")

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")

    # -----------------------------
    # Content
    # -----------------------------
    def list_content(self, page: int = 1, limit: int = 10, type: Optional[str] = None,
                     sort: Optional[str] = None, q: Optional[str] = None) -> Dict[str, Any]:
        return self._request("GET", "/content", params={"page": page, "limit": limit, "type": type, "sort": sort, "q": q})

    def iter_content(self, page_size: int = 50) -> Iterator[Dict[str, Any]]:
        page = 1
        while True:
            data = self.list_content(page=page, limit=page_size)
            yield from data["contents"]
            if page >= data["pages"]:
                return
            page += 1

    def search(self, q: str, type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Title search; an empty result comes back as an empty list, not an error."""
        try:
            return self._request("GET", "/content/search", params={"q": q, "type": type})
        except CatalogAPIError as e:
            if e.status_code == 404:
                return []
            raise

    def list_by_type(self, type: str, page: int = 1, limit: int = 20, sort: Optional[str] = None) -> Dict[str, Any]:
        return self._request("GET", f"/content/type/{type}", params={"page": page, "limit": limit, "sort": sort})

    def get_content(self, content_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/content/{content_id}")

    def create_content(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/content", json=data)

    def replace_content(self, content_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/content/{content_id}", json=data)

    def delete_content(self, content_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/content/{content_id}")

    # -----------------------------
    # Availability
    # -----------------------------
    def list_availability(self, content_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/content/{content_id}/availability")

    def create_availability(self, content_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/content/{content_id}/availability", json=data)

    def replace_availability(self, content_id: str, availability_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/content/{content_id}/availability/{availability_id}", json=data)

    def delete_availability(self, content_id: str, availability_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/content/{content_id}/availability/{availability_id}")

    # -----------------------------
    # Requests
    # -----------------------------
    def submit_request(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/requests", json=data)

    def list_requests(self, **params) -> Dict[str, Any]:
        return self._request("GET", "/requests", params=params)

    def get_request(self, request_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/requests/{request_id}")

    def update_request(self, request_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PATCH", f"/requests/{request_id}", json=changes)

    def delete_request(self, request_id: str) -> None:
        self._request("DELETE", f"/requests/{request_id}")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if body.get("message"):
            return body["message"]
    return response.reason_phrase
