"""
Typed HTTP client for the ledger API.

The base URL is injected (argument or LEDGER_API_BASE_URL); there is no
default host. Destructive calls go through a confirmation callback that
receives a prompt and returns True to proceed, so any front end (terminal,
GUI, test) can supply its own dialog:

    client = LedgerClient(confirm=lambda prompt: input(prompt + " [y/N] ") == "y")
    client.delete_user("u-42")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from ledger import config
from ledger.errors import ERRORS_BY_STATUS, LedgerError

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]


class ApiError(LedgerError):
    """A non-2xx response without a more specific error class."""


class ConfirmationRequired(RuntimeError):
    """A destructive call was made without any confirmation callback."""


def _raise_for_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    message = body.get("error") if isinstance(body, dict) else None
    details = body.get("details") if isinstance(body, dict) else None
    error_cls = ERRORS_BY_STATUS.get(response.status_code, ApiError)
    error = error_cls(message or f"HTTP {response.status_code}", details=details)
    error.status_code = response.status_code
    raise error


class LedgerClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        http: Optional[httpx.Client] = None,
        confirm: Optional[Confirm] = None,
        timeout: float = 10.0,
    ):
        self._confirm = confirm
        if http is not None:
            self._http = http
            self._owns_http = False
            self._prefix = (base_url or "").rstrip("/")
            return

        base_url = base_url or config.API_BASE_URL
        if not base_url:
            raise ValueError("No API base URL: pass base_url or set LEDGER_API_BASE_URL")
        self._http = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)
        self._owns_http = True
        self._prefix = ""

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "LedgerClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._http.request(method, f"{self._prefix}{path}", **kwargs)
        _raise_for_error(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _confirmed(self, prompt: str, confirm: Optional[Confirm]) -> bool:
        callback = confirm or self._confirm
        if callback is None:
            raise ConfirmationRequired(f"Refusing to run without confirmation: {prompt}")
        if not callback(prompt):
            logger.info("Declined: %s", prompt)
            return False
        return True

    # Users

    def list_users(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/users")

    def get_user(self, user_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/users/{user_id}")

    def create_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/users", json=user)

    def update_user(self, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/users/{user_id}", json=changes)

    def delete_user(self, user_id: str, cascade: bool = False, confirm: Optional[Confirm] = None) -> bool:
        """Delete a user once confirmed. Returns False when the confirmation is declined."""
        prompt = f"Are you sure you want to delete user {user_id}?"
        if cascade:
            prompt = f"Are you sure you want to delete user {user_id} and all of their transactions?"
        if not self._confirmed(prompt, confirm):
            return False
        self._request("DELETE", f"/users/{user_id}", params={"cascade": str(cascade).lower()})
        return True

    # Transactions

    def list_transactions(self, user_id: Optional[str] = None, currency: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {key: value for key, value in (("userId", user_id), ("currency", currency)) if value}
        return self._request("GET", "/transactions", params=params)

    def get_transaction(self, transaction_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/transactions/{transaction_id}")

    def transactions_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/transactions/user/{user_id}")

    def create_transaction(self, transaction: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/transactions", json=transaction)

    def update_transaction(self, transaction_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/transactions/{transaction_id}", json=changes)

    def delete_transaction(self, transaction_id: int, confirm: Optional[Confirm] = None) -> bool:
        if not self._confirmed(f"Are you sure you want to delete transaction {transaction_id}?", confirm):
            return False
        self._request("DELETE", f"/transactions/{transaction_id}")
        return True

    # Upload & summaries

    def upload_archive(
        self,
        archive: Union[bytes, str, Path],
        filename: Optional[str] = None,
        on_duplicate: Optional[str] = None,
    ) -> Dict[str, Any]:
        if isinstance(archive, (str, Path)):
            path = Path(archive)
            data = path.read_bytes()
            filename = filename or path.name
        else:
            data = archive
        params = {"onDuplicate": on_duplicate} if on_duplicate else None
        files = {"zipFile": (filename or "upload.zip", data, "application/zip")}
        return self._request("POST", "/upload", files=files, params=params)

    def list_imports(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/imports")

    def dashboard(self) -> Dict[str, Any]:
        return self._request("GET", "/dashboard")
