from typing import Any, MutableMapping, Sequence, Union

import requests

from context import VaultContext

EXPIRED_CREDENTIAL_MESSAGES = ('invalid accessor', 'failed to find accessor entry')


class VaultError(Exception):
    """A failed call to Vault's HTTP API.

    The status code is None when the request never got a response (connection errors, timeouts, etc)."""

    def __init__(self, method: str, path: str, status_code: int = None, errors: Sequence[str] = None,
                 message: str = None) -> None:
        self.method: str = method
        self.path: str = path
        self.status_code: int = status_code
        self.errors: Sequence[str] = errors if errors is not None else []
        details = "; ".join(self.errors) if self.errors else message
        super().__init__(f"{method} {path} failed ({status_code if status_code else 'no response'}): {details}")

    @property
    def expired_credential(self) -> bool:
        """Whether Vault rejected the call because the accessor behind the credential has expired."""
        text = " ".join(self.errors).lower()
        return any(msg in text for msg in EXPIRED_CREDENTIAL_MESSAGES)


class ExternalServices:
    """Gateway to Vault's logical API.

    Every remote call made by Vault resources goes through this class, so tests can replace it with a mock. Paths are
    logical paths such as '/identity/group/id/1234'; responses are the decoded JSON body, or None when Vault returns
    no body (or, for reads, when nothing exists at the path)."""

    def __init__(self, context: VaultContext = None) -> None:
        super().__init__()
        self._context: VaultContext = context if context is not None else VaultContext()
        self._session: requests.Session = None

    @property
    def context(self) -> VaultContext:
        return self._context

    def _get_session(self) -> requests.Session:
        if self._session is None:
            session = requests.Session()
            if self._context.token:
                session.headers['X-Vault-Token'] = self._context.token
            if self._context.namespace:
                session.headers['X-Vault-Namespace'] = self._context.namespace
            session.verify = self._context.verify
            self._session = session
        return self._session

    def _url(self, path: str) -> str:
        return f"{self._context.address}/v1/{path.lstrip('/')}"

    def _request(self, method: str, path: str, body: dict = None) -> requests.Response:
        try:
            return self._get_session().request(method, self._url(path), json=body, timeout=self._context.timeout)
        except requests.exceptions.RequestException as e:
            raise VaultError(method=method, path=path, message=str(e)) from e

    def _parse_response(self, method: str, path: str, response: requests.Response) -> Union[None, dict]:
        if 200 <= response.status_code < 300:
            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError as e:
                raise VaultError(method=method, path=path, status_code=response.status_code,
                                 message=f"malformed JSON response: {e}") from e

        errors: Sequence[str] = []
        try:
            body: Any = response.json()
            if isinstance(body, dict) and 'errors' in body:
                errors = body['errors']
        except ValueError:
            pass
        raise VaultError(method=method, path=path, status_code=response.status_code, errors=errors,
                         message=response.text)

    def read_vault_path(self, path: str) -> Union[None, dict]:
        response = self._request('GET', path)
        if response.status_code == 404:
            # Vault answers 404 for missing paths; any explanation in the body is not an error for readers
            return None
        return self._parse_response('GET', path, response)

    def write_vault_path(self, path: str, data: MutableMapping[str, Any]) -> Union[None, dict]:
        return self._parse_response('PUT', path, self._request('PUT', path, body=data))

    def delete_vault_path(self, path: str) -> Union[None, dict]:
        return self._parse_response('DELETE', path, self._request('DELETE', path))
