import json
from pathlib import Path
from typing import Union
from urllib.parse import quote

from util import UserError


class StateStore:
    """Locally tracked state of a single resource, kept as a JSON file inside the state plug.

    This is what survives between Deployster runs: most importantly the server-assigned ID of the remote object, which
    is the only way to address it once it was created."""

    def __init__(self, state_dir: Path, kind: str, resource_name: str) -> None:
        super().__init__()
        # percent-encoding keeps distinct resource names in distinct files
        safe_name = quote(resource_name, safe='')
        self._path: Path = Path(state_dir) / f"{kind}-{safe_name}.json"

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Union[None, dict]:
        if not self._path.exists():
            return None
        with open(self._path, 'r') as f:
            try:
                return json.loads(f.read())
            except json.JSONDecodeError as e:
                raise UserError(f"corrupt tracked state at '{self._path}': {e}") from e

    def save(self, state: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, 'w') as f:
            f.write(json.dumps(state, indent=2, sort_keys=True))

    def forget(self) -> None:
        if self._path.exists():
            self._path.unlink()
