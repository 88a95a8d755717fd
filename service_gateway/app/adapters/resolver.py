"""
Adapter resolution for the Gateway.

Maps a logical model name onto the base URL of the backend that serves it.
"""

import os
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from shared.errors import UnknownModelError

# model name -> (environment override, default base URL)
DEFAULT_ADAPTERS: Dict[str, Tuple[str, str]] = {
    "adapter-a": ("ADAPTER_A_URL", "http://localhost:8081"),
    "adapter-b": ("ADAPTER_B_URL", "http://localhost:8082"),
}


@dataclass(frozen=True)
class AdapterTarget:
    """Resolved backend for one request."""

    model_name: str
    base_url: str


class AdapterResolver:
    """Resolve logical model names against a closed adapter table.

    The environment is consulted on every call, so an override exported after
    start-up is picked up by the next request without a restart.
    """

    def __init__(self,
                 adapters: Optional[Dict[str, Tuple[str, str]]] = None,
                 environ: Optional[Mapping[str, str]] = None):
        self._adapters = dict(adapters if adapters is not None else DEFAULT_ADAPTERS)
        self._environ = environ

    @property
    def models(self) -> List[str]:
        """Recognised model names in declaration order."""
        return list(self._adapters)

    def is_known(self, model: str) -> bool:
        return model in self._adapters

    def resolve(self, model: str) -> str:
        """Return the backend base URL for ``model`` or raise ``UnknownModelError``."""
        return self.target(model).base_url

    def target(self, model: str) -> AdapterTarget:
        try:
            env_var, default_url = self._adapters[model]
        except KeyError:
            raise UnknownModelError(model)

        environ = self._environ if self._environ is not None else os.environ
        override = (environ.get(env_var) or "").strip()
        return AdapterTarget(model_name=model, base_url=override or default_url)
