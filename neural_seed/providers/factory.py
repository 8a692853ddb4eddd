"""Registry of backend variants, keyed by component and family name.

Each variant module registers its class at import time; ``main`` imports
the variant modules and then asks the factory for the family named in
``config.json``.  Only that one family is instantiated per process, so a
deployment never mixes backends.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from neural_seed.core.http_client_pool import HttpClientPool

# (component, family) → variant class
_REGISTRY: dict[tuple[str, str], type] = {}


def register_provider(component: str, provider: str):
    """Class decorator: make *cls* the ``provider`` variant of ``component``.

    Registering a different class under an existing name is an error.
    """

    def wrapper(cls: type) -> type:
        existing = _REGISTRY.get((component, provider))
        if existing is not None and existing is not cls:
            raise ValueError(
                f"{component} provider {provider!r} already registered by {existing.__name__}"
            )
        _REGISTRY[(component, provider)] = cls
        return cls

    return wrapper


class ProviderFactory:
    @staticmethod
    def create(
        component: str,
        provider: str,
        config: BaseModel,
        http_pool: HttpClientPool,
    ) -> Any:
        """Build the registered variant with its section of the config.

        *provider* may be a ``BackendFamily`` member; its string value is
        the registry name.

        Raises:
            ValueError: Nothing is registered under *(component, provider)*.
        """
        name = str(provider)
        cls = _REGISTRY.get((component, name))
        if cls is None:
            names = sorted(k[1] for k in _REGISTRY if k[0] == component)
            raise ValueError(
                f"No provider registered for ({component}, {name}); known: {', '.join(names)}"
            )
        return cls(config=config, http_pool=http_pool)

    @staticmethod
    def available(component: str | None = None) -> list[tuple[str, str]]:
        return [k for k in _REGISTRY if component is None or k[0] == component]
