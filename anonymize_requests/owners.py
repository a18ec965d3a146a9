"""Owner capabilities.

An owner is whatever entity a request anonymizes. The workflow only needs two
things from it, an identifier shared with the other services and a way to
anonymize its own data, and looks both up through ``OwnerRegistry`` by the
owner type stored on the request.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from anonymize_requests.config import AnonymizeConfig
from anonymize_requests.models import OwnerRef


class OwnerError(Exception):
    field = "owner_type"


class UnknownOwnerTypeError(OwnerError):
    pass


class UnknownOwnerError(OwnerError):
    field = "owner_id"


class OwnerCapabilityError(OwnerError):
    pass


@runtime_checkable
class Owner(Protocol):
    def external_identifier(self) -> str: ...

    def anonymize_locally(self) -> Any: ...


class SelectorOwner:
    """Adapts a plain model whose capabilities are named by configuration."""

    def __init__(self, model: Any, identifier_selector: str, anonymize_selector: str):
        self.model = model
        self._identifier = self._bind(model, identifier_selector)
        self._anonymize = self._bind(model, anonymize_selector)

    @staticmethod
    def _bind(model: Any, selector: str) -> Callable[[], Any]:
        try:
            attr = getattr(model, selector)
        except AttributeError:
            raise OwnerCapabilityError(f"{type(model).__name__} has no '{selector}' capability") from None
        if callable(attr):
            return attr
        return lambda: attr

    def external_identifier(self) -> str:
        return str(self._identifier())

    def anonymize_locally(self) -> Any:
        return self._anonymize()


class OwnerRegistry:
    def __init__(self, config: AnonymizeConfig):
        self.config = config
        self._loaders: dict[str, Callable[[str], Owner | None]] = {}

    def register(self, owner_type: str, loader: Callable[[str], Owner | None]) -> None:
        """Register a loader for ``owner_type``; it returns ``None`` for unknown ids."""
        self._loaders[owner_type] = loader

    def register_model(self, owner_type: str, loader: Callable[[str], Any]) -> None:
        def load(owner_id: str) -> Owner | None:
            model = loader(owner_id)
            if model is None:
                return None
            return SelectorOwner(
                model,
                self.config.identifier_selector,
                self.config.anonymize_selector,
            )

        self._loaders[owner_type] = load

    def resolve(self, ref: OwnerRef) -> Owner:
        try:
            loader = self._loaders[ref.type]
        except KeyError:
            raise UnknownOwnerTypeError(f"no owner loader registered for type '{ref.type}'") from None
        owner = loader(ref.id)
        if owner is None:
            raise UnknownOwnerError(f"{ref.type} '{ref.id}' does not exist")
        return owner

    def __contains__(self, owner_type: str) -> bool:
        return owner_type in self._loaders
