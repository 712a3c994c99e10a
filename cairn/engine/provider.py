"""
Provider interface used by the reconciler.

A provider talks to the cloud API for one account and region. The reconciler
hands it fully resolved attributes (no References, no unknowns) and records
whatever outputs it returns.
"""

from abc import ABC, abstractmethod
from typing import Any


class Provider(ABC):
    """
    Base class for reconciliation providers.

    Implementations raise ProviderApplyError when the remote side rejects
    a create, update or delete. `read` returns None for an object that no
    longer exists.
    """

    def __init__(self, region: str, account_id: str):
        self.region = region
        self.account_id = account_id

    @abstractmethod
    def create(self, key: str, type: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """Create an object and return its computed outputs."""
        pass

    @abstractmethod
    def read(self, type: str, outputs: dict[str, Any]) -> dict[str, Any] | None:
        """Return the actual attributes of the object identified by `outputs`."""
        pass

    @abstractmethod
    def update(
        self, key: str, type: str, outputs: dict[str, Any], attributes: dict[str, Any]
    ) -> dict[str, Any]:
        """Update an object in place and return its (possibly changed) outputs."""
        pass

    @abstractmethod
    def delete(self, key: str, type: str, outputs: dict[str, Any]) -> None:
        """Delete an object. Deleting an object that is already gone succeeds."""
        pass

    def predict_outputs(self, type: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """
        Outputs that can be known before apply from attributes alone.

        Attributes may contain UNKNOWN values; outputs that depend on them
        must be left out. The default predicts nothing.
        """
        return {}

    def get_provider_name(self) -> str:
        return "unknown"
