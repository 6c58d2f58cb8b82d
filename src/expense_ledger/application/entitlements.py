from typing import Protocol


EXPORT_DATA = "export_data"


class EntitlementOracle(Protocol):
    def is_entitled(self, feature: str) -> bool: ...


class AllowAllEntitlements:
    def is_entitled(self, feature: str) -> bool:
        return True


class StaticEntitlements:
    """Grants a fixed set of features."""

    def __init__(self, features: set[str]) -> None:
        self._features = frozenset(features)

    def is_entitled(self, feature: str) -> bool:
        return feature in self._features
