"""
Read-only port onto the platform's tenancy and property data.

The registration service only needs a snapshot of one tenancy at a time; the
hosting application supplies the implementation.
"""

from typing import Dict, Iterable, Optional, Protocol, runtime_checkable

from ..exceptions import not_found
from ..schemas import TenancySnapshot


@runtime_checkable
class TenancyDirectory(Protocol):
    def get_tenancy(self, tenancy_id: str) -> TenancySnapshot:
        """
        Return the tenancy snapshot.

        Raises:
            NotFoundError: If the tenancy does not exist
        """
        ...


class InMemoryTenancyDirectory:
    """Dictionary-backed directory for development, scripts and tests."""

    def __init__(self, tenancies: Optional[Iterable[TenancySnapshot]] = None):
        self._tenancies: Dict[str, TenancySnapshot] = {}
        for tenancy in tenancies or []:
            self.add(tenancy)

    def add(self, tenancy: TenancySnapshot) -> None:
        self._tenancies[tenancy.tenancy_id] = tenancy

    def get_tenancy(self, tenancy_id: str) -> TenancySnapshot:
        tenancy = self._tenancies.get(tenancy_id)
        if tenancy is None:
            raise not_found("Tenancy", tenancy_id=tenancy_id)
        return tenancy
