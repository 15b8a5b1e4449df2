"""
SKU resolution against the tenant's subscribed-SKU catalog.

skuIds are opaque: they are only ever taken from the catalog, never derived
from product names.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional

from .constants import DEFAULT_TARGET_SKUS
from .models import LicenseCatalogEntry

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when no target license product exists in the tenant catalog.

    The report is meaningless without at least one recognised license type,
    so this aborts the run before any identity is processed.
    """
    def __init__(self, message: str, target_names: Iterable[str] = (),
                 catalog_names: Iterable[str] = ()):
        self.target_names = sorted(target_names)
        self.catalog_names = sorted(catalog_names)
        super().__init__(message)


@dataclass
class SkuResolution:
    """Result of resolving target product names against the catalog."""
    # target product name -> skuId, None while unresolved
    target_ids: Dict[str, Optional[str]] = field(default_factory=dict)
    # skuId -> product name for every catalog entry
    names_by_id: Dict[str, str] = field(default_factory=dict)

    @property
    def resolved_ids(self) -> FrozenSet[str]:
        return frozenset(sku_id for sku_id in self.target_ids.values() if sku_id)

    @property
    def unresolved_names(self) -> List[str]:
        return sorted(name for name, sku_id in self.target_ids.items() if not sku_id)

    def target_names_for(self, license_ids: Iterable[str]) -> List[str]:
        """Target product names matched by a set of assigned skuIds.

        Ordered by product name and de-duplicated.
        """
        resolved = self.resolved_ids
        names = {self.names_by_id[sku_id] for sku_id in license_ids if sku_id in resolved}
        return sorted(names)

    def display_names_for(self, license_ids: Iterable[str]) -> List[str]:
        """Product names for all assigned skuIds; unknown ids are shown raw."""
        return sorted({self.names_by_id.get(sku_id, sku_id) for sku_id in license_ids})


def resolve_skus(
    catalog: Iterable[LicenseCatalogEntry],
    target_names: Iterable[str] = DEFAULT_TARGET_SKUS,
) -> SkuResolution:
    """
    Map target product names to skuIds using the catalog.

    Args:
        catalog: Subscribed SKUs of the tenant
        target_names: Product names to look for

    Returns:
        SkuResolution with the target map and the full reverse map

    Raises:
        ConfigurationError: If none of the target names is in the catalog
    """
    targets = set(target_names)
    resolution = SkuResolution(target_ids={name: None for name in targets})

    for entry in catalog:
        if not entry.sku_id:
            continue
        resolution.names_by_id[entry.sku_id] = entry.product_name
        if entry.product_name in targets:
            resolution.target_ids[entry.product_name] = entry.sku_id

    if not resolution.resolved_ids:
        raise ConfigurationError(
            f"None of the target license products {sorted(targets)} exist in the tenant catalog",
            target_names=targets,
            catalog_names=resolution.names_by_id.values(),
        )

    for name in resolution.unresolved_names:
        logger.warning(f"Target license {name} not found in tenant catalog")
    logger.info(f"Resolved {len(resolution.resolved_ids)} of {len(targets)} target licenses "
                f"from {len(resolution.names_by_id)} catalog SKUs")

    return resolution
