"""Masking of results inside the excluded inner region of a run."""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from ..catalog import DEFAULT_CATALOG, UnitCatalog
from ..constants import MISSING_SENTINEL
from ..errors import EngineFailure
from ..schema import InnerBoundary
from ..table import Table

logger = logging.getLogger(__name__)


def inner_radius_m(boundary: Optional[InnerBoundary], catalog: Optional[UnitCatalog] = None) -> Optional[float]:
    """Radius of the inner boundary in meters, ``None`` when there is none."""

    if boundary is None:
        return None
    catalog = catalog if catalog is not None else DEFAULT_CATALOG
    return float(boundary.radius) * catalog.unit_factor(boundary.units)


class BoundaryMasker:
    """Drop or blank rows whose position lies inside a sphere of radius R."""

    def mask(
        self,
        table: Table,
        inner_radius: Optional[float],
        remove_rows: bool = False,
        skip_leading_columns: int = 0,
    ) -> Table:
        """Mask ``table`` in place and return it.

        The three columns starting at ``skip_leading_columns`` hold x, y and z
        in meters.  Rows with ``x² + y² + z² < R²`` are removed when
        ``remove_rows`` is set; otherwise every column after z is set to the
        missing-value sentinel.  Comment lines are never touched.
        """

        if inner_radius is None or len(table) == 0:
            return table
        if len(table.columns) < skip_leading_columns + 3:
            raise EngineFailure(
                f"cannot mask a {len(table.columns)}-column table with positions at column {skip_leading_columns}"
            )
        xyz = table.frame.iloc[:, skip_leading_columns : skip_leading_columns + 3].to_numpy(dtype=float)
        inside = np.einsum("ij,ij->i", xyz, xyz) < float(inner_radius) ** 2
        count = int(inside.sum())
        if count == 0:
            return table
        if remove_rows:
            table.frame = table.frame.loc[~inside].reset_index(drop=True)
        else:
            value_columns = table.columns[skip_leading_columns + 3 :]
            if value_columns:
                table.frame.loc[inside, value_columns] = MISSING_SENTINEL
        logger.info(
            "%s %d rows inside the inner boundary (R=%g m)",
            "Removed" if remove_rows else "Masked",
            count,
            inner_radius,
        )
        return table


__all__ = ["inner_radius_m", "BoundaryMasker"]
