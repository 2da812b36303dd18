"""Assemble interpolation results into caller-facing files.

Three formats are produced from the same result :class:`~plasmagrid.table.Table`:

``ASCII``
    Whitespace separated text.  Time and position columns are copied
    verbatim from the caller's input; variable columns follow in the order
    the caller requested them.
``VOTable``
    Self-describing XML table with unit, UCD and description per field and
    a provenance block.  Missing values are written as ``NaN``.
``netCDF``
    CDL text compiled by ``ncgen``; missing values keep the ``-999``
    sentinel and are flagged by the ``missing_value`` attribute.

All three keep the row count and row order of the result table.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
from pydantic import BaseModel

from ..catalog import UnitCatalog
from ..constants import INTERPOLATION_LINEAR, MISSING_SENTINEL
from ..errors import EngineFailure, RequestError, ScratchIOError, UnknownVariable
from ..names import DEFAULT_TRANSLATOR, NameTranslator
from ..provenance import description_block
from ..schema import FormatCompilerConfig, OutputConfig, SimulationRun
from ..scratch import ScratchSpace
from ..table import Table, format_value
from .cdl import CDLVariable, compile_cdl, render_cdl, write_cdl
from .pointset import PointSet
from .votable import VOField, VOParam, write_votable

logger = logging.getLogger(__name__)

OUTPUT_EXTENSIONS: Dict[str, str] = {"ASCII": ".txt", "VOTable": ".vot", "netCDF": ".nc"}

_POSITION_SYMBOLS = ("x", "y", "z")
_SPECTRAL_PREFIX = "Ebin"


@dataclass
class OutputContext:
    """Everything the writers need besides the result rows."""

    run: SimulationRun
    variables: List[str]
    description_header: str = ""
    request: BaseModel | Mapping[str, Any] | None = None
    interpolation_method: str = INTERPOLATION_LINEAR
    params: List[VOParam] = field(default_factory=list)
    extra_description: Dict[str, Any] = field(default_factory=dict)


def _is_spectral(name: str) -> bool:
    return name.startswith(_SPECTRAL_PREFIX)


def _format_float(value: float) -> str:
    return f"{float(value):e}"


class OutputAssembler:
    """Write result tables to the data directory in the requested format."""

    def __init__(
        self,
        scratch: ScratchSpace,
        output: Optional[OutputConfig] = None,
        compiler: Optional[FormatCompilerConfig] = None,
        translator: Optional[NameTranslator] = None,
        catalog: Optional[UnitCatalog] = None,
    ) -> None:
        self.scratch = scratch
        self.output = output if output is not None else OutputConfig()
        self.compiler = compiler if compiler is not None else FormatCompilerConfig()
        self.translator = translator if translator is not None else DEFAULT_TRANSLATOR
        self.catalog = catalog if catalog is not None else self.translator.catalog

    # ------------------------------------------------------------------
    # dispatch
    # ------------------------------------------------------------------

    def assemble(
        self,
        result: Table,
        point_set: Optional[PointSet],
        output_format: str,
        context: OutputContext,
    ) -> Path:
        """Write ``result`` as ``output_format`` and return the final file."""

        if output_format not in OUTPUT_EXTENSIONS:
            raise RequestError(f"Undefined output format: {output_format}")
        if point_set is not None and len(point_set) != len(result):
            raise EngineFailure(
                f"result has {len(result)} rows but the input has {len(point_set)} samples"
            )
        target = self._final_path(output_format)
        if output_format == "ASCII":
            self.write_plain(result, point_set, context, target)
        elif output_format == "VOTable":
            self.write_votable(result, point_set, context, target)
        else:
            self.write_netcdf(result, point_set, context, target)
        # a failed write leaves the file tracked, so scratch cleanup removes it
        self.scratch.keep(target)
        logger.info("Assembled %d rows as %s into %s", len(result), output_format, target.name)
        return target

    def _final_path(self, output_format: str) -> Path:
        return self.scratch.new_path(OUTPUT_EXTENSIONS[output_format], directory=self.output.data_dir)

    # ------------------------------------------------------------------
    # column lookup
    # ------------------------------------------------------------------

    def _variable_columns(self, result: Table, keys: Sequence[str]) -> List[str]:
        columns = []
        for key in keys:
            symbol = self.translator.symbol(key)
            if symbol not in result.columns:
                raise EngineFailure(f"engine output lacks requested variable {key} ({symbol})")
            columns.append(symbol)
        return columns

    def _symbol_description(self, symbol: str, run: SimulationRun) -> str:
        try:
            key = self.translator.key_for_symbol(symbol)
        except UnknownVariable:
            key = None
        if key is not None and run.variables.get(key):
            return run.variables[key]
        if symbol in self.catalog.variables:
            return self.catalog.variables[symbol].description
        return ""

    def _vo_field(self, symbol: str, run: SimulationRun, dtype: np.dtype) -> VOField:
        name = self.translator.field_name(symbol)
        if symbol in self.catalog.variables:
            variable = self.catalog.variables[symbol]
            return VOField(
                name=name,
                datatype="float",
                unit=variable.unit,
                ucd=variable.ucd,
                description=self._symbol_description(symbol, run),
            )
        if np.issubdtype(dtype, np.integer):
            return VOField(name=name, datatype="int", ucd="meta.id")
        return VOField(name=name, datatype="float")

    # ------------------------------------------------------------------
    # writers
    # ------------------------------------------------------------------

    def write_plain(
        self,
        result: Table,
        point_set: Optional[PointSet],
        context: OutputContext,
        target: Path,
    ) -> Path:
        """Columnar text: ``#[t ]x y z <keys>`` then one line per sample."""

        value_columns = self._variable_columns(result, context.variables)
        has_time = point_set is not None and point_set.has_time
        header = "#" + ("t " if has_time else "") + "x y z " + " ".join(context.variables)

        if point_set is not None:
            leading = list(point_set.position_columns)
            if has_time:
                leading.insert(0, point_set.time_column)
            prefix = point_set.original.frame[leading].astype(str).to_numpy()
        else:
            prefix = np.array(
                [[format_value(v) for v in row] for row in result.frame[list(_POSITION_SYMBOLS)].to_numpy(dtype=float)],
                dtype=object,
            ).reshape(len(result), 3)

        values = result.frame[value_columns].to_numpy(dtype=float)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("w", encoding="utf-8") as fh:
                fh.write(header.rstrip() + "\n")
                for lead, row in zip(prefix, values):
                    cells = [str(cell) for cell in lead] + [format_value(v) for v in row]
                    fh.write(" ".join(cells) + "\n")
        except OSError as exc:
            raise ScratchIOError(f"Could not write {target}: {exc}") from exc
        return target

    def write_votable(
        self,
        result: Table,
        point_set: Optional[PointSet],
        context: OutputContext,
        target: Path,
    ) -> Path:
        run = context.run
        fields: List[VOField] = []
        columns: List[List[str]] = []

        if point_set is not None and point_set.has_time:
            fields.append(VOField(name="Time", datatype="char", arraysize="*", ucd="time.epoch", xtype="dateTime"))
            columns.append(point_set.time_tokens)

        spectral = [name for name in result.columns if _is_spectral(name)]
        for name in result.columns:
            if _is_spectral(name):
                continue
            data = result.frame[name]
            fields.append(self._vo_field(name, run, data.dtype))
            if np.issubdtype(data.dtype, np.integer):
                columns.append([str(int(v)) for v in data])
                continue
            values = data.to_numpy(dtype=float)
            blank = name not in _POSITION_SYMBOLS
            columns.append(
                ["NaN" if blank and np.isclose(v, MISSING_SENTINEL) else _format_float(v) for v in values]
            )

        if spectral:
            variable = self.catalog.variable("Ebin0")
            fields.append(
                VOField(
                    name=self.translator.field_name("Ebin0"),
                    datatype="float",
                    unit=variable.unit,
                    ucd=variable.ucd,
                    arraysize=str(len(spectral)),
                    description=self._symbol_description("Ebin0", run),
                )
            )
            block = result.frame[spectral].to_numpy(dtype=float)
            columns.append(
                [
                    " ".join("NaN" if np.isclose(v, MISSING_SENTINEL) else _format_float(v) for v in row)
                    for row in block
                ]
            )

        if point_set is not None and point_set.fields:
            by_name = {vo_field.name: vo_field for vo_field in point_set.fields}
            for name in point_set.extra_columns:
                fields.append(by_name[name])
                columns.append([str(v) for v in point_set.original.column(name)])

        rows = [list(cells) for cells in zip(*columns)] if columns else []
        description = description_block(
            context.description_header or f"Interpolated values of a {run.title} simulation run",
            run,
            context.request,
            context.extra_description,
        )
        return write_votable(
            target,
            fields,
            rows,
            table_name=run.table_name,
            description=description,
            params=context.params,
        )

    def write_netcdf(
        self,
        result: Table,
        point_set: Optional[PointSet],
        context: OutputContext,
        target: Path,
    ) -> Path:
        run = context.run
        if any(_is_spectral(name) for name in result.columns):
            raise RequestError("Undefined output format: netCDF is not available for spectra")
        variables = []
        for name in result.columns:
            unit = self.catalog.variables[name].unit if name in self.catalog.variables else ""
            field_name = self.translator.field_name(name)
            description = self._symbol_description(name, run)
            variables.append(
                CDLVariable(
                    name=field_name,
                    values=result.frame[name].to_numpy(dtype=float),
                    units=unit,
                    long_name=f"{description}, {field_name}" if description else field_name,
                )
            )
        text = render_cdl(
            target.stem,
            variables,
            planet_name=run.planet_name,
            planet_radius=run.planet_radius,
            planet_radius_units=run.planet_radius_units,
            global_attributes={
                "Title": run.output_description or run.title,
                "SimulationModel": run.model_resource_id,
                "SimulationRun": run.run_resource_id,
                "NumericalOutput": run.resource_id,
                "InterpolationMethod": context.interpolation_method,
            },
            time_tokens=point_set.time_tokens if point_set is not None and point_set.has_time else None,
        )
        cdl_path = write_cdl(self.scratch.new_path(".cdl"), text)
        return compile_cdl(cdl_path, target, self.compiler)


__all__ = ["OUTPUT_EXTENSIONS", "OutputContext", "OutputAssembler"]
