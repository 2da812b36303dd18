"""Minimal VOTable 1.2 reader and writer.

Only the subset used by the service is supported: a single RESOURCE with a
single TABLE whose data are serialised as TABLEDATA.  Namespaces are
ignored when reading, so 1.1, 1.2 and namespace-less documents all load.
"""
from __future__ import annotations

import datetime as dt
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from ..errors import InputFormatError, ScratchIOError

logger = logging.getLogger(__name__)

VOTABLE_VERSION = "1.2"
VOTABLE_NS = "http://www.ivoa.net/xml/VOTable/v1.2"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"


@dataclass
class VOField:
    """Column metadata of a VOTable."""

    name: str
    datatype: str = "float"
    unit: str = ""
    ucd: str = ""
    description: str = ""
    arraysize: str = ""
    xtype: str = ""


@dataclass
class VOParam:
    name: str
    value: str
    datatype: str = "float"
    unit: str = ""
    ucd: str = ""
    arraysize: str = ""


@dataclass
class VOTableDocument:
    """Contents of a single-table VOTable."""

    fields: List[VOField]
    rows: List[List[str]]
    params: List[VOParam] = field(default_factory=list)
    name: str = ""
    description: str = ""


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(element: ET.Element, name: str) -> List[ET.Element]:
    return [child for child in element if isinstance(child.tag, str) and _local(child.tag) == name]


def _description(element: ET.Element) -> str:
    nodes = _children(element, "DESCRIPTION")
    if not nodes:
        return ""
    return "".join(nodes[0].itertext()).strip()


def _param_from(element: ET.Element) -> VOParam:
    return VOParam(
        name=element.get("name", ""),
        value=element.get("value", ""),
        datatype=element.get("datatype", "float"),
        unit=element.get("unit", ""),
        ucd=element.get("ucd", ""),
        arraysize=element.get("arraysize", ""),
    )


def read_votable(path: Path) -> VOTableDocument:
    """Read a single-resource, single-table VOTable."""

    try:
        root = ET.parse(str(path)).getroot()
    except (ET.ParseError, OSError) as exc:
        raise InputFormatError(f"Could not read VOTable file: {exc}") from exc
    if _local(root.tag) != "VOTABLE":
        raise InputFormatError(f"Could not read VOTable file: root element is {_local(root.tag)}")

    resources = _children(root, "RESOURCE")
    if len(resources) != 1:
        raise InputFormatError(f"Could not read VOTable file: expected one RESOURCE, found {len(resources)}")
    tables = _children(resources[0], "TABLE")
    if len(tables) != 1:
        raise InputFormatError(f"Could not read VOTable file: expected one TABLE, found {len(tables)}")
    table = tables[0]

    fields = [
        VOField(
            name=element.get("name", ""),
            datatype=element.get("datatype", "float"),
            unit=element.get("unit", ""),
            ucd=element.get("ucd", ""),
            description=_description(element),
            arraysize=element.get("arraysize", ""),
            xtype=element.get("xtype", ""),
        )
        for element in _children(table, "FIELD")
    ]
    if not fields:
        raise InputFormatError("Could not read VOTable file: the table has no FIELD elements")

    data = _children(table, "DATA")
    tabledata = _children(data[0], "TABLEDATA") if data else []
    if not tabledata:
        raise InputFormatError("Could not read VOTable file: TABLEDATA is missing")

    rows: List[List[str]] = []
    for index, tr in enumerate(_children(tabledata[0], "TR")):
        cells = [(td.text or "").strip() for td in _children(tr, "TD")]
        if len(cells) != len(fields):
            raise InputFormatError(
                f"Could not read VOTable file: row {index} has {len(cells)} cells for {len(fields)} fields"
            )
        rows.append(cells)

    params = [_param_from(element) for element in _children(resources[0], "PARAM")]
    params.extend(_param_from(element) for element in _children(table, "PARAM"))
    return VOTableDocument(
        fields=fields,
        rows=rows,
        params=params,
        name=table.get("name", ""),
        description=_description(table),
    )


def _field_element(parent: ET.Element, index: int, vo_field: VOField) -> None:
    attrs = {"ID": f"col{index}", "name": vo_field.name, "datatype": vo_field.datatype}
    for key in ("unit", "ucd", "arraysize", "xtype"):
        value = getattr(vo_field, key)
        if value:
            attrs[key] = value
    element = ET.SubElement(parent, "FIELD", attrs)
    if vo_field.description:
        ET.SubElement(element, "DESCRIPTION").text = vo_field.description


def write_votable(
    path: Path,
    fields: Sequence[VOField],
    rows: Iterable[Sequence[str]],
    *,
    table_name: str = "",
    description: str = "",
    params: Sequence[VOParam] = (),
    writer: Optional[str] = None,
) -> Path:
    """Serialise pre-formatted cells as a VOTable 1.2 document."""

    root = ET.Element(
        "VOTABLE",
        {
            "version": VOTABLE_VERSION,
            "xmlns": VOTABLE_NS,
            "xmlns:xsi": XSI_NS,
            "xsi:schemaLocation": f"{VOTABLE_NS} {VOTABLE_NS}",
        },
    )
    stamp = dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()
    root.append(ET.Comment(f" VOTable written by {writer or 'plasmagrid'} at {stamp} "))
    resource = ET.SubElement(root, "RESOURCE")
    rows = [list(row) for row in rows]
    table = ET.SubElement(resource, "TABLE", {"name": table_name, "nrows": str(len(rows))})
    if description:
        ET.SubElement(table, "DESCRIPTION").text = "\n" + description.rstrip() + "\n"
    for param in params:
        attrs = {"name": param.name, "datatype": param.datatype, "value": param.value}
        for key in ("unit", "ucd", "arraysize"):
            value = getattr(param, key)
            if value:
                attrs[key] = value
        ET.SubElement(table, "PARAM", attrs)
    for index, vo_field in enumerate(fields, start=1):
        _field_element(table, index, vo_field)
    tabledata = ET.SubElement(ET.SubElement(table, "DATA"), "TABLEDATA")
    for row in rows:
        if len(row) != len(fields):
            raise ValueError(f"row has {len(row)} cells for {len(fields)} fields")
        tr = ET.SubElement(tabledata, "TR")
        for cell in row:
            ET.SubElement(tr, "TD").text = cell

    ET.indent(root)
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        ET.ElementTree(root).write(str(path), encoding="utf-8", xml_declaration=True)
    except OSError as exc:
        raise ScratchIOError(f"Could not write VOTable {path}: {exc}") from exc
    logger.debug("Wrote VOTable %s (%d rows, %d fields)", path, len(rows), len(fields))
    return path


__all__ = [
    "VOTABLE_VERSION",
    "VOField",
    "VOParam",
    "VOTableDocument",
    "read_votable",
    "write_votable",
]
