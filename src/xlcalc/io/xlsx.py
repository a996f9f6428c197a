"""Document I/O: load and save ``.xlsx`` workbooks with openpyxl.

openpyxl never writes cached results for formula cells, so a saved file
opened with ``data_only=True`` (or by any reader that trusts cached values)
would show nothing. :func:`embed_cached_values` patches the serialized
worksheet parts so each formula cell carries the value the calculation
engine computed for it.
"""

from __future__ import annotations

import posixpath
import zipfile
from io import BytesIO
from pathlib import Path
from typing import Any
from xml.etree import ElementTree as ET

import openpyxl
from openpyxl.workbook import Workbook

from xlcalc.contracts.common import FileFormatError
from xlcalc.io.fileops import WorkbookLock, atomic_write, backup, fingerprint

MAIN_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
REL_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
PKG_REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"


def load_workbook(path: str | Path) -> Workbook:
    """Load a workbook from disk. Raises FileNotFoundError or FileFormatError."""
    p = Path(path).resolve()
    if not p.exists():
        raise FileNotFoundError(f"Workbook not found: {p}")
    try:
        return openpyxl.load_workbook(str(p))
    except Exception as e:
        raise FileFormatError(f"Cannot open workbook {p}: {e}") from e


def serialize_workbook(wb: Workbook, cached_results: dict[str, dict[str, Any]] | None = None) -> bytes:
    buf = BytesIO()
    wb.save(buf)
    data = buf.getvalue()
    if cached_results:
        data = embed_cached_values(data, cached_results)
    return data


def save_workbook(
    wb: Workbook,
    path: str | Path,
    cached_results: dict[str, dict[str, Any]] | None = None,
    *,
    make_backup: bool = False,
) -> tuple[str, str, str | None]:
    """Write ``wb`` to ``path`` atomically under a sidecar lock.

    Returns ``(resolved_path, fingerprint, backup_path)``.
    """
    target = Path(path).resolve()
    if not target.parent.is_dir():
        raise FileNotFoundError(f"Directory not found: {target.parent}")
    data = serialize_workbook(wb, cached_results)
    with WorkbookLock(target):
        backup_path = backup(target) if make_backup and target.exists() else None
        atomic_write(target, data)
    return str(target), fingerprint(target), backup_path


def _sheet_parts(archive: zipfile.ZipFile) -> dict[str, str]:
    """Map sheet names to their worksheet part names inside the archive."""
    workbook = ET.fromstring(archive.read("xl/workbook.xml"))
    rels = ET.fromstring(archive.read("xl/_rels/workbook.xml.rels"))
    targets: dict[str, str] = {}
    for rel in rels.iter(f"{{{PKG_REL_NS}}}Relationship"):
        target = rel.get("Target", "")
        if target.startswith("/"):
            part = target.lstrip("/")
        else:
            part = posixpath.normpath(posixpath.join("xl", target))
        targets[rel.get("Id", "")] = part
    parts: dict[str, str] = {}
    for sheet in workbook.iter(f"{{{MAIN_NS}}}sheet"):
        rel_id = sheet.get(f"{{{REL_NS}}}id")
        if rel_id in targets:
            parts[sheet.get("name", "")] = targets[rel_id]
    return parts


def _register_namespaces(xml: bytes) -> None:
    for _, (prefix, uri) in ET.iterparse(BytesIO(xml), events=("start-ns",)):
        ET.register_namespace(prefix, uri)


def _cached_text(value: Any) -> tuple[str | None, str]:
    """Return the ``t`` attribute and ``<v>`` text for a cached result."""
    if isinstance(value, bool):
        return "b", "1" if value else "0"
    if isinstance(value, int):
        return None, str(value)
    if isinstance(value, float):
        return None, repr(value)
    text = str(value)
    if text.startswith("#"):
        return "e", text
    return "str", text


def _patch_sheet(xml: bytes, values: dict[str, Any]) -> bytes:
    _register_namespaces(xml)
    root = ET.fromstring(xml)
    for cell in root.iter(f"{{{MAIN_NS}}}c"):
        coord = cell.get("r")
        if coord not in values or cell.find(f"{{{MAIN_NS}}}f") is None:
            continue
        value = values[coord]
        for old in cell.findall(f"{{{MAIN_NS}}}v"):
            cell.remove(old)
        if value is None:
            cell.attrib.pop("t", None)
            continue
        cell_type, text = _cached_text(value)
        if cell_type is None:
            cell.attrib.pop("t", None)
        else:
            cell.set("t", cell_type)
        v = ET.SubElement(cell, f"{{{MAIN_NS}}}v")
        v.text = text
    return ET.tostring(root, encoding="UTF-8", xml_declaration=True)


def embed_cached_values(data: bytes, cached_results: dict[str, dict[str, Any]]) -> bytes:
    """Write cached formula results into a serialized workbook.

    ``cached_results`` maps sheet name -> cell coordinate -> value.
    """
    with zipfile.ZipFile(BytesIO(data)) as src:
        parts = _sheet_parts(src)
        patched: dict[str, bytes] = {}
        for sheet_name, values in cached_results.items():
            part = parts.get(sheet_name)
            if part and values:
                patched[part] = _patch_sheet(src.read(part), values)

        out = BytesIO()
        with zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as dst:
            for info in src.infolist():
                dst.writestr(info, patched.get(info.filename, src.read(info.filename)))
    return out.getvalue()
