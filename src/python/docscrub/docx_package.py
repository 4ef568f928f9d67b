"""
Zip-level access to a WordprocessingML package.

Parts are kept as the raw bytes read from the container and are only parsed
when a stage asks for them. On save, every entry nobody committed is written
back with its original bytes and ZipInfo, so untouched parts stay
byte-identical; committed parts are re-serialized with lxml.
"""

from __future__ import annotations

import copy
import logging
import posixpath
import re
import zipfile
import zlib
from io import BytesIO
from typing import Dict, List, Optional, Set

from docx.opc.constants import RELATIONSHIP_TARGET_MODE as RTM
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from lxml import etree

from .errors import InvalidPackage, MissingRequiredPart, ResourceLimitExceeded
from .options import ResourceLimits

logger = logging.getLogger(__name__)

CT_NS = "http://schemas.openxmlformats.org/package/2006/content-types"
PR_NS = "http://schemas.openxmlformats.org/package/2006/relationships"

CONTENT_TYPES_PART = "[Content_Types].xml"
PACKAGE_RELS_PART = "_rels/.rels"
RELS_CONTENT_TYPE = "application/vnd.openxmlformats-package.relationships+xml"

# Timestamp for entries the package did not have before
NEW_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)

_RID_PATTERN = re.compile(r"^rId(\d+)$")


def _safe_fromstring(xml_bytes: bytes):
    """Safe XML parsing that disables entity resolution and network access."""
    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)
    return etree.fromstring(xml_bytes, parser)


def serialize_xml(root) -> bytes:
    return etree.tostring(root, encoding="UTF-8", xml_declaration=True, standalone=True)


def rels_part_for(source: str) -> str:
    """Name of the relationships part owned by ``source`` ("" is the package itself)."""
    if not source:
        return PACKAGE_RELS_PART
    directory, filename = posixpath.split(source)
    return posixpath.join(directory, "_rels", f"{filename}.rels")


def source_for_rels(rels_name: str) -> Optional[str]:
    """Inverse of :func:`rels_part_for`; ``None`` when the name is not a rels part."""
    if rels_name == PACKAGE_RELS_PART:
        return ""
    directory, filename = posixpath.split(rels_name)
    if posixpath.basename(directory) != "_rels" or not filename.endswith(".rels"):
        return None
    return posixpath.join(posixpath.dirname(directory), filename[: -len(".rels")])


def resolve_target(source: str, target: str) -> str:
    if target.startswith("/"):
        return posixpath.normpath(target.lstrip("/"))
    base_dir = posixpath.dirname(source)
    return posixpath.normpath(posixpath.join(base_dir, target))


class DocxPackage:
    """One loaded container: entries by name, their relationships and content types."""

    def __init__(self, source: bytes, infos: List[zipfile.ZipInfo], blobs: Dict[str, bytes]):
        self._source = source
        self._order = [info.filename for info in infos]
        self._infos = {info.filename: info for info in infos}
        self._blobs = blobs
        self._xml: Dict[str, etree._Element] = {}
        self._dirty: Set[str] = set()
        self._created: List[str] = []
        self._removed: List[str] = []
        self.main_document = self._locate_main_document()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, data: bytes, limits: Optional[ResourceLimits] = None) -> "DocxPackage":
        limits = limits or ResourceLimits()
        if len(data) > limits.max_input_bytes:
            raise ResourceLimitExceeded(
                f"Input is {len(data)} bytes; limit is {limits.max_input_bytes}"
            )

        try:
            with zipfile.ZipFile(BytesIO(data), "r") as zin:
                infos = zin.infolist()
                cls._check_limits(infos, limits)
                blobs: Dict[str, bytes] = {}
                for info in infos:
                    if info.filename in blobs:
                        raise InvalidPackage(f"Duplicate container entry: {info.filename}")
                    blobs[info.filename] = zin.read(info)
        except zipfile.BadZipFile as exc:
            raise InvalidPackage("Invalid DOCX container (ZIP)", str(exc), exc) from exc
        except (zlib.error, NotImplementedError, RuntimeError, EOFError) as exc:
            raise InvalidPackage("Unreadable entry in DOCX container", str(exc), exc) from exc

        package = cls(data, infos, blobs)
        logger.debug(f"Opened package with {len(blobs)} parts; main document {package.main_document}")
        return package

    @staticmethod
    def _check_limits(infos: List[zipfile.ZipInfo], limits: ResourceLimits) -> None:
        if len(infos) > limits.max_entries:
            raise ResourceLimitExceeded(
                f"Container has {len(infos)} entries; limit is {limits.max_entries}"
            )
        total = 0
        for info in infos:
            if info.file_size > limits.max_part_bytes:
                raise ResourceLimitExceeded(
                    f"Entry {info.filename} expands to {info.file_size} bytes; "
                    f"limit is {limits.max_part_bytes}"
                )
            total += info.file_size
        if total > limits.max_total_bytes:
            raise ResourceLimitExceeded(
                f"Container expands to {total} bytes; limit is {limits.max_total_bytes}"
            )

    def _locate_main_document(self) -> str:
        if CONTENT_TYPES_PART not in self._blobs:
            raise InvalidPackage("Package has no [Content_Types].xml")
        if PACKAGE_RELS_PART not in self._blobs:
            raise InvalidPackage("Package has no _rels/.rels")
        # Parse eagerly so structural damage surfaces before any stage runs
        if self.read_xml(CONTENT_TYPES_PART) is None:
            raise InvalidPackage("Package has an empty [Content_Types].xml")

        main = self.related_part_name("", RT.OFFICE_DOCUMENT)
        if main is None:
            raise MissingRequiredPart("Package has no main document part")
        if self.read_xml(main) is None:
            raise MissingRequiredPart(f"Main document part {main} is empty")
        return main

    # ------------------------------------------------------------------
    # Parts
    # ------------------------------------------------------------------

    @property
    def part_names(self) -> List[str]:
        return [name for name in self._order if name in self._blobs] + list(self._created)

    def has_part(self, name: str) -> bool:
        return name in self._blobs

    def blob(self, name: str) -> Optional[bytes]:
        """Current bytes of a part (re-serialized if it was committed)."""
        if name not in self._blobs:
            return None
        if name in self._dirty:
            return serialize_xml(self._xml[name])
        return self._blobs[name]

    def read_xml(self, name: str):
        """Parsed root of ``name``; ``None`` when the part is absent or empty."""
        if name not in self._blobs:
            return None
        if name in self._xml:
            return self._xml[name]
        data = self._blobs[name]
        if not data.strip():
            return None
        try:
            root = _safe_fromstring(data)
        except etree.XMLSyntaxError as exc:
            raise InvalidPackage(f"Malformed XML in {name}", str(exc), exc) from exc
        self._xml[name] = root
        return root

    def commit_xml(self, name: str, root) -> None:
        if name not in self._blobs:
            raise KeyError(f"No part named {name}")
        self._xml[name] = root
        self._dirty.add(name)

    def create_xml_part(self, source: str, name: str, reltype: str, content_type: str, root) -> str:
        """Add a new XML part, declare its content type and relate it from ``source``.

        Returns the id of the new relationship.
        """
        self.add_xml_part(name, content_type, root)
        rel_id = self._add_relationship(source, reltype, name)
        logger.debug(f"Created part {name} related from {source or 'package'} as {rel_id}")
        return rel_id

    def add_xml_part(self, name: str, content_type: str, root) -> None:
        """Add a new XML part and declare its content type without relating it.

        Used when a relationship to ``name`` already exists but the part does not.
        """
        if name in self._blobs:
            raise ValueError(f"Part {name} already exists")
        self._add_new_part(name, root)
        self._declare_content_type(name, content_type)

    def relate_part(self, source: str, name: str, reltype: str) -> str:
        """Relate an existing part from ``source``; returns the new relationship id."""
        if name not in self._blobs:
            raise KeyError(f"No part named {name}")
        rel_id = self._add_relationship(source, reltype, name)
        logger.debug(f"Related existing part {name} from {source or 'package'} as {rel_id}")
        return rel_id

    def remove_part(self, name: str) -> None:
        """Drop ``name``, its own relationships part, its content-type override
        and every relationship in the package that targets it."""
        if name not in self._blobs:
            return
        self._forget(name)

        own_rels = rels_part_for(name)
        if own_rels in self._blobs:
            self._forget(own_rels)

        types_root = self.read_xml(CONTENT_TYPES_PART)
        part_name = f"/{name}".lower()
        changed = False
        for override in list(types_root.iter(f"{{{CT_NS}}}Override")):
            if (override.get("PartName") or "").lower() == part_name:
                types_root.remove(override)
                changed = True
        if changed:
            self.commit_xml(CONTENT_TYPES_PART, types_root)

        for rels_name in [n for n in self.part_names if n.endswith(".rels")]:
            source = source_for_rels(rels_name)
            if source is None:
                continue
            rels_root = self.read_xml(rels_name)
            if rels_root is None:
                continue
            changed = False
            for rel in list(rels_root.iter(f"{{{PR_NS}}}Relationship")):
                if rel.get("TargetMode") == RTM.EXTERNAL:
                    continue
                if resolve_target(source, rel.get("Target") or "") == name:
                    rels_root.remove(rel)
                    changed = True
            if changed:
                self.commit_xml(rels_name, rels_root)
        logger.debug(f"Removed part {name}")

    def _forget(self, name: str) -> None:
        del self._blobs[name]
        self._xml.pop(name, None)
        self._dirty.discard(name)
        if name in self._created:
            self._created.remove(name)
        else:
            self._removed.append(name)

    def _add_new_part(self, name: str, root) -> None:
        self._blobs[name] = b""
        self._xml[name] = root
        self._dirty.add(name)
        if name in self._removed:
            # back under a name the container already had; saved in place
            self._removed.remove(name)
        else:
            self._created.append(name)

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def relationships(self, source: str) -> List:
        root = self.read_xml(rels_part_for(source))
        if root is None:
            return []
        return list(root.iter(f"{{{PR_NS}}}Relationship"))

    def related_part_names(self, source: str, reltype: str) -> List[str]:
        """Present parts targeted from ``source`` by relationships of ``reltype``."""
        names: List[str] = []
        for rel in self.relationships(source):
            if rel.get("Type") != reltype or rel.get("TargetMode") == RTM.EXTERNAL:
                continue
            name = resolve_target(source, rel.get("Target") or "")
            if name in self._blobs and name not in names:
                names.append(name)
        return names

    def related_part_name(self, source: str, reltype: str) -> Optional[str]:
        names = self.related_part_names(source, reltype)
        return names[0] if names else None

    def dangling_part_name(self, source: str, reltype: str) -> Optional[str]:
        """First internal ``reltype`` target of ``source`` missing from the container."""
        for rel in self.relationships(source):
            if rel.get("Type") != reltype or rel.get("TargetMode") == RTM.EXTERNAL:
                continue
            name = resolve_target(source, rel.get("Target") or "")
            if name in ("", ".") or name.startswith("../") or name.endswith("/"):
                continue
            if name not in self._blobs:
                return name
        return None

    def drop_relationship(self, source: str, rel_id: str) -> Optional[str]:
        """Remove relationship ``rel_id`` from ``source``; returns its target, if it existed."""
        rels_name = rels_part_for(source)
        root = self.read_xml(rels_name)
        if root is None:
            return None
        for rel in root.iter(f"{{{PR_NS}}}Relationship"):
            if rel.get("Id") == rel_id:
                root.remove(rel)
                self.commit_xml(rels_name, root)
                return rel.get("Target")
        return None

    def _add_relationship(self, source: str, reltype: str, target_part: str) -> str:
        rels_name = rels_part_for(source)
        root = self.read_xml(rels_name)
        if root is None:
            root = etree.Element(f"{{{PR_NS}}}Relationships", nsmap={None: PR_NS})
            if rels_name in self._blobs:
                self.commit_xml(rels_name, root)
            else:
                self._add_new_part(rels_name, root)
                self._declare_content_type(rels_name, RELS_CONTENT_TYPE)

        used = {rel.get("Id") for rel in root.iter(f"{{{PR_NS}}}Relationship")}
        highest = 0
        for rel_id in used:
            match = _RID_PATTERN.match(rel_id or "")
            if match:
                highest = max(highest, int(match.group(1)))
        new_id = f"rId{highest + 1}"
        while new_id in used:
            highest += 1
            new_id = f"rId{highest + 1}"

        target = posixpath.relpath(target_part, posixpath.dirname(source) or ".")
        etree.SubElement(root, f"{{{PR_NS}}}Relationship", Id=new_id, Type=reltype, Target=target)
        self.commit_xml(rels_name, root)
        return new_id

    # ------------------------------------------------------------------
    # Content types
    # ------------------------------------------------------------------

    def content_type(self, name: str) -> Optional[str]:
        root = self.read_xml(CONTENT_TYPES_PART)
        part_name = f"/{name}".lower()
        for override in root.iter(f"{{{CT_NS}}}Override"):
            if (override.get("PartName") or "").lower() == part_name:
                return override.get("ContentType")
        extension = posixpath.splitext(name)[1].lstrip(".").lower()
        for default in root.iter(f"{{{CT_NS}}}Default"):
            if (default.get("Extension") or "").lower() == extension:
                return default.get("ContentType")
        return None

    def _declare_content_type(self, name: str, content_type: str) -> None:
        if self.content_type(name) == content_type:
            return
        root = self.read_xml(CONTENT_TYPES_PART)
        etree.SubElement(
            root, f"{{{CT_NS}}}Override", PartName=f"/{name}", ContentType=content_type
        )
        self.commit_xml(CONTENT_TYPES_PART, root)

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    @property
    def modified_parts(self) -> List[str]:
        return [name for name in self._order if name in self._dirty]

    @property
    def created_parts(self) -> List[str]:
        return list(self._created)

    @property
    def removed_parts(self) -> List[str]:
        return list(self._removed)

    @property
    def is_modified(self) -> bool:
        return bool(self._dirty or self._removed)

    def save(self) -> bytes:
        if not self.is_modified:
            return self._source

        out = BytesIO()
        with zipfile.ZipFile(out, "w") as zout:
            for name in self._order:
                if name not in self._blobs:
                    continue
                # writestr() fills in sizes and offsets on the info it is given
                info = copy.copy(self._infos[name])
                zout.writestr(info, self.blob(name))
            for name in self._created:
                info = zipfile.ZipInfo(name, date_time=NEW_ENTRY_DATE_TIME)
                info.compress_type = zipfile.ZIP_DEFLATED
                zout.writestr(info, self.blob(name))
        logger.debug(
            f"Saved package: {len(self.modified_parts)} modified, "
            f"{len(self._created)} created, {len(self._removed)} removed"
        )
        return out.getvalue()
