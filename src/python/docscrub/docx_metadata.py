"""
Document-level metadata stages: core properties, extended (app) properties,
document settings and custom XML parts.

Each stage takes the loaded :class:`DocxPackage` plus the run options, mutates
only the parts it owns, commits them, and returns how many values it changed.
"""

import logging
import posixpath
from typing import Any, Callable, List, Tuple

from docx.opc.constants import CONTENT_TYPE as CT
from docx.opc.constants import RELATIONSHIP_TARGET_MODE as RTM
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml.ns import qn
from lxml import etree

from .docx_package import DocxPackage, resolve_target
from .errors import MutationFailure
from .options import AnonymizerOptions

logger = logging.getLogger(__name__)

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
EP_NS = "http://schemas.openxmlformats.org/officeDocument/2006/extended-properties"
VT_NS = "http://schemas.openxmlformats.org/officeDocument/2006/docPropsVTypes"

# Some producers still write the transitional-era core properties type
LEGACY_CORE_PROPERTIES_RT = (
    "http://schemas.openxmlformats.org/officedocument/2006/relationships/metadata/core-properties"
)

# Removed when they hold a value
CORE_CLEARED_TAGS = {
    qn("dc:creator"),
    qn("cp:lastModifiedBy"),
    qn("cp:lastPrinted"),
    qn("dc:title"),
    qn("dc:subject"),
    qn("dc:description"),
    qn("cp:keywords"),
    qn("cp:revision"),
}
# Kept but reset to the epoch
CORE_RESET_TAGS = {
    qn("dcterms:created"),
    qn("dcterms:modified"),
}

APP_PART = "docProps/app.xml"
SETTINGS_FILENAME = "settings.xml"

# Elements allowed before w:removePersonalInformation in CT_Settings
PRIVACY_MARKER_PREDECESSORS = (qn("w:writeProtection"), qn("w:view"), qn("w:zoom"))


def _has_value(el) -> bool:
    return bool((el.text or "").strip()) or len(el) > 0


def _unused_part_name(package: DocxPackage, preferred: str) -> str:
    if not package.has_part(preferred):
        return preferred
    stem, ext = posixpath.splitext(preferred)
    idx = 1
    while package.has_part(f"{stem}{idx}{ext}"):
        idx += 1
    return f"{stem}{idx}{ext}"


def _provide_xml_part(package: DocxPackage, source: str, reltype: str, preferred: str,
                      content_type: str, new_root: Callable[[], Any]) -> Tuple[str, Any, int]:
    """Find the part ``source`` relates to by ``reltype``, providing it when absent.

    Returns ``(name, root, changed)`` where ``changed`` counts the repairs made
    to get there (a new root, a new part or a new relationship).
    """
    name = package.related_part_name(source, reltype)
    if name is not None:
        root = package.read_xml(name)
        if root is None:
            return name, new_root(), 1
        return name, root, 0

    # Relationship survives, its target does not
    name = package.dangling_part_name(source, reltype)
    if name is not None:
        root = new_root()
        package.add_xml_part(name, content_type, root)
        logger.debug(f"Restored missing part {name} behind an existing relationship")
        return name, root, 1

    # Part survives, its relationship does not
    if package.has_part(preferred) and package.content_type(preferred) == content_type:
        package.relate_part(source, preferred, reltype)
        root = package.read_xml(preferred)
        if root is None:
            root = new_root()
        return preferred, root, 1

    name = _unused_part_name(package, preferred)
    root = new_root()
    package.create_xml_part(source, name, reltype, content_type, root)
    return name, root, 1


# ----------------------------------------------------------------------
# Core properties (docProps/core.xml)
# ----------------------------------------------------------------------

def scrub_core_properties(package: DocxPackage, options: AnonymizerOptions) -> int:
    """Clear identity fields and reset created/modified to the epoch.

    A package without a core-properties part is left as is.
    """
    name = package.related_part_name("", RT.CORE_PROPERTIES)
    if name is None:
        name = package.related_part_name("", LEGACY_CORE_PROPERTIES_RT)
    if name is None:
        logger.debug("No core properties part; nothing to scrub")
        return 0

    root = package.read_xml(name)
    if root is None:
        return 0
    if root.tag != qn("cp:coreProperties"):
        raise MutationFailure(f"Unexpected root element in {name}", str(root.tag))

    changed = 0
    for child in list(root):
        if child.tag in CORE_CLEARED_TAGS:
            if _has_value(child):
                root.remove(child)
                changed += 1
        elif child.tag in CORE_RESET_TAGS:
            if child.text != options.epoch or len(child):
                for grandchild in list(child):
                    child.remove(grandchild)
                child.text = options.epoch
                changed += 1

    if changed:
        package.commit_xml(name, root)
    logger.debug(f"Core properties: {changed} value(s) scrubbed")
    return changed


# ----------------------------------------------------------------------
# Extended properties (docProps/app.xml)
# ----------------------------------------------------------------------

def _new_extended_properties_root():
    return etree.Element(f"{{{EP_NS}}}Properties", nsmap={None: EP_NS, "vt": VT_NS})


def scrub_extended_properties(package: DocxPackage, options: AnonymizerOptions) -> int:
    name, root, changed = _provide_xml_part(
        package, "", RT.EXTENDED_PROPERTIES, APP_PART,
        CT.OFC_EXTENDED_PROPERTIES, _new_extended_properties_root,
    )

    if root.tag != f"{{{EP_NS}}}Properties":
        raise MutationFailure(f"Unexpected root element in {name}", str(root.tag))

    ns = {"ep": EP_NS}

    for el in root.findall("ep:Template", namespaces=ns):
        root.remove(el)
        changed += 1

    for el in root.findall("ep:TotalTime", namespaces=ns):
        if el.text != "0" or len(el):
            for child in list(el):
                el.remove(child)
            el.text = "0"
            changed += 1

    for tag in ("Company", "Manager"):
        for el in root.findall(f"ep:{tag}", namespaces=ns):
            if el.text or len(el):
                for child in list(el):
                    el.remove(child)
                el.text = ""
                changed += 1

    if changed:
        package.commit_xml(name, root)
    logger.debug(f"Extended properties: {changed} change(s) in {name}")
    return changed


# ----------------------------------------------------------------------
# Document settings (word/settings.xml)
# ----------------------------------------------------------------------

def _new_settings_root():
    return etree.Element(qn("w:settings"), nsmap={"w": W_NS})


def _privacy_marker_index(root) -> int:
    index = 0
    for pos, child in enumerate(root):
        if child.tag in PRIVACY_MARKER_PREDECESSORS:
            index = pos + 1
    return index


def normalize_settings(package: DocxPackage, options: AnonymizerOptions) -> int:
    """Make sure w:removePersonalInformation is set once and no template is attached."""
    main = package.main_document
    name, root, changed = _provide_xml_part(
        package, main, RT.SETTINGS, posixpath.join(posixpath.dirname(main), SETTINGS_FILENAME),
        CT.WML_SETTINGS, _new_settings_root,
    )

    if root.tag != qn("w:settings"):
        raise MutationFailure(f"Unexpected root element in {name}", str(root.tag))

    markers = root.findall(qn("w:removePersonalInformation"))
    if not markers:
        root.insert(_privacy_marker_index(root), root.makeelement(qn("w:removePersonalInformation")))
        changed += 1
    for extra in markers[1:]:
        root.remove(extra)
        changed += 1

    for template in root.findall(qn("w:attachedTemplate")):
        rel_id = template.get(qn("r:id"))
        root.remove(template)
        changed += 1
        # The relationship target is where the template path actually lives
        if rel_id and package.drop_relationship(name, rel_id) is not None:
            logger.debug(f"Dropped attached template relationship {rel_id}")

    if changed:
        package.commit_xml(name, root)
    logger.debug(f"Settings: {changed} change(s) in {name}")
    return changed


# ----------------------------------------------------------------------
# Custom XML parts (customXml/*)
# ----------------------------------------------------------------------

def _custom_xml_parts(package: DocxPackage) -> List[str]:
    doomed: List[str] = []
    for source in ("", package.main_document):
        for name in package.related_part_names(source, RT.CUSTOM_XML):
            if name not in doomed:
                doomed.append(name)
            # itemProps and anything else hanging off the item
            for rel in package.relationships(name):
                if rel.get("TargetMode") == RTM.EXTERNAL:
                    continue
                target = resolve_target(name, rel.get("Target") or "")
                if package.has_part(target) and target not in doomed:
                    doomed.append(target)
    for name in package.part_names:
        if name.lower().startswith("customxml/") and name not in doomed:
            doomed.append(name)
    return doomed


def remove_custom_xml(package: DocxPackage, options: AnonymizerOptions) -> int:
    removed = 0
    for name in _custom_xml_parts(package):
        if not package.has_part(name):
            # already gone with the item it belonged to
            continue
        package.remove_part(name)
        if not name.endswith(".rels") and not name.endswith("/"):
            removed += 1
    logger.debug(f"Custom XML: {removed} part(s) removed")
    return removed
