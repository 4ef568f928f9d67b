"""Pytest path setup for src-layout imports, plus a synthetic DOCX builder."""

from io import BytesIO
from pathlib import Path
import sys
import zipfile

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PYTHON = REPO_ROOT / "src" / "python"

if str(SRC_PYTHON) not in sys.path:
    sys.path.insert(0, str(SRC_PYTHON))


W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
REL_BASE = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
CORE_RT = "http://schemas.openxmlformats.org/package/2006/relationships/metadata/core-properties"

DECL = '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'

DOCUMENT_XML = DECL + (
    f'<w:document xmlns:w="{W_NS}" xmlns:r="{R_NS}">'
    '<w:body>'
    '<w:p><w:r><w:t>Hello world</w:t></w:r></w:p>'
    '<w:sectPr/>'
    '</w:body>'
    '</w:document>'
)

CORE_XML = DECL + (
    '<cp:coreProperties'
    ' xmlns:cp="http://schemas.openxmlformats.org/package/2006/metadata/core-properties"'
    ' xmlns:dc="http://purl.org/dc/elements/1.1/"'
    ' xmlns:dcterms="http://purl.org/dc/terms/"'
    ' xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">'
    '<dc:title>Quarterly plan</dc:title>'
    '<dc:subject>Budget</dc:subject>'
    '<dc:creator>Jan Kowalski</dc:creator>'
    '<cp:keywords>internal</cp:keywords>'
    '<dc:description>Draft for review</dc:description>'
    '<cp:lastModifiedBy>Anna Nowak</cp:lastModifiedBy>'
    '<cp:revision>7</cp:revision>'
    '<cp:lastPrinted>2023-02-01T08:00:00Z</cp:lastPrinted>'
    '<dcterms:created xsi:type="dcterms:W3CDTF">2023-01-01T09:30:00Z</dcterms:created>'
    '<dcterms:modified xsi:type="dcterms:W3CDTF">2023-03-04T11:15:00Z</dcterms:modified>'
    '<cp:category>Finance</cp:category>'
    '</cp:coreProperties>'
)

APP_XML = DECL + (
    '<Properties xmlns="http://schemas.openxmlformats.org/officeDocument/2006/extended-properties"'
    ' xmlns:vt="http://schemas.openxmlformats.org/officeDocument/2006/docPropsVTypes">'
    '<Template>C:\\Users\\jkowalski\\Templates\\Firm.dotm</Template>'
    '<TotalTime>482</TotalTime>'
    '<Pages>1</Pages>'
    '<Application>Microsoft Office Word</Application>'
    '<Company>Kowalski &amp; Partners</Company>'
    '<Manager>Piotr Zielinski</Manager>'
    '</Properties>'
)

SETTINGS_XML = DECL + (
    f'<w:settings xmlns:w="{W_NS}" xmlns:r="{R_NS}">'
    '<w:zoom w:percent="100"/>'
    '<w:attachedTemplate r:id="rId1"/>'
    '<w:defaultTabStop w:val="720"/>'
    '</w:settings>'
)

SETTINGS_RELS = DECL + (
    '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
    f'<Relationship Id="rId1" Type="{REL_BASE}/attachedTemplate"'
    ' Target="file:///C:\\Users\\jkowalski\\Templates\\Firm.dotm" TargetMode="External"/>'
    '</Relationships>'
)

STYLES_XML = DECL + (
    f'<w:styles xmlns:w="{W_NS}">'
    '<w:style w:type="paragraph" w:default="1" w:styleId="Normal"><w:name w:val="Normal"/></w:style>'
    '</w:styles>'
)

COMMENTS_XML = DECL + (
    f'<w:comments xmlns:w="{W_NS}">'
    '<w:comment w:id="0" w:author="Jan Kowalski" w:date="2024-05-01T10:00:00Z" w:initials="JK">'
    '<w:p><w:r><w:t>Please check the figures.</w:t></w:r></w:p>'
    '</w:comment>'
    '</w:comments>'
)

CUSTOM_ITEM_XML = DECL + '<b:Sources xmlns:b="http://schemas.openxmlformats.org/officeDocument/2006/bibliography"/>'
CUSTOM_PROPS_XML = DECL + (
    '<ds:datastoreItem ds:itemID="{11111111-2222-3333-4444-555555555555}"'
    ' xmlns:ds="http://schemas.openxmlformats.org/officeDocument/2006/customXml"/>'
)

CT = {
    "document": "application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml",
    "core": "application/vnd.openxmlformats-package.core-properties+xml",
    "app": "application/vnd.openxmlformats-officedocument.extended-properties+xml",
    "settings": "application/vnd.openxmlformats-officedocument.wordprocessingml.settings+xml",
    "styles": "application/vnd.openxmlformats-officedocument.wordprocessingml.styles+xml",
    "comments": "application/vnd.openxmlformats-officedocument.wordprocessingml.comments+xml",
    "header": "application/vnd.openxmlformats-officedocument.wordprocessingml.header+xml",
    "footer": "application/vnd.openxmlformats-officedocument.wordprocessingml.footer+xml",
    "itemProps": "application/vnd.openxmlformats-officedocument.customXmlProperties+xml",
}


def _rels(entries):
    body = "".join(
        f'<Relationship Id="{rid}" Type="{rtype}" Target="{target}"/>'
        for rid, rtype, target in entries
    )
    return DECL + (
        '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
        f"{body}</Relationships>"
    )


def build_docx(
    document=DOCUMENT_XML,
    core=CORE_XML,
    app=APP_XML,
    settings=SETTINGS_XML,
    settings_rels=SETTINGS_RELS,
    styles=STYLES_XML,
    comments=None,
    headers=(),
    footers=(),
    custom_xml_items=0,
    stored=(),
    include_content_types=True,
    include_main_document=True,
):
    """Assemble a minimal but well-formed DOCX package in memory.

    ``stored`` names entries written with ZIP_STORED instead of ZIP_DEFLATED.
    """
    entries = []
    overrides = [("/word/document.xml", CT["document"])]
    package_rels = [("rId1", f"{REL_BASE}/officeDocument", "word/document.xml")]
    document_rels = []

    if include_main_document:
        entries.append(("word/document.xml", document))
    if core is not None:
        entries.append(("docProps/core.xml", core))
        overrides.append(("/docProps/core.xml", CT["core"]))
        package_rels.append(("rId2", CORE_RT, "docProps/core.xml"))
    if app is not None:
        entries.append(("docProps/app.xml", app))
        overrides.append(("/docProps/app.xml", CT["app"]))
        package_rels.append(("rId3", f"{REL_BASE}/extended-properties", "docProps/app.xml"))
    if styles is not None:
        entries.append(("word/styles.xml", styles))
        overrides.append(("/word/styles.xml", CT["styles"]))
        document_rels.append(("rId1", f"{REL_BASE}/styles", "styles.xml"))
    if settings is not None:
        entries.append(("word/settings.xml", settings))
        overrides.append(("/word/settings.xml", CT["settings"]))
        document_rels.append(("rId2", f"{REL_BASE}/settings", "settings.xml"))
        if settings_rels is not None:
            entries.append(("word/_rels/settings.xml.rels", settings_rels))
    if comments is not None:
        entries.append(("word/comments.xml", comments))
        overrides.append(("/word/comments.xml", CT["comments"]))
        document_rels.append(("rId3", f"{REL_BASE}/comments", "comments.xml"))
    for idx, xml in enumerate(headers, start=1):
        entries.append((f"word/header{idx}.xml", xml))
        overrides.append((f"/word/header{idx}.xml", CT["header"]))
        document_rels.append((f"rId1{idx}", f"{REL_BASE}/header", f"header{idx}.xml"))
    for idx, xml in enumerate(footers, start=1):
        entries.append((f"word/footer{idx}.xml", xml))
        overrides.append((f"/word/footer{idx}.xml", CT["footer"]))
        document_rels.append((f"rId2{idx}", f"{REL_BASE}/footer", f"footer{idx}.xml"))
    for idx in range(1, custom_xml_items + 1):
        entries.append((f"customXml/item{idx}.xml", CUSTOM_ITEM_XML))
        entries.append((f"customXml/itemProps{idx}.xml", CUSTOM_PROPS_XML))
        entries.append((
            f"customXml/_rels/item{idx}.xml.rels",
            _rels([("rId1", f"{REL_BASE}/customXmlProps", f"itemProps{idx}.xml")]),
        ))
        overrides.append((f"/customXml/itemProps{idx}.xml", CT["itemProps"]))
        document_rels.append((f"rId3{idx}", f"{REL_BASE}/customXml", f"../customXml/item{idx}.xml"))

    content_types = DECL + (
        '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">'
        '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
        '<Default Extension="xml" ContentType="application/xml"/>'
        + "".join(f'<Override PartName="{name}" ContentType="{ctype}"/>' for name, ctype in overrides)
        + "</Types>"
    )

    ordered = []
    if include_content_types:
        ordered.append(("[Content_Types].xml", content_types))
    ordered.append(("_rels/.rels", _rels(package_rels)))
    ordered.append(("word/_rels/document.xml.rels", _rels(document_rels)))
    ordered.extend(entries)

    buf = BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, xml in ordered:
            info = zipfile.ZipInfo(name, date_time=(2024, 5, 1, 12, 0, 0))
            info.compress_type = zipfile.ZIP_STORED if name in stored else zipfile.ZIP_DEFLATED
            zf.writestr(info, xml.encode("utf-8"))
    return buf.getvalue()


def patch_docx(data: bytes, remove=(), replace=None) -> bytes:
    """Rewrite a package without the ``remove`` entries and with ``replace`` contents swapped in."""
    replace = replace or {}
    buf = BytesIO()
    with zipfile.ZipFile(BytesIO(data)) as zin, zipfile.ZipFile(buf, "w") as zout:
        for info in zin.infolist():
            if info.filename in remove:
                continue
            payload = replace.get(info.filename)
            zout.writestr(info, payload.encode("utf-8") if payload is not None else zin.read(info))
    return buf.getvalue()


def zip_entries(data: bytes) -> dict:
    with zipfile.ZipFile(BytesIO(data)) as zf:
        return {info.filename: zf.read(info) for info in zf.infolist()}


def zip_infos(data: bytes) -> dict:
    with zipfile.ZipFile(BytesIO(data)) as zf:
        return {info.filename: info for info in zf.infolist()}


@pytest.fixture
def make_docx():
    return build_docx
