from __future__ import annotations

import logging
from typing import List, Optional

from docx.opc.constants import RELATIONSHIP_TYPE as RT
from lxml import etree

from .docx_package import DocxPackage
from .errors import MutationFailure
from .options import AnonymizerOptions

logger = logging.getLogger(__name__)

WORD_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"

# Matched as namespace-qualified keys; an unqualified or foreign "author" is not ours
AUTHOR_ATTR = f"{{{WORD_NS}}}author"
DATE_ATTR = f"{{{WORD_NS}}}date"
INITIALS_ATTR = f"{{{WORD_NS}}}initials"

COMMENTS_TAG = f"{{{WORD_NS}}}comments"
COMMENT_TAG = f"{{{WORD_NS}}}comment"

REVISION_SOURCE_RELTYPES = (RT.HEADER, RT.FOOTER)


def revision_parts(package: DocxPackage) -> List[str]:
    """Main document followed by every header and footer it relates to."""
    main = package.main_document
    parts = [main]
    for reltype in REVISION_SOURCE_RELTYPES:
        for name in package.related_part_names(main, reltype):
            if name not in parts:
                parts.append(name)
    return parts


def anonymize_authors_in_tree(root, author: str, epoch: Optional[str] = None) -> int:
    """Overwrite w:author on every element that carries it.

    Selection is by attribute, not element name, so w:ins, w:del, w:rPrChange
    and friends are all covered. With ``epoch`` set, w:date on the same
    elements is reset too. Returns the number of attribute values changed.
    """
    changed = 0
    for node in root.iter(etree.Element):
        value = node.get(AUTHOR_ATTR)
        if value is None:
            continue
        if value != author:
            node.set(AUTHOR_ATTR, author)
            changed += 1
        if epoch is not None:
            date = node.get(DATE_ATTR)
            if date is not None and date != epoch:
                node.set(DATE_ATTR, epoch)
                changed += 1
    return changed


def anonymize_revision_authors(package: DocxPackage, options: AnonymizerOptions) -> int:
    epoch = options.epoch if options.scrub_revision_dates else None
    total = 0
    for name in revision_parts(package):
        root = package.read_xml(name)
        if root is None:
            continue
        changed = anonymize_authors_in_tree(root, options.author_placeholder, epoch)
        if changed:
            package.commit_xml(name, root)
            logger.debug(f"Revision authors: {changed} value(s) rewritten in {name}")
        total += changed
    return total


def anonymize_comment_authors(package: DocxPackage, options: AnonymizerOptions) -> int:
    name = package.related_part_name(package.main_document, RT.COMMENTS)
    if name is None:
        logger.debug("No comments part; nothing to anonymize")
        return 0
    root = package.read_xml(name)
    if root is None:
        return 0
    if root.tag != COMMENTS_TAG:
        raise MutationFailure(f"Unexpected root element in {name}", str(root.tag))

    changed = 0
    for comment in root.iter(COMMENT_TAG):
        author = comment.get(AUTHOR_ATTR)
        if author is not None and author != options.author_placeholder:
            comment.set(AUTHOR_ATTR, options.author_placeholder)
            changed += 1
        initials = comment.get(INITIALS_ATTR)
        if initials is not None and initials != options.initials_placeholder:
            comment.set(INITIALS_ATTR, options.initials_placeholder)
            changed += 1

    if changed:
        package.commit_xml(name, root)
    logger.debug(f"Comment authors: {changed} value(s) rewritten in {name}")
    return changed
