"""
XML persistence for the package metadata record (Detection.xml)

Layout written, matching what the Microsoft packaging tool produces:

<ApplicationInfo ToolVersion="1.4.0.0">
  <Name/> <Description/> <UnencryptedContentSize/> <FileName/> <SetupFile/>
  <EncryptionInfo>
    <ProfileIdentifier/> <EncryptionKey/> <InitializationVector/> <Mac/>
    <MacKey/> <FileDigest/> <FileDigestAlgorithm/>
  </EncryptionInfo>
</ApplicationInfo>

Byte values are base64. Reading ignores element order, namespaces and any
element it does not know (real packages carry e.g. MsiInfo).
"""

import base64
import binascii
import xml.etree.ElementTree as ET
from typing import Dict, Optional

from .exceptions import InvalidContainerError
from .models import EncryptionInfo, PackageMetadata


METADATA_ENTRY_PATH = "IntuneWinPackage/Metadata/Detection.xml"
CONTENT_ENTRY_PREFIX = "IntuneWinPackage/Contents/"

_XSD_NS = "http://www.w3.org/2001/XMLSchema"
_XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"


def content_entry_path(file_name: str) -> str:
    """Archive path of the content entry for ``file_name``."""
    return f"{CONTENT_ENTRY_PREFIX}{file_name}"


def _b64(value: Optional[bytes]) -> Optional[str]:
    if value is None:
        return None
    return base64.b64encode(value).decode("ascii")


def _append(parent: ET.Element, tag: str, text: Optional[str]) -> None:
    # XmlSerializer leaves null members out entirely
    if text is None:
        return
    ET.SubElement(parent, tag).text = text


def serialize_metadata(metadata: PackageMetadata) -> bytes:
    """Encode ``metadata`` as UTF-8 Detection.xml bytes."""
    root = ET.Element("ApplicationInfo")
    root.set("xmlns:xsd", _XSD_NS)
    root.set("xmlns:xsi", _XSI_NS)
    root.set("ToolVersion", metadata.tool_version)

    _append(root, "Name", metadata.name)
    _append(root, "Description", metadata.description)
    _append(root, "UnencryptedContentSize", str(int(metadata.unencrypted_content_size)))
    _append(root, "FileName", metadata.file_name)
    _append(root, "SetupFile", metadata.setup_file)

    info = metadata.encryption_info
    enc = ET.SubElement(root, "EncryptionInfo")
    _append(enc, "ProfileIdentifier", info.profile_identifier)
    _append(enc, "EncryptionKey", _b64(info.encryption_key))
    _append(enc, "InitializationVector", _b64(info.initialization_vector))
    _append(enc, "Mac", _b64(info.mac))
    _append(enc, "MacKey", _b64(info.mac_key))
    _append(enc, "FileDigest", _b64(info.file_digest))
    _append(enc, "FileDigestAlgorithm", info.file_digest_algorithm)

    ET.indent(root, space="  ")
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(element: ET.Element) -> Dict[str, ET.Element]:
    return {_local(child.tag): child for child in element}


def _text(children: Dict[str, ET.Element], tag: str) -> Optional[str]:
    # free text is kept exactly as written
    child = children.get(tag)
    if child is None:
        return None
    return child.text or ""


def _token(children: Dict[str, ET.Element], tag: str) -> Optional[str]:
    text = _text(children, tag)
    return None if text is None else text.strip()


def _bytes(children: Dict[str, ET.Element], tag: str) -> Optional[bytes]:
    text = _token(children, tag)
    if not text:
        return None
    return base64.b64decode(text, validate=True)


def parse_metadata(data: bytes) -> PackageMetadata:
    """Decode Detection.xml bytes; any malformed value raises InvalidContainerError."""
    try:
        root = ET.fromstring(data)
        if _local(root.tag) != "ApplicationInfo":
            raise ValueError(f"unexpected root element {_local(root.tag)!r}")

        fields = _children(root)
        size_text = _token(fields, "UnencryptedContentSize")
        metadata = PackageMetadata(
            name=_text(fields, "Name"),
            description=_text(fields, "Description"),
            file_name=_text(fields, "FileName"),
            setup_file=_text(fields, "SetupFile"),
            unencrypted_content_size=int(size_text) if size_text else 0,
        )
        tool_version = root.get("ToolVersion")
        if tool_version:
            metadata.tool_version = tool_version

        enc = fields.get("EncryptionInfo")
        if enc is not None:
            enc_fields = _children(enc)
            info = EncryptionInfo(
                encryption_key=_bytes(enc_fields, "EncryptionKey"),
                initialization_vector=_bytes(enc_fields, "InitializationVector"),
                mac_key=_bytes(enc_fields, "MacKey"),
                mac=_bytes(enc_fields, "Mac"),
                file_digest=_bytes(enc_fields, "FileDigest"),
            )
            info.profile_identifier = _token(enc_fields, "ProfileIdentifier") or info.profile_identifier
            info.file_digest_algorithm = (
                _token(enc_fields, "FileDigestAlgorithm") or info.file_digest_algorithm
            )
            metadata.encryption_info = info
    except (ET.ParseError, binascii.Error, ValueError) as exc:
        raise InvalidContainerError("Metadata entry could not be parsed", exc) from exc

    return metadata
