"""Unit tests for Detection.xml persistence."""

import base64
import xml.etree.ElementTree as ET

import pytest

from intunewin.core.exceptions import InvalidContainerError
from intunewin.core.metadata import (
    METADATA_ENTRY_PATH,
    content_entry_path,
    parse_metadata,
    serialize_metadata,
)
from intunewin.core.models import EncryptionInfo, PackageMetadata


# Shape of a record produced by the Microsoft packaging tool
EXTERNAL_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<ApplicationInfo xmlns:xsd="http://www.w3.org/2001/XMLSchema" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" ToolVersion="1.8.4.0">
  <Name>sample.zip</Name>
  <UnencryptedContentSize>3078</UnencryptedContentSize>
  <FileName>sample.intunewin</FileName>
  <SetupFile>sample.zip</SetupFile>
  <EncryptionInfo>
    <EncryptionKey>AAECAwQFBgcICQoLDA0ODxAREhMUFRYXGBkaGxwdHh8=</EncryptionKey>
    <MacKey>HyAhIiMkJSYnKCkqKywtLi8wMTIzNDU2Nzg5Ojs8PT4=</MacKey>
    <InitializationVector>AAECAwQFBgcICQoLDA0ODw==</InitializationVector>
    <Mac>S+ZXJesMxhj1Opq2AWdJEZlmMJrElayFctjtlx3F/nE=</Mac>
    <ProfileIdentifier>ProfileVersion1</ProfileIdentifier>
    <FileDigest>S+ZXJesMxhj1Opq2AWdJEZlmMJrElayFctjtlx3F/nE=</FileDigest>
    <FileDigestAlgorithm>SHA256</FileDigestAlgorithm>
  </EncryptionInfo>
  <MsiInfo><MsiProductCode>{00000000-0000-0000-0000-000000000000}</MsiProductCode></MsiInfo>
</ApplicationInfo>
"""


@pytest.fixture
def metadata():
    return PackageMetadata(
        name="App",
        description="An app",
        file_name="payload.bin",
        setup_file="run.cmd",
        unencrypted_content_size=3078,
        encryption_info=EncryptionInfo(
            encryption_key=bytes(range(32)),
            initialization_vector=bytes(range(16)),
            mac_key=bytes(range(31, 63)),
            mac=b"\x01" * 32,
            file_digest=b"\x02" * 32,
        ),
    )


def test_entry_paths():
    assert METADATA_ENTRY_PATH == "IntuneWinPackage/Metadata/Detection.xml"
    assert content_entry_path("payload.bin") == "IntuneWinPackage/Contents/payload.bin"


def test_serialize_then_parse_preserves_record(metadata):
    assert parse_metadata(serialize_metadata(metadata)) == metadata


def test_serialized_element_order(metadata):
    root = ET.fromstring(serialize_metadata(metadata))
    assert root.get("ToolVersion") == "1.4.0.0"
    assert [child.tag for child in root] == [
        "Name",
        "Description",
        "UnencryptedContentSize",
        "FileName",
        "SetupFile",
        "EncryptionInfo",
    ]
    enc = root.find("EncryptionInfo")
    assert [child.tag for child in enc] == [
        "ProfileIdentifier",
        "EncryptionKey",
        "InitializationVector",
        "Mac",
        "MacKey",
        "FileDigest",
        "FileDigestAlgorithm",
    ]
    assert enc.findtext("EncryptionKey") == base64.b64encode(bytes(range(32))).decode()


def test_absent_values_are_omitted():
    record = PackageMetadata(name="App", file_name="x.bin")
    root = ET.fromstring(serialize_metadata(record))
    assert root.find("Description") is None
    enc = root.find("EncryptionInfo")
    assert enc.find("Mac") is None
    assert enc.find("FileDigest") is None
    assert enc.findtext("ProfileIdentifier") == "ProfileVersion1"


def test_empty_description_roundtrips_as_empty_string():
    record = PackageMetadata(name="App", description="", file_name="x.bin")
    assert parse_metadata(serialize_metadata(record)).description == ""


def test_text_fields_keep_surrounding_whitespace():
    record = PackageMetadata(
        name="  App  ",
        description="line\n",
        file_name=" spaced.intunewin",
        setup_file="setup.exe\t",
    )
    parsed = parse_metadata(serialize_metadata(record))
    assert parsed.name == "  App  "
    assert parsed.description == "line\n"
    assert parsed.file_name == " spaced.intunewin"
    assert parsed.setup_file == "setup.exe\t"


def test_numeric_and_base64_values_tolerate_padding():
    xml = (
        b"<ApplicationInfo><UnencryptedContentSize>\n  42\n</UnencryptedContentSize>"
        b"<EncryptionInfo><InitializationVector>\n  AAECAwQFBgcICQoLDA0ODw==\n"
        b"</InitializationVector></EncryptionInfo></ApplicationInfo>"
    )
    parsed = parse_metadata(xml)
    assert parsed.unencrypted_content_size == 42
    assert parsed.encryption_info.initialization_vector == bytes(range(16))


def test_parse_external_record():
    parsed = parse_metadata(EXTERNAL_XML)
    assert parsed.name == "sample.zip"
    assert parsed.description is None
    assert parsed.unencrypted_content_size == 3078
    assert parsed.file_name == "sample.intunewin"
    assert parsed.setup_file == "sample.zip"
    assert parsed.tool_version == "1.8.4.0"

    info = parsed.encryption_info
    assert info.encryption_key == bytes(range(32))
    assert info.initialization_vector == bytes(range(16))
    assert len(info.mac_key) == 32
    assert info.file_digest_algorithm == "SHA256"
    assert info.profile_identifier == "ProfileVersion1"


@pytest.mark.parametrize(
    "payload",
    [
        b"not xml at all",
        b"<Other/>",
        b"<ApplicationInfo><UnencryptedContentSize>lots</UnencryptedContentSize></ApplicationInfo>",
        b"<ApplicationInfo><EncryptionInfo><EncryptionKey>***</EncryptionKey></EncryptionInfo></ApplicationInfo>",
    ],
)
def test_parse_malformed_raises_invalid_container(payload):
    with pytest.raises(InvalidContainerError) as excinfo:
        parse_metadata(payload)
    assert excinfo.value.cause is not None


def test_to_dict_excludes_key_material(metadata):
    shown = metadata.to_dict()
    assert shown["name"] == "App"
    assert shown["file_digest"] == ("02" * 32)
    assert "encryption_key" not in shown
    assert "mac_key" not in shown
