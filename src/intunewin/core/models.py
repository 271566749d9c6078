"""
Data models for the IntuneWin package metadata record
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any


TOOL_VERSION = "1.4.0.0"
PROFILE_IDENTIFIER = "ProfileVersion1"
DIGEST_ALGORITHM = "SHA256"


@dataclass
class EncryptionInfo:
    """Key material and integrity values for the content entry.

    Byte fields hold raw bytes; the XML layer base64-encodes them.
    ``mac`` and ``file_digest`` stay None until content is embedded.
    """

    encryption_key: Optional[bytes] = None
    initialization_vector: Optional[bytes] = None
    mac_key: Optional[bytes] = None
    mac: Optional[bytes] = None
    file_digest: Optional[bytes] = None
    file_digest_algorithm: str = DIGEST_ALGORITHM
    profile_identifier: str = PROFILE_IDENTIFIER


@dataclass
class PackageMetadata:
    """The ApplicationInfo record stored in the metadata entry."""

    name: Optional[str] = None
    description: Optional[str] = None
    file_name: Optional[str] = None
    setup_file: Optional[str] = None
    unencrypted_content_size: int = 0
    tool_version: str = TOOL_VERSION
    encryption_info: EncryptionInfo = field(default_factory=EncryptionInfo)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert metadata to a display dict; key material is left out
        """
        info = self.encryption_info
        return {
            "name": self.name,
            "description": self.description,
            "file_name": self.file_name,
            "setup_file": self.setup_file,
            "unencrypted_content_size": self.unencrypted_content_size,
            "tool_version": self.tool_version,
            "profile_identifier": info.profile_identifier,
            "file_digest_algorithm": info.file_digest_algorithm,
            "file_digest": info.file_digest.hex() if info.file_digest else None,
            "mac": info.mac.hex() if info.mac else None,
        }
