"""
Chunked upload models
"""

from dataclasses import dataclass, field


@dataclass
class UploadSession:
    """One logical file being uploaded in chunks"""

    upload_id: str
    file_name: str = ""
    file_size: int = 0
    file_type: str = ""
    max_chunk_size: int = 0
    chunks: set[int] = field(default_factory=set)


@dataclass(frozen=True)
class AssembledUpload:
    """Result of reassembling every chunk of an upload"""

    upload_id: str
    file_path: str
    size: int
