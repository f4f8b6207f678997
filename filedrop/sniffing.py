import enum
from dataclasses import dataclass

from loguru import logger

from filedrop.errors import UndeterminedFileType, UnsupportedFileType


class FileKind(str, enum.Enum):
    PNG = "image/png"
    JPEG = "image/jpeg"
    GIF = "image/gif"
    WEBP = "image/webp"
    WEBM = "video/webm"
    MP3 = "audio/mpeg"
    MP4 = "video/mp4"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @classmethod
    def from_mime(cls, mime_type: str) -> "FileKind | None":
        try:
            return cls(mime_type)
        except ValueError:
            return None


_EXTENSIONS = {
    FileKind.PNG: "png",
    FileKind.JPEG: "jpeg",
    FileKind.GIF: "gif",
    FileKind.WEBP: "webp",
    FileKind.WEBM: "webm",
    FileKind.MP3: "mp3",
    FileKind.MP4: "mp4",
}


@dataclass(frozen=True)
class Signature:
    pattern: bytes
    mask: bytes
    mime_type: str

    def matches(self, data: bytes) -> bool:
        if len(data) < len(self.pattern):
            return False
        return all(
            data[index] & mask_byte == pattern_byte
            for index, (pattern_byte, mask_byte) in enumerate(zip(self.pattern, self.mask))
        )


def _exact(pattern: bytes, mime_type: str) -> Signature:
    return Signature(pattern, b"\xff" * len(pattern), mime_type)


def _riff(fourcc: bytes, mime_type: str) -> Signature:
    return Signature(b"RIFF\x00\x00\x00\x00" + fourcc, b"\xff\xff\xff\xff\x00\x00\x00\x00\xff\xff\xff\xff", mime_type)


SIGNATURES = (
    _exact(b"\x00\x00\x01\x00", "image/x-icon"),
    _exact(b"\x00\x00\x02\x00", "image/x-icon"),
    _exact(b"BM", "image/bmp"),
    _exact(b"GIF87a", "image/gif"),
    _exact(b"GIF89a", "image/gif"),
    Signature(b"RIFF\x00\x00\x00\x00WEBPVP", b"\xff\xff\xff\xff\x00\x00\x00\x00\xff\xff\xff\xff\xff\xff", "image/webp"),
    _exact(b"\x89PNG\r\n\x1a\n", "image/png"),
    _exact(b"\xff\xd8\xff", "image/jpeg"),
    Signature(b"FORM\x00\x00\x00\x00AIFF", b"\xff\xff\xff\xff\x00\x00\x00\x00\xff\xff\xff\xff", "audio/aiff"),
    _exact(b"ID3", "audio/mpeg"),
    _exact(b"OggS\x00", "application/ogg"),
    _exact(b"MThd\x00\x00\x00\x06", "audio/midi"),
    _riff(b"AVI ", "video/avi"),
    _riff(b"WAVE", "audio/wave"),
    _exact(b"%PDF-", "application/pdf"),
    _exact(b"%!PS-Adobe-", "application/postscript"),
    _exact(b"\x1f\x8b\x08", "application/x-gzip"),
    _exact(b"PK\x03\x04", "application/zip"),
    _exact(b"Rar!\x1a\x07\x00", "application/x-rar-compressed"),
    _exact(b"Rar!\x1a\x07\x01\x00", "application/x-rar-compressed"),
)

EBML_MAGIC = b"\x1a\x45\xdf\xa3"
EBML_DOCTYPE = b"\x42\x82"

MPEG1_LAYER3_BITRATES = (0, 32, 40, 48, 56, 64, 80, 96, 112, 128, 160, 192, 224, 256, 320)
MPEG2_LAYER3_BITRATES = (0, 8, 16, 24, 32, 40, 48, 56, 64, 80, 96, 112, 128, 144, 160)
MPEG1_SAMPLE_RATES = (44100, 48000, 32000)


def is_mp4(data: bytes) -> bool:
    if len(data) < 12:
        return False
    box_size = int.from_bytes(data[:4], "big")
    if len(data) < box_size or box_size % 4 != 0:
        return False
    if data[4:8] != b"ftyp":
        return False
    if data[8:11] == b"mp4":
        return True
    # compatible brands start after major brand and minor version
    for offset in range(16, box_size, 4):
        if data[offset:offset + 3] == b"mp4":
            return True
    return False


def _vint_length(data: bytes, index: int) -> int:
    mask = 0x80
    size = 1
    while size < 8 and index + size <= len(data):
        if data[index] & mask:
            break
        mask >>= 1
        size += 1
    return size


def is_webm(data: bytes) -> bool:
    if not data.startswith(EBML_MAGIC):
        return False
    index = 4
    while index < len(data) and index < 38:
        if data[index:index + 2] == EBML_DOCTYPE:
            index += 2
            if index >= len(data):
                break
            index += _vint_length(data, index)
            if index + 4 > len(data):
                break
            if data[index:index + 4] == b"webm":
                return True
        index += 1
    return False


def mp3_frame_length(data: bytes, offset: int) -> int | None:
    if len(data) < offset + 4:
        return None
    if data[offset] != 0xFF or data[offset + 1] & 0xE0 != 0xE0:
        return None
    version = (data[offset + 1] >> 3) & 0x03
    layer = (data[offset + 1] >> 1) & 0x03
    # version 1 is reserved, layer 1 means Layer III
    if version == 1 or layer != 1:
        return None
    bitrate_index = data[offset + 2] >> 4
    sample_index = (data[offset + 2] >> 2) & 0x03
    if bitrate_index in (0, 15) or sample_index == 3:
        return None
    padding = (data[offset + 2] >> 1) & 0x01
    if version == 3:
        bitrate = MPEG1_LAYER3_BITRATES[bitrate_index] * 1000
        return 144 * bitrate // MPEG1_SAMPLE_RATES[sample_index] + padding
    sample_rate = MPEG1_SAMPLE_RATES[sample_index] >> (1 if version == 2 else 2)
    bitrate = MPEG2_LAYER3_BITRATES[bitrate_index] * 1000
    return 72 * bitrate // sample_rate + padding


def is_mp3_without_id3(data: bytes) -> bool:
    frame_length = mp3_frame_length(data, 0)
    if frame_length is None or frame_length < 4:
        return False
    return mp3_frame_length(data, frame_length) is not None


def sniff_mime_type(data: bytes) -> str | None:
    for signature in SIGNATURES:
        if signature.matches(data):
            return signature.mime_type
    if is_mp4(data):
        return FileKind.MP4.value
    if is_webm(data):
        return FileKind.WEBM.value
    if is_mp3_without_id3(data):
        return FileKind.MP3.value
    return None


@dataclass(frozen=True)
class ClassifiedFile:
    data: bytes
    kind: FileKind

    @property
    def extension(self) -> str:
        return self.kind.extension


def classify(data: bytes) -> FileKind:
    mime_type = sniff_mime_type(data)
    if mime_type is None:
        logger.warning("File type could not be determined size_bytes={}", len(data))
        raise UndeterminedFileType()
    kind = FileKind.from_mime(mime_type)
    if kind is None:
        logger.warning("Unsupported file type mime_type={} size_bytes={}", mime_type, len(data))
        raise UnsupportedFileType(mime_type)
    return kind
