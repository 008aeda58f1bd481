"""
test_media_classifier.py — Magic-byte sniffing and classification fallbacks.
"""

from mediatrust.models.analysis import MediaCategory
from mediatrust.services.media_classifier import (
    classify_media,
    file_extension,
    mime_from_filename,
    sniff_mime,
)


class TestSniffMime:
    def test_jpeg(self):
        assert sniff_mime(b"\xff\xd8\xff\xe0" + b"\x00" * 32) == "image/jpeg"

    def test_png(self, make_png):
        assert sniff_mime(make_png(8, 8)) == "image/png"

    def test_webp(self):
        assert sniff_mime(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"

    def test_wav(self, wav_bytes):
        assert sniff_mime(wav_bytes) == "audio/wav"

    def test_mp3_with_id3(self):
        assert sniff_mime(b"ID3\x04\x00\x00\x00\x00\x00\x00") == "audio/mpeg"

    def test_mp4(self, mp4_bytes):
        assert sniff_mime(mp4_bytes) == "video/mp4"

    def test_m4a_brand_is_audio(self):
        head = b"\x00\x00\x00\x20ftypM4A \x00\x00\x00\x00"
        assert sniff_mime(head) == "audio/mp4"

    def test_webm(self):
        assert sniff_mime(b"\x1a\x45\xdf\xa3\x9f\x42\x86\x81\x01webm") == "video/webm"

    def test_unknown_returns_none(self):
        assert sniff_mime(b"hello world, not media") is None

    def test_too_short_returns_none(self):
        assert sniff_mime(b"\xff") is None


class TestClassifyMedia:
    def test_sniffed_type_wins_over_declared(self, make_png):
        result = classify_media(make_png(8, 8), declared_mime="video/mp4", filename="clip.mp4")
        assert result.category is MediaCategory.IMAGE
        assert result.mime_type == "image/png"

    def test_declared_mime_used_when_unsniffable(self):
        result = classify_media(b"opaque-bytes-here", declared_mime="audio/mpeg", filename="x.bin")
        assert result.category is MediaCategory.AUDIO
        assert result.mime_type == "audio/mpeg"

    def test_extension_used_last(self):
        result = classify_media(b"opaque-bytes-here", filename="voice.ogg")
        assert result.category is MediaCategory.AUDIO
        assert result.mime_type == "audio/ogg"

    def test_unknown_defaults_to_video(self):
        result = classify_media(b"opaque-bytes-here", filename="mystery")
        assert result.category is MediaCategory.VIDEO
        assert result.extension == "bin"

    def test_non_media_declared_mime_is_ignored(self):
        result = classify_media(b"opaque-bytes-here", declared_mime="application/pdf", filename="a.wav")
        assert result.category is MediaCategory.AUDIO

    def test_extension_derived_from_mime_when_filename_has_none(self, make_png):
        result = classify_media(make_png(8, 8), filename="upload")
        assert result.extension == "png"

    def test_never_raises_on_empty_buffer(self):
        result = classify_media(b"")
        assert result.category is MediaCategory.VIDEO


class TestFilenameHelpers:
    def test_file_extension_lowercases(self):
        assert file_extension("Photo.JPG") == "jpg"

    def test_file_extension_missing(self):
        assert file_extension("README") == ""

    def test_mime_from_filename_unknown(self):
        assert mime_from_filename("archive.zip") == "application/octet-stream"
