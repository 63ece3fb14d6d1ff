"""Tests for the private reference codec."""

import pytest
from pydantic import ValidationError

from assetgate import (
    InvalidIdentifierError,
    MalformedReferenceError,
    Reference,
    decode,
    encode,
    is_private_reference,
)


class TestEncode:
    """Test encode()."""

    def test_encode(self):
        ref = encode("4za92", "courses/c1/chapters/ch1/abc_video.mp4")
        assert ref == "private:4za92:courses/c1/chapters/ch1/abc_video.mp4"

    def test_encode_path_with_colons(self):
        assert encode("id1", "a:b:c.mp4") == "private:id1:a:b:c.mp4"

    def test_encode_rejects_delimiter_in_storage_id(self):
        with pytest.raises(InvalidIdentifierError, match="4z:a"):
            encode("4z:a", "path.mp4")

    def test_encode_rejects_empty_storage_id(self):
        with pytest.raises(InvalidIdentifierError):
            encode("", "path.mp4")


class TestDecode:
    """Test decode()."""

    def test_decode(self):
        ref = decode("private:4za92:courses/c1/video.mp4")
        assert ref.storage_id == "4za92"
        assert ref.storage_path == "courses/c1/video.mp4"

    def test_path_keeps_everything_after_second_colon(self):
        ref = decode("private:id1:folder/10:30:00.mp4")
        assert ref.storage_id == "id1"
        assert ref.storage_path == "folder/10:30:00.mp4"

    def test_round_trip(self):
        for storage_id, path in [
            ("4_z27c88f1d182b150646ff0b16_f1004ba650fe24e6b", "courses/c1/a.mp4"),
            ("x", ""),
            ("abc", "with spaces/and:colons/ünïcode.pdf"),
        ]:
            assert decode(encode(storage_id, path)) == Reference(
                storage_id=storage_id, storage_path=path
            )

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "public:4za92:path.mp4",
            "https://cdn.example.com/video.mp4",
            "private:",
            "private:onlyid",
            "private::path.mp4",
            "PRIVATE:4za92:path.mp4",
        ],
    )
    def test_malformed(self, value):
        with pytest.raises(MalformedReferenceError) as exc_info:
            decode(value)
        assert exc_info.value.reference == value

    def test_malformed_reason(self):
        with pytest.raises(MalformedReferenceError, match="missing private: prefix"):
            decode("s3://bucket/key")


class TestReferenceModel:
    """Test Reference model."""

    def test_to_string_and_str(self):
        ref = Reference(storage_id="id1", storage_path="a/b.png")
        assert ref.to_string() == "private:id1:a/b.png"
        assert str(ref) == "private:id1:a/b.png"

    def test_from_string(self):
        ref = Reference.from_string("private:id1:a/b.png")
        assert ref == Reference(storage_id="id1", storage_path="a/b.png")

    def test_is_frozen(self):
        ref = Reference(storage_id="id1", storage_path="a/b.png")
        with pytest.raises(ValidationError):
            ref.storage_path = "other.png"

    def test_storage_id_cannot_contain_delimiter(self):
        with pytest.raises(ValidationError):
            Reference(storage_id="a:b", storage_path="x")

    def test_hashable(self):
        a = Reference(storage_id="id1", storage_path="a.png")
        b = Reference(storage_id="id1", storage_path="a.png")
        assert {a, b} == {a}


class TestIsPrivateReference:
    """Test is_private_reference()."""

    def test_private(self):
        assert is_private_reference("private:id:path.mp4")

    def test_legacy_url(self):
        assert not is_private_reference("https://f002.backblazeb2.com/file/b/x.mp4")

    def test_none(self):
        assert not is_private_reference(None)
