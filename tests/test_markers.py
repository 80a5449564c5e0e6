"""Tests for the inline marker micro-format."""

from studymind.processing.markers import (
    KIND_CREATED,
    KIND_MENTION,
    find_marker_strings,
    format_created_marker,
    keep_markers,
    parse_markers,
    strip_markers,
)

UID_A = "0b4c6f7e-1111-4a2b-9c3d-000000000001"
UID_B = "0b4c6f7e-2222-4a2b-9c3d-000000000002"


class TestParseMarkers:
    def test_single_quoted_mention(self):
        text = f"@mention {{uid: '{UID_A}', name: 'Bio Notes', type: 'NOTE'}} explain the second section"
        markers = parse_markers(text)
        assert len(markers) == 1
        assert markers[0].kind == KIND_MENTION
        assert markers[0].uid == UID_A
        assert markers[0].name == "Bio Notes"
        assert markers[0].type == "NOTE"

    def test_double_quoted_and_bare_values(self):
        text = f'@created{{uid: "{UID_A}", name: "Bio\'s Folder", type: folder}}'
        markers = parse_markers(text)
        assert markers[0].kind == KIND_CREATED
        assert markers[0].name == "Bio's Folder"
        assert markers[0].type == "FOLDER"

    def test_order_of_appearance(self):
        text = (
            f"@created {{uid: '{UID_B}', name: 'B', type: 'NOTE'}} and "
            f"@mention {{uid: '{UID_A}', name: 'A', type: 'NOTE'}}"
        )
        assert [m.uid for m in parse_markers(text)] == [UID_B, UID_A]

    def test_kind_filter(self):
        text = (
            f"@created {{uid: '{UID_B}', name: 'B', type: 'NOTE'}} "
            f"@mention {{uid: '{UID_A}', name: 'A', type: 'NOTE'}}"
        )
        mentions = parse_markers(text, kinds=(KIND_MENTION,))
        assert [m.uid for m in mentions] == [UID_A]

    def test_marker_without_uid_ignored(self):
        assert parse_markers("@mention {name: 'No uid', type: 'NOTE'}") == []

    def test_repeated_marker_returned_once(self):
        marker = f"@mention {{uid: '{UID_A}', name: 'A', type: 'NOTE'}}"
        assert len(parse_markers(f"{marker} and again {marker}")) == 1

    def test_empty_text(self):
        assert parse_markers("") == []
        assert parse_markers(None) == []

    def test_email_like_text_is_not_a_marker(self):
        assert parse_markers("write to me@mention.com {please}") == []


class TestFormatMarker:
    def test_canonical_form(self):
        assert format_created_marker(UID_A, "Biology", "FOLDER") == (
            f"@created {{uid: '{UID_A}', name: 'Biology', type: 'FOLDER'}}"
        )

    def test_formatted_marker_parses_back(self):
        text = format_created_marker(UID_A, "Newton's Laws", "NOTE")
        marker = parse_markers(text)[0]
        assert marker.uid == UID_A
        assert marker.name == "Newton's Laws"
        assert marker.type == "NOTE"

    def test_name_with_braces_parses_back(self):
        text = format_created_marker(UID_A, "Set Theory {A, B}", "NOTE")
        markers = parse_markers(text)
        assert len(markers) == 1
        assert markers[0].uid == UID_A
        assert markers[0].name == "Set Theory (A, B)"
        assert strip_markers(f"Done! {text}") == "Done!"


class TestStripAndKeep:
    def test_strip_markers_leaves_prose(self):
        text = f"Your folder is ready!\n\n@created {{uid: '{UID_A}', name: 'Biology', type: 'FOLDER'}}"
        assert strip_markers(text) == "Your folder is ready!"

    def test_keep_markers_drops_unknown(self):
        known = f"@created {{uid: '{UID_A}', name: 'A', type: 'NOTE'}}"
        invented = f"@created {{uid: '{UID_B}', name: 'B', type: 'NOTE'}}"
        result = keep_markers(f"{known} and {invented}", {known})
        assert known in result
        assert invented not in result

    def test_find_marker_strings_verbatim(self):
        raw = f'@mention{{uid: "{UID_A}", name: "A", type: "NOTE"}}'
        assert find_marker_strings(f"see {raw}") == [raw]
