import pytest

from contentsync.updates.errors import ResourceNotFoundError
from contentsync.updates.host import InMemoryContentHost, Notice


def items(count: int, prefix: str = "row") -> list[str]:
    return [f'<div class="item">{prefix} {i}</div>' for i in range(count)]


class TestInMemoryContentHost:
    """Tests for the in-memory reference host."""

    def test_ensure_creates_empty_resource(self, host):
        host.ensure("queries")
        assert host.exists("queries")
        assert host.content("queries") == []
        assert host.resource_ids() == ["queries"]

    def test_missing_resource_raises(self, host):
        with pytest.raises(ResourceNotFoundError) as exc_info:
            host.element_count("missing")
        assert exc_info.value.resource_id == "missing"

    def test_element_count_counts_opening_tags(self, host):
        host.append("queries", "<div><span>a</span></div>", "plain text")
        # Two tags in the first fragment, bare text counts as one node
        assert host.element_count("queries") == 3

    def test_state_marker_count_counts_each_kind(self, host):
        host.replace(
            "queries",
            ['<div onclick="open()" style="color: red"><span>a</span></div>', '<li data-update-id="7">b</li>', "text"],
        )
        assert host.state_marker_count("queries") == 3

    def test_child_digests_match_identical_children(self, host):
        host.replace("queries", ["<p>a</p>", "<p>a</p>", "<p>b</p>"])
        digests = host.child_digests("queries")
        assert digests[0] == digests[1] != digests[2]

    def test_read_and_write_content(self, host):
        host.replace("queries", items(3))
        saved = host.read_content("queries")
        host.replace("queries", items(5, "new"))

        host.write_content("queries", saved)

        assert host.content("queries") == items(3)

    def test_trim_keeps_prefix(self, host):
        host.replace("queries", items(10))
        assert host.trim("queries", 4) == 4
        assert host.content("queries") == items(4)

    def test_write_notice_escapes_text(self, host):
        host.replace("queries", items(3))
        host.write_notice("queries", Notice(kind="recreation", title="Broken <panel>", detail="a & b"))

        markup = host.serialize("queries")
        assert markup.startswith('<div class="container-recreation-notice">')
        assert "Broken &lt;panel&gt;" in markup
        assert "a &amp; b" in markup

    def test_viewport_extent_follows_content(self):
        host = InMemoryContentHost(row_height=10.0, window=50.0)
        host.replace("queries", items(20))
        viewport = host.viewport("queries")
        assert viewport.extent == 200.0
        assert viewport.window == 50.0
        assert viewport.scrollable == 150.0

    def test_set_offset_is_not_clamped(self, host):
        host.replace("queries", items(3))
        host.set_offset("queries", 500.0)
        assert host.viewport("queries").offset == 500.0

    def test_shrinking_content_clamps_offset(self, host):
        host.replace("queries", items(40))
        host.set_offset("queries", 700.0)

        host.replace("queries", items(25))

        # 25 rows * 20px - 400px window
        assert host.viewport("queries").offset == 100.0

    def test_remove(self, host):
        host.ensure("queries")
        host.remove("queries")
        assert not host.exists("queries")
