"""
Tests for HTML sanitization and text helpers.
"""

from feed_pipeline.sanitize import calculate_reading_time, extract_plain_text, sanitize_html


class TestSanitizeHtml:

    def test_keeps_allowed_tags(self):
        html = "<p>Hello <strong>bold</strong> and <em>italic</em></p><ul><li>one</li></ul>"
        assert sanitize_html(html) == html

    def test_removes_script_with_content(self):
        result = sanitize_html("<p>Hi<script>alert('x')</script></p>")
        assert "script" not in result
        assert "alert" not in result
        assert result == "<p>Hi</p>"

    def test_unwraps_disallowed_tags_keeping_text(self):
        result = sanitize_html('<div><span class="x">kept</span></div>')
        assert result == "kept"

    def test_strips_data_and_style_attributes(self):
        result = sanitize_html('<p data-track="1" style="color:red" class="c">text</p>')
        assert result == "<p>text</p>"

    def test_anchor_keeps_only_link_attributes(self):
        result = sanitize_html(
            '<a href="https://example.com" title="t" target="_blank" rel="noopener" onclick="evil()" data-id="3">x</a>'
        )
        assert 'href="https://example.com"' in result
        assert 'title="t"' in result
        assert 'target="_blank"' in result
        assert "onclick" not in result
        assert "data-id" not in result

    def test_drops_javascript_href(self):
        result = sanitize_html('<a href="javascript:alert(1)">click</a>')
        assert "javascript" not in result
        assert "click" in result

    def test_removes_iframes_and_comments(self):
        result = sanitize_html("<p>a<!-- hidden --></p><iframe src='https://x'>inner</iframe>")
        assert result == "<p>a</p>"

    def test_empty_input(self):
        assert sanitize_html(None) == ""
        assert sanitize_html("") == ""


class TestTextHelpers:

    def test_extract_plain_text_collapses_whitespace(self):
        assert extract_plain_text("<p>Hello\n\n   <b>world</b></p>") == "Hello world"

    def test_extract_plain_text_empty(self):
        assert extract_plain_text(None) == ""

    def test_reading_time_rounds_up(self):
        assert calculate_reading_time("word " * 200) == 1
        assert calculate_reading_time("word " * 201) == 2

    def test_reading_time_empty(self):
        assert calculate_reading_time("") == 0
