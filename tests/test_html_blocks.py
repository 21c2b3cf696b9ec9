from feedai.services.html_blocks import extract_text_blocks, is_meaningful_text, strip_html


def test_blocks_follow_document_order():
    html = (
        "Intro <b>bold</b> text<br>next line"
        "<p>First para</p>"
        "<pre>print('skip')</pre>"
        "<p>12.5%</p>"
        "<script>track()</script>"
        "<div><table><tr><td>cell</td></tr></table></div>"
        "<!-- note -->"
        "<h2>Last heading</h2>"
    )

    assert extract_text_blocks(html, "  Title  ") == [
        "Title",
        "Intro bold text\nnext line",
        "First para",
        "Last heading",
    ]


def test_title_only_and_empty_inputs():
    assert extract_text_blocks("", "Title") == ["Title"]
    assert extract_text_blocks("<p>Body</p>", "   ") == ["Body"]
    assert extract_text_blocks("", "") == []


def test_meaningful_text():
    assert is_meaningful_text("日本")
    assert is_meaningful_text("a1")
    assert not is_meaningful_text("— 12.5% …")


def test_strip_html_collapses_whitespace():
    assert strip_html("<p>Hello <b>world</b></p>\n\n<p>Again</p>") == "Hello world Again"
    assert strip_html("") == ""
