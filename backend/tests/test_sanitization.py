from receipt_intake.utils.sanitization import collapse_whitespace, html_to_text, sanitize_email_content


def test_html_to_text_drops_scripts_and_decodes_entities():
    html = """
    <html><head><title>x</title><style>p {color: red}</style></head>
    <body><script>alert('hi')</script><p>Milk&nbsp;2L</p><div>Bread &amp; Butter</div></body></html>
    """
    text = html_to_text(html)
    assert "alert" not in text
    assert "color" not in text
    assert text == "Milk 2L Bread & Butter"


def test_collapse_whitespace():
    assert collapse_whitespace("  a \n\t b  ") == "a b"
    assert collapse_whitespace(None) == ""


def test_sanitize_email_content_empty():
    assert sanitize_email_content("") == ""
    assert sanitize_email_content("<p>   </p>") == ""
