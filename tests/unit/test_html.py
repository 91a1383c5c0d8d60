from jobtrail.extractor.html import html_to_text


def test_html_to_text_drops_scripts_and_collapses_whitespace() -> None:
    html = """
    <html>
      <head><title>Ignored</title><style>p { color: red; }</style></head>
      <body>
        <p>Hello <strong>Jane</strong>,</p>
        <script>track();</script>
        <p>We'd like to   schedule an interview.</p>
      </body>
    </html>
    """

    text = html_to_text(html)

    assert text == "Hello Jane , We'd like to schedule an interview."


def test_html_to_text_handles_empty_input() -> None:
    assert html_to_text(None) == ""
    assert html_to_text("   ") == ""
