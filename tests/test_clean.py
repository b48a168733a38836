from corpus_rag.ingest.clean import collapse_inline, normalize_text


def test_bullets_and_nbsp_are_normalized():
    assert normalize_text("\u2022first\nfoo\u00a0bar") == "- first\nfoo bar"


def test_zero_width_and_dehyphenation():
    assert normalize_text("\ufeffconfigu-\nration\u200b") == "configuration"


def test_blank_lines_and_spaces_collapse():
    assert normalize_text("a   b \n\n\n\nc\r\nd") == "a b\n\nc\nd"


def test_dashes_survive():
    assert normalize_text("Title — https://a") == "Title — https://a"


def test_collapse_inline():
    assert collapse_inline("  a \n\t b  ") == "a b"
