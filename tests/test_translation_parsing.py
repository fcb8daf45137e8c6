from transhot.translation_parsing import (
    DELIMITER,
    QUOTE_SENTINEL,
    align,
    collapse_repeats,
    mask_quotes,
    parse_segments,
    recover_segments,
    split_on_delimiter,
    split_on_lines,
    split_on_numbering,
    split_on_paragraphs,
    strip_numbering,
    unmask_quotes,
)


def test_quote_masking_is_reversible():
    text = 'He said "hi" and "bye"'
    masked = mask_quotes(text)

    assert '"' not in masked
    assert masked.count(QUOTE_SENTINEL) == 4
    assert unmask_quotes(masked) == text


def test_split_on_delimiter_drops_single_trailing_empty():
    assert split_on_delimiter(f"a{DELIMITER} b {DELIMITER}") == ["a", "b"]
    assert split_on_delimiter("no delimiter") == ["no delimiter"]


def test_split_on_numbering_discards_preamble():
    reply = "Here are the translations:\n1) Привет\n2) Мир"
    assert split_on_numbering(reply) == ["Привет", "Мир"]


def test_split_on_paragraphs_and_lines():
    assert split_on_paragraphs("one\n\n two \n\n\nthree") == ["one", "two", "three"]
    assert split_on_lines("one\n\n two\nthree ") == ["one", "two", "three"]


def test_parse_segments_prefers_delimiter_over_lines():
    segments, parser = parse_segments(f"a\nb{DELIMITER}c")

    assert segments == ["a\nb", "c"]
    assert parser == "split_on_delimiter"


def test_parse_segments_falls_back_in_order():
    assert parse_segments("1) a\n2) b") == (["a", "b"], "split_on_numbering")
    assert parse_segments("a\n\nb") == (["a", "b"], "split_on_paragraphs")
    assert parse_segments("a\nb") == (["a", "b"], "split_on_lines")


def test_parse_segments_single_blob_has_no_parser():
    assert parse_segments("  just one  ") == (["just one"], None)
    assert parse_segments("") == ([], None)


def test_strip_numbering_only_removes_leading_marker():
    assert strip_numbering("3) Text 4) more") == "Text 4) more"
    assert strip_numbering("No marker") == "No marker"


def test_collapse_repeats_only_for_exact_repetition():
    assert collapse_repeats(["a", "b", "a", "b", "a", "b"], 2) == ["a", "b"]
    assert collapse_repeats(["a", "b", "a", "c"], 2) == ["a", "b", "a", "c"]
    assert collapse_repeats(["a", "b", "c"], 2) == ["a", "b", "c"]


def test_align_pads_and_truncates():
    assert align(["a"], 3) == ["a", "", ""]
    assert align(["a", "b", "c"], 2) == ["a", "b"]


def test_recover_segments_repairs_numbering_and_quotes():
    reply = f"1) {QUOTE_SENTINEL}Привет{QUOTE_SENTINEL}{DELIMITER}2) Мир"

    segments, parser = recover_segments(reply, 2)

    assert segments == ['"Привет"', "Мир"]
    assert parser == "split_on_delimiter"


def test_recover_segments_pads_single_reply():
    segments, parser = recover_segments("Всё вместе", 3)

    assert segments == ["Всё вместе", "", ""]
    assert parser is None


def test_trailing_delimiter_does_not_leak_into_single_segment():
    segments, parser = recover_segments(f"Привет{DELIMITER}", 1)

    assert segments == ["Привет"]
    assert parser is None


def test_trailing_delimiter_with_numbering_is_cleaned():
    segments, _ = recover_segments(f"1) X{DELIMITER}", 2)

    assert segments == ["X", ""]
    assert all(DELIMITER not in segment for segment in segments)


def test_leading_and_doubled_delimiters_are_ignored():
    segments, parser = recover_segments(f"{DELIMITER}A{DELIMITER}B{DELIMITER}{DELIMITER}", 2)

    assert segments == ["A", "B"]
    assert parser == "split_on_delimiter"
