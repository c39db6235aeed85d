"""
Tests for keiyaku.matching: normalization, edit distance and fragment location.
"""

from keiyaku.matching import (
    calculate_similarity,
    contains_normalized,
    extract_and_normalize,
    find_best_match,
    find_by_prefix,
    iter_fragments,
    levenshtein_distance,
    normalize_text,
)

CONTRACT_HTML = """
<h3>第10条（損害賠償）</h3>
<p>甲は、本契約に違反した場合、乙に生じた一切の損害を賠償するものとする。</p>
<h3>第11条（秘密保持）</h3>
<p>甲及び乙は、本契約に関連して知り得た相手方の秘密情報を第三者に開示してはならない。</p>
"""


def test_normalize_text_folds_width_and_whitespace():
    assert normalize_text("これは　  テスト\n\nです") == "これは テスト です"
    assert normalize_text("第１０条") == "第10条"
    assert normalize_text("ＡＢＣ") == "ABC"
    assert normalize_text("（テスト）") == "(テスト)"
    assert normalize_text("<p>テスト</p>") == "テスト"
    assert normalize_text("<p>第１０条（損害賠償）　甲は、本契約に違反した場合</p>") == "第10条(損害賠償) 甲は、本契約に違反した場合"


def test_normalize_text_is_idempotent():
    samples = ["<p>第１０条（損害賠償）　甲は、</p>", "  a \t b\n", "", "ＡＢＣ（１）"]
    for sample in samples:
        once = normalize_text(sample)
        assert normalize_text(once) == once


def test_extract_and_normalize_keeps_blocks_apart():
    assert extract_and_normalize("<p>甲</p><p>乙</p>") == "甲 乙"
    assert normalize_text("<p>甲</p><p>乙</p>") == "甲乙"


def test_levenshtein_distance():
    assert levenshtein_distance("test", "test") == 0
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("", "test") == 4
    assert levenshtein_distance("test", "") == 4
    assert levenshtein_distance("甲は", "乙は") == 1


def test_levenshtein_distance_is_symmetric():
    pairs = [("kitten", "sitting"), ("甲は乙に", "乙は"), ("", "abc"), ("flaw", "lawn")]
    for a, b in pairs:
        assert levenshtein_distance(a, b) == levenshtein_distance(b, a)


def test_calculate_similarity_bounds():
    assert calculate_similarity("", "") == 100
    assert calculate_similarity("", "test") == 0
    assert calculate_similarity("test", "") == 0
    assert calculate_similarity("テスト", "テスト") == 100
    # Equal after normalization counts as identical
    assert calculate_similarity("第１０条", "第10条") == 100


def test_calculate_similarity_ranges():
    assert calculate_similarity("甲は、本契約に違反した場合", "甲は、 本契約に 違反した場合") > 85
    assert calculate_similarity("本契約は甲乙間で締結する", "まったく関係のない文章です") < 30


def test_long_unequal_strings_stay_below_100():
    long_text = "あ" * 300
    edited = "あ" * 299 + "い"
    assert calculate_similarity(long_text, edited) == 99

    result = find_best_match(f"<p>{edited}</p>", long_text)
    assert result is not None
    assert result.similarity == 99


def test_contains_normalized():
    assert contains_normalized("甲は、  本契約に  違反した場合", "甲は、 本契約に 違反")
    assert contains_normalized("<p>甲は、本契約に違反した場合</p>", "甲は、本契約に違反した")
    assert not contains_normalized("甲は、本契約に違反した場合", "乙は")


def test_iter_fragments_scans_headings_first():
    kinds = [kind for kind, _ in iter_fragments(CONTRACT_HTML)]
    assert kinds == ["heading", "heading", "paragraph", "paragraph"]


def test_iter_fragments_allows_inline_markup_but_not_nested_blocks():
    html = "<p>甲は<ins>速やかに</ins>支払う。<br></p><p>乙は受領する。</p>"
    inners = [m.group(2) for kind, m in iter_fragments(html) if kind == "paragraph"]
    assert inners == ["甲は<ins>速やかに</ins>支払う。<br>", "乙は受領する。"]


def test_find_best_match_exact():
    result = find_best_match(CONTRACT_HTML, "甲は、本契約に違反した場合、乙に生じた一切の損害を賠償するものとする。")
    assert result is not None
    assert result.similarity == 100
    assert result.tag_name == "p"
    assert CONTRACT_HTML[result.start_offset : result.end_offset] == result.matched_fragment


def test_find_best_match_heading():
    result = find_best_match("<h3>第10条（損害賠償）</h3>", "第10条（損害賠償）")
    assert result is not None
    assert result.similarity == 100
    assert result.fragment_kind == "heading"
    assert result.open_tag == "<h3>"


def test_find_best_match_whitespace_drift():
    result = find_best_match(CONTRACT_HTML, "甲は、  本契約に  違反した場合、  乙に生じた一切の損害を賠償するものとする。")
    assert result is not None
    assert result.similarity > 90


def test_find_best_match_reworded():
    result = find_best_match(
        CONTRACT_HTML,
        "甲は、本契約に違反した場合、乙に生じた直接かつ現実の損害を賠償するものとする。",
        70,
    )
    assert result is not None
    assert result.similarity > 70
    assert "一切の損害" in result.inner_text


def test_find_best_match_containment_scores():
    html = '<p class="clause">甲は乙に対し、本契約に基づく報酬を支払う。</p>'
    inside = find_best_match(html, "本契約に基づく報酬")
    assert inside is not None
    assert inside.similarity == 95
    assert inside.open_tag == '<p class="clause">'

    around = find_best_match(html, "第3条 甲は乙に対し、本契約に基づく報酬を支払う。なお、振込手数料は甲の負担とする。")
    assert around is not None
    assert around.similarity == 90


def test_find_best_match_below_threshold():
    assert find_best_match(CONTRACT_HTML, "完全に異なるテキスト内容です。", 80) is None
    assert find_best_match(CONTRACT_HTML, "") is None
    assert find_best_match("", "甲は") is None


def test_find_best_match_skips_empty_fragments():
    html = "<p></p><p>乙は、本契約に基づく義務を履行しなければならない。</p>"
    result = find_best_match(html, "乙は、本契約に基づく義務を履行しなければならない。")
    assert result is not None
    assert result.start_offset == len("<p></p>")


def test_find_by_prefix():
    html = """
    <p>甲は、本契約に違反した場合、乙に生じた一切の損害を賠償するものとする。</p>
    <p>乙は、本契約に基づく義務を履行しなければならない。</p>
    """
    result = find_by_prefix(html, "甲は、本契約に違反した場合、乙に生じた一切の損害を賠償するものとする。", 15)
    assert result is not None
    assert result.similarity > 80

    assert find_by_prefix(html, "完全に異なるテキスト内容です。", 15) is None
    assert find_by_prefix(html, "短い", 15) is None


def test_find_by_prefix_tolerates_drifted_tail():
    html = "<p>第5条 乙は、甲の事前の書面による承諾なく、本契約上の地位を第三者に譲渡してはならない。</p>"
    result = find_by_prefix(html, "第5条 乙は、甲の事前の書面による承諾なく、本契約上の地位を第三者に譲渡できない。")
    assert result is not None
    assert 80 <= result.similarity < 100
