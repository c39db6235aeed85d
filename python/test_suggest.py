from keiyaku.markup import finalize_changes, strip_html
from keiyaku.models import Suggestion
from keiyaku.suggest import apply_suggestion, apply_suggestions

HTML = (
    "<h3>第10条（損害賠償）</h3>\n"
    "<p>甲は、本契約に違反した場合、乙に生じた一切の損害を賠償するものとする。</p>\n"
    "<h3>第11条（秘密保持）</h3>\n"
    "<p>甲及び乙は、本契約に関連して知り得た相手方の秘密情報を第三者に開示してはならない。</p>"
)


def test_exact_match_marks_only_the_change():
    suggestion = Suggestion(original_text="一切の損害", suggested_text="直接かつ現実の損害")
    result = apply_suggestion(HTML, suggestion)

    assert result.applied
    assert result.strategy == "exact"
    assert '<mark class="ai-suggestion track-pending">' in result.content
    assert "<del" in result.content and "<ins" in result.content
    assert "乙に生じた直接かつ現実の損害を賠償する" in strip_html(finalize_changes(result.content))


def test_fuzzy_match_replaces_the_fragment_inner_text():
    suggestion = Suggestion(
        original_text="甲は、  本契約に  違反した場合、乙に生じた一切の損害を賠償するものとする。",
        suggested_text="甲は、本契約に違反した場合、乙に生じた直接かつ現実の損害を賠償するものとする。",
    )
    result = apply_suggestion(HTML, suggestion)

    assert result.applied
    assert result.strategy == "fuzzy"
    assert result.match.similarity > 90
    assert "<p><mark" in result.content
    assert "<h3>第10条（損害賠償）</h3>" in result.content
    assert "<p>甲は、本契約に違反した場合、乙に生じた直接かつ現実の損害を賠償するものとする。</p>" in finalize_changes(
        result.content
    )


def test_already_applied_is_left_alone():
    # The clause it quotes has since been rewritten into the suggested wording
    suggestion = Suggestion(
        original_text="甲及び乙は、本契約に関して知り得た相手方の秘密情報を開示してはならない。",
        suggested_text="甲及び乙は、本契約に関連して知り得た相手方の秘密情報を第三者に開示してはならない。",
    )
    result = apply_suggestion(HTML, suggestion)
    assert result.applied
    assert result.strategy == "already_applied"
    assert result.content == HTML

    content, applied, skipped = apply_suggestions(HTML, [suggestion])
    assert (content, applied, skipped) == (HTML, 1, 0)


def test_replacement_text_found_elsewhere_is_still_applied():
    html = "<p>甲は乙に対し、30日以内に支払う。</p><p>乙は60日以内に通知する。</p>"
    suggestion = Suggestion(original_text="甲は乙に対し、30日以内に支払う。", suggested_text="60日以内")

    result = apply_suggestion(html, suggestion)
    assert result.strategy == "exact"
    assert result.content != html
    assert finalize_changes(result.content) == "<p>60日以内</p><p>乙は60日以内に通知する。</p>"

    content, applied, skipped = apply_suggestions(html, [suggestion])
    assert (applied, skipped) == (1, 0)
    assert content == result.content


def test_shortening_suggestion_is_applied():
    html = "<p>甲は乙に対し、30日以内に支払う。ただし、乙が同意した場合はこの限りでない。</p>"
    suggestion = Suggestion(
        original_text="甲は乙に対し、30日以内に支払う。ただし、乙が同意した場合はこの限りでない。",
        suggested_text="甲は乙に対し、30日以内に支払う。",
    )
    result = apply_suggestion(html, suggestion)

    assert result.strategy == "exact"
    assert "<del" in result.content
    assert finalize_changes(result.content) == "<p>甲は乙に対し、30日以内に支払う。</p>"


def test_unmatched_suggestion_is_not_applied():
    result = apply_suggestion(HTML, Suggestion(original_text="存在しない条項の文言です。", suggested_text="置換"))
    assert not result.applied
    assert result.content == HTML

    result = apply_suggestion(HTML, Suggestion(original_text="  ", suggested_text="置換"))
    assert not result.applied


def test_batch_applies_non_overlapping_suggestions():
    suggestions = [
        Suggestion(original_text="一切の損害", suggested_text="通常の損害"),
        Suggestion(original_text="第三者に開示", suggested_text="第三者に開示又は漏洩"),
    ]
    content, applied, skipped = apply_suggestions(HTML, suggestions)
    assert (applied, skipped) == (2, 0)

    final = finalize_changes(content)
    assert "乙に生じた通常の損害を賠償する" in final
    assert "第三者に開示又は漏洩してはならない" in final


def test_batch_overlap_first_suggestion_wins():
    suggestions = [
        Suggestion(original_text="一切の損害", suggested_text="通常の損害"),
        Suggestion(
            original_text="甲は、本契約に違反した場合、乙に生じた一切の損害を賠償するものとする。",
            suggested_text="甲は、故意又は重過失により本契約に違反した場合に限り、損害を賠償する。",
        ),
        Suggestion(original_text="存在しない条項の文言です。", suggested_text="置換"),
    ]
    content, applied, skipped = apply_suggestions(HTML, suggestions)
    assert (applied, skipped) == (1, 2)
    assert "通常の損害" in finalize_changes(content)
    assert "故意又は重過失" not in content


def test_batch_of_nothing():
    assert apply_suggestions(HTML, []) == (HTML, 0, 0)
