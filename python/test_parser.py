import pytest

from keiyaku.normalize import enhanced_text_processing
from keiyaku.structure.editing import (
    delete_article,
    edit_article_by_number,
    find_article_by_id,
    find_article_by_number,
    insert_article,
    replace_article_content,
    update_article,
    update_paragraph,
)
from keiyaku.structure.numerals import kanji_to_int
from keiyaku.structure.parser import parse_contract_text, parse_paragraphs, prepare_text
from keiyaku.structure.render import structure_to_html, structure_to_text, text_to_html
from keiyaku.structure.signature import find_signature_start, parse_signature_section

CONTRACT_TEXT = """業務委託契約書
株式会社A（以下「甲」という。）と株式会社B（以下「乙」という。）は、次のとおり契約を締結する。

第1条（目的）
本契約は、甲が乙に業務を委託する条件を定める。

第2条（報酬）
1. 甲は乙に対し、報酬として月額10万円を支払う。
2 乙は、前項の報酬を受領する。

以上、本契約の成立を証するため本書2通を作成し、各1通を保有する。
令和6年4月1日

甲
住所：東京都千代田区1-1
名称：株式会社A

乙
住所：大阪府大阪市北区2-2
名称：株式会社B"""


def test_parse_contract_text():
    structure = parse_contract_text(CONTRACT_TEXT, source_file_name="contract.pdf", page_count=2)

    assert structure.title == "業務委託契約書"
    assert structure.preamble == "株式会社A（以下「甲」という。）と株式会社B（以下「乙」という。）は、次のとおり契約を締結する。"
    assert [(a.number, a.title) for a in structure.articles] == [(1, "目的"), (2, "報酬")]

    first = structure.articles[0]
    assert len(first.paragraphs) == 1
    assert first.paragraphs[0].number is None
    assert first.paragraphs[0].content == "本契約は、甲が乙に業務を委託する条件を定める。"

    second = structure.articles[1]
    assert [(p.number, p.content) for p in second.paragraphs] == [
        (1, "甲は乙に対し、報酬として月額10万円を支払う。"),
        (2, "乙は、前項の報酬を受領する。"),
    ]

    assert structure.metadata.source_file_name == "contract.pdf"
    assert structure.metadata.page_count == 2
    assert structure.metadata.extraction_method == "text"


def test_parse_signature_block():
    signature = parse_contract_text(CONTRACT_TEXT).signature
    assert signature is not None
    assert signature.closing_text == "以上、本契約の成立を証するため本書2通を作成し、各1通を保有する。"
    assert signature.date == "令和6年4月1日"
    assert [(p.role, p.address, p.name) for p in signature.parties] == [
        ("甲", "東京都千代田区1-1", "株式会社A"),
        ("乙", "大阪府大阪市北区2-2", "株式会社B"),
    ]


def test_unlabelled_party_blocks_after_normalization():
    raw = (
        "業務委託契約書\n"
        "第1条（目的）\n"
        "甲は、乙に対し、本契約に定める業務を委託し、乙はこれを受託する。\n"
        "以上、本契約締結の証として本書2通を作成し、\n"
        "甲乙記名押印の上、各1通を保有する。\n"
        "令和6年4月1日\n"
        "甲\n"
        "東京都千代田区丸の内1-1-1\n"
        "株式会社A\n"
        "代表取締役 山田太郎\n"
        "乙\n"
        "大阪府大阪市北区梅田2-2-2\n"
        "合同会社B\n"
        "代表社員 鈴木花子\n"
    )
    structure = parse_contract_text(enhanced_text_processing(raw))

    assert structure.metadata.confidence.signature == "role_markers"
    assert [(p.role, p.address, p.name, p.representative) for p in structure.signature.parties] == [
        ("甲", "東京都千代田区丸の内1-1-1", "株式会社A", "代表取締役山田太郎"),
        ("乙", "大阪府大阪市北区梅田2-2-2", "合同会社B", "代表社員鈴木花子"),
    ]


def test_confidence_for_a_clean_contract():
    confidence = parse_contract_text(CONTRACT_TEXT).metadata.confidence
    assert confidence.title == "contract_title"
    assert confidence.articles == "headings"
    assert confidence.signature == "role_markers"
    assert confidence.score == 1.0


def test_parse_after_normalization():
    raw = (
        "業務委託契約書\n"
        "第1条（目的） 本契約は、甲が乙に業務を委託する条件を定める。\n"
        "第2条（報酬）\n"
        "1. 甲は乙に対し、報酬として月額\n"
        "10万円を支払う。\n"
        "- 1 -\n"
        "以上、本契約の成立を証するため本書2通を作成する。\n"
        "令和6年4月1日\n"
        "甲 住所：東京都千代田区1-1\n"
        "名称：株式会社A\n"
    )
    structure = parse_contract_text(enhanced_text_processing(raw))
    assert [a.title for a in structure.articles] == ["目的", "報酬"]
    assert structure.articles[1].paragraphs[0].content == "甲は乙に対し、報酬として月額10万円を支払う。"
    assert structure.signature.parties[0].role == "甲"
    assert structure.signature.parties[0].name == "株式会社A"


def test_kanji_and_fullwidth_article_numbers():
    text = "第十条（準拠法）\n本契約は日本法に準拠する。\n第十一条（管轄）\n東京地方裁判所を管轄裁判所とする。\n第１２条（協議）\n誠実に協議する。"
    structure = parse_contract_text(text)
    assert [a.number for a in structure.articles] == [10, 11, 12]


def test_kanji_to_int():
    assert kanji_to_int("十") == 10
    assert kanji_to_int("二十三") == 23
    assert kanji_to_int("百五") == 105
    assert kanji_to_int("１２") == 12
    assert kanji_to_int("〇") == 1


def test_bracketless_heading():
    structure = parse_contract_text("第3条 甲は、乙に対し報告する。\n第4条\n乙は受領する。")
    assert [(a.number, a.title) for a in structure.articles] == [(3, ""), (4, "")]
    assert structure.articles[0].paragraphs[0].content == "甲は、乙に対し報告する。"


def test_no_headings_becomes_one_article():
    structure = parse_contract_text("甲は乙に対し、以下の業務を委託する。\n乙はこれを受託する。")
    assert len(structure.articles) == 1
    assert structure.articles[0].number == 1
    assert structure.articles[0].title == "本文"
    assert structure.metadata.confidence.articles == "synthetic"
    assert structure.signature is None
    assert structure.metadata.confidence.signature == "absent"


def test_empty_text_still_yields_a_tree():
    structure = parse_contract_text("")
    assert structure.title == "契約書"
    assert structure.articles == []
    assert structure.metadata.confidence.articles == "empty"
    assert structure.metadata.confidence.score == 0.12


def test_parse_paragraphs_with_items():
    paragraphs = parse_paragraphs("甲は次の業務を行う。\n(1) 調査\n(2) 報告書の作成\nただし書面による。\n2. 乙は協力する。")
    assert len(paragraphs) == 2
    assert paragraphs[0].number is None
    assert [(i.number, i.content) for i in paragraphs[0].items] == [(1, "調査"), (2, "報告書の作成\nただし書面による。")]
    assert paragraphs[1].number == 2
    assert paragraphs[1].items is None


def test_prepare_text():
    assert prepare_text("第１条 （目的）\n本 契 約\n\n\n\n以上") == "第1条 （目的）\n本契約\n\n以上"


def test_signature_fallback_tiers():
    section, tier = parse_signature_section("本契約締結の証として本書を作成する。\n甲：東京都港区1-1 株式会社C")
    assert tier == "role_markers"
    assert section.parties[0].address == "東京都港区1-1 株式会社C"

    section, tier = parse_signature_section("以上、本書2通を作成する。 甲 株式会社D 乙 株式会社E")
    assert tier == "pattern_fallback"
    assert [p.role for p in section.parties] == ["甲", "乙"]

    section, tier = parse_signature_section("以上、本書2通を作成する。甲乙記名押印する。")
    assert tier == "placeholder"
    assert [p.role for p in section.parties] == ["甲", "乙"]


def test_pattern_fallback_splits_a_fused_party_line():
    section, tier = parse_signature_section(
        "以上、本書2通を作成する。\n"
        "甲 東京都千代田区丸の内1-1-1株式会社A代表取締役山田太郎\n"
        "乙 住所：大阪府大阪市北区2-2 合同会社B 代表社員 鈴木花子"
    )
    assert tier == "pattern_fallback"
    assert [(p.role, p.address, p.name, p.representative) for p in section.parties] == [
        ("甲", "東京都千代田区丸の内1-1-1", "株式会社A", "代表取締役山田太郎"),
        ("乙", "大阪府大阪市北区2-2", "合同会社B", "代表社員 鈴木花子"),
    ]


def test_marker_tier_keeps_the_representative_title():
    section, _ = parse_signature_section("以上、本書2通を作成する。\n甲\n代表取締役 山田太郎\n乙\n代表者：鈴木花子")
    assert [p.representative for p in section.parties] == ["代表取締役 山田太郎", "鈴木花子"]


def test_find_signature_start():
    text = "第1条（目的）\n本契約は…\n以上、本契約の成立を証するため"
    assert find_signature_start(text) == text.index("以上")
    assert find_signature_start("第1条（目的）") == -1


def test_editing_returns_new_trees():
    structure = parse_contract_text(CONTRACT_TEXT)
    article = find_article_by_number(structure, 2)
    assert find_article_by_id(structure, article.id) == article

    renamed = update_article(structure, article.id, title="対価")
    assert find_article_by_number(renamed, 2).title == "対価"
    assert find_article_by_number(structure, 2).title == "報酬"

    paragraph = article.paragraphs[1]
    changed = update_paragraph(structure, article.id, paragraph.id, "乙は受領する。")
    assert find_article_by_number(changed, 2).paragraphs[1].content == "乙は受領する。"
    assert find_article_by_number(structure, 2).paragraphs[1].content == "乙は、前項の報酬を受領する。"

    replaced = replace_article_content(structure, article.id, "1. 甲は支払う。\n2. 乙は受領する。\n3. 税は甲の負担とする。")
    assert [p.number for p in find_article_by_number(replaced, 2).paragraphs] == [1, 2, 3]


def test_insert_and_delete_renumber():
    structure = parse_contract_text(CONTRACT_TEXT)

    inserted = insert_article(structure, 1, "定義", "本契約で用いる用語の定義は次のとおりとする。")
    assert [(a.number, a.title) for a in inserted.articles] == [(1, "目的"), (2, "定義"), (3, "報酬")]

    at_top = insert_article(structure, 0, "前提")
    assert [a.title for a in at_top.articles] == ["前提", "目的", "報酬"]
    assert at_top.articles[0].paragraphs[0].content == ""

    appended = insert_article(structure, 99, "雑則")
    assert [a.number for a in appended.articles] == [1, 2, 3]
    assert appended.articles[-1].title == "雑則"

    deleted = delete_article(inserted, inserted.articles[0].id)
    assert [(a.number, a.title) for a in deleted.articles] == [(1, "定義"), (2, "報酬")]
    assert len(structure.articles) == 2


def test_edit_article_by_number():
    structure = parse_contract_text(CONTRACT_TEXT)

    replaced = edit_article_by_number(structure, 2, "replace", title="対価", content="甲は乙に対し、報酬を支払う。")
    assert [(a.number, a.title) for a in replaced.articles] == [(1, "目的"), (2, "対価")]
    assert [p.content for p in replaced.articles[1].paragraphs] == ["甲は乙に対し、報酬を支払う。"]

    inserted = edit_article_by_number(structure, 1, "insert", title="定義", content="本契約の用語を定める。")
    assert [(a.number, a.title) for a in inserted.articles] == [(1, "目的"), (2, "定義"), (3, "報酬")]

    deleted = edit_article_by_number(structure, 1, "delete")
    assert [(a.number, a.title) for a in deleted.articles] == [(1, "報酬")]

    with pytest.raises(ValueError):
        edit_article_by_number(structure, 9, "delete")
    with pytest.raises(ValueError):
        edit_article_by_number(structure, 1, "rename")


def test_structure_to_html():
    structure = parse_contract_text(CONTRACT_TEXT)
    html = structure_to_html(structure)
    article = structure.articles[1]

    assert html.startswith("<h1>業務委託契約書</h1>")
    assert f'<h3 data-article-id="{article.id}">第2条（報酬）</h3>' in html
    assert f'<p data-paragraph-id="{article.paragraphs[0].id}">1. 甲は乙に対し' in html
    assert "<p>令和6年4月1日</p>" in html
    assert "<p>令和6年4月1日</p>" not in structure_to_html(structure, include_signature=False)


def test_structure_to_text_parses_back():
    structure = parse_contract_text(CONTRACT_TEXT)
    again = parse_contract_text(structure_to_text(structure))
    assert again.title == structure.title
    assert [(a.number, a.title) for a in again.articles] == [(a.number, a.title) for a in structure.articles]
    assert [p.content for p in again.articles[1].paragraphs] == [p.content for p in structure.articles[1].paragraphs]
    assert [p.role for p in again.signature.parties] == ["甲", "乙"]


def test_text_to_html():
    html = text_to_html(CONTRACT_TEXT)
    lines = html.split("\n")
    assert lines[0] == "<h1>業務委託契約書</h1>"
    assert "<h3>第1条（目的）</h3>" in lines
    assert '<div class="signature-section">' in lines
    assert lines.index('<div class="signature-section">') < lines.index('<p class="signature-date">令和6年4月1日</p>')
    assert '<p class="party-role">甲</p>' in lines
    assert lines[-1] == "</div>"


def test_text_to_html_passes_tables_through():
    html = text_to_html("前文。\n<table>\n<tr><td>a</td><td>b</td></tr>\n</table>")
    assert html.split("\n") == ["<p>前文。</p>", "<table>", "<tr><td>a</td><td>b</td></tr>", "</table>"]
