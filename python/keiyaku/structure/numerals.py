from keiyaku.utils.text import fold_digits

_KANJI_VALUES = {
    "一": 1, "二": 2, "三": 3, "四": 4, "五": 5,
    "六": 6, "七": 7, "八": 8, "九": 9,
    "十": 10, "百": 100,
}  # fmt: skip


def kanji_to_int(numeral: str) -> int:
    """
    Converts the numerals found in article headings: ASCII or full-width digits, or
    kanji built from 一..九 with the place values 十 and 百 (e.g. 十 = 10, 二十三 = 23,
    百五 = 105). This is not a general numeral parser: 千, 万 and positional forms
    like 一〇 are not supported. Anything unparseable becomes 1.
    """
    folded = fold_digits(numeral.strip())
    if folded.isascii() and folded.isdigit():
        return int(folded)

    result = 0
    digit = 0
    for char in folded:
        value = _KANJI_VALUES.get(char)
        if value is None:
            continue
        if value in (10, 100):
            result += (digit or 1) * value
            digit = 0
        else:
            digit = value

    return (result + digit) or 1
