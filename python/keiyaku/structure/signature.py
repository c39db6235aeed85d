"""
Signature block handling: where it starts, and what can be read out of it.

Nothing here validates anything. A signature block that yields no parties still
produces a SignatureSection; the tier reached is reported so callers can tell a
clean parse from a guess.
"""

import re
from typing import List, Optional, Tuple

import structlog

from keiyaku.models import Party, SignatureSection

logger = structlog.get_logger(__name__)

CLOSING_PATTERNS = [
    re.compile(r"以上[、,\s]*本契約[のに]?[（(]?成立[）)]?[のを]?証[するとし]"),
    re.compile(r"本契約[のに]?[（(]?成立[）)]?[のを]?証[するとし]"),
    re.compile(r"(?:以上[、,\s]*)?本契約締結の証として"),
    re.compile(r"以上[、,\s]*本書[を\d]+通"),
]

DATE_PATTERNS = [
    re.compile(r"(?:令和|平成|昭和)\s*(?:\d+|元)\s*年\s*\d+\s*月\s*\d+\s*日"),
    re.compile(r"\d{4}\s*年\s*\d{1,2}\s*月\s*\d{1,2}\s*日"),
]

ROLES = ("甲", "乙", "丙")

_ROLE_MARKER = re.compile(r"^(甲|乙|丙)\s*(?:[：:]\s*(.*))?$")
_CORPORATE_FORMS = ("株式会社", "合同会社", "有限会社", "合資会社", "合名会社", "一般社団法人", "一般財団法人", "弁護士法人")
_PREFECTURE_PREFIX = re.compile(r"^(?:東京都|北海道|京都府|大阪府|[^\s]{2,3}県)")
_POSTAL_CODE = re.compile(r"^〒?\s*\d{3}-?\d{4}")
_LOCALITY_CHARS = re.compile(r"[県市区町村丁目番号]")

_ADDRESS_LABEL = re.compile(r"^(?:住所|所在地)[：:\s]*")
_NAME_LABEL = re.compile(r"^(?:名称|商号|氏名)[：:\s]*")
_REP_LABEL = re.compile(r"^(?:代表者[：:\s]*|代表[：:]\s*)")

# Fallback field captures stop at the next field cue so one fused line still splits
_FORMS = "|".join(_CORPORATE_FORMS)
_ROLE_TOKEN = re.compile(r"(?:^|(?<=[\s。、]))(甲|乙|丙)(?=[\s：:]|$|住所|所在地|名称|商号|氏名|代表|〒)", re.MULTILINE)
_NOT_CUE = rf"(?!{_FORMS}|代表|取締役|名称|商号|氏名|住所|所在地)\S"
_ADDRESS_FIELD = re.compile(rf"[：:\s]*(?:住所|所在地)?[：:\s]*((?:{_NOT_CUE})*?[都道府県](?:{_NOT_CUE})*)")
_NAME_FIELD = re.compile(rf"((?:(?!代表|取締役)[^\s\d\-－都道府県市区町村丁目番地号])*(?:{_FORMS})(?:(?!代表|取締役)\S)*)")
_REP_FIELD = re.compile(r"((?:代表|取締役)\S*(?:[ 　]+(?!住所|所在地|名称|商号)[^\s甲乙丙]\S*)?)")


def find_signature_start(text: str) -> int:
    """Index of the earliest closing phrase, or -1."""
    starts = [m.start() for m in (p.search(text) for p in CLOSING_PATTERNS) if m]
    return min(starts) if starts else -1


def separate_signature_section(text: str) -> Tuple[str, Optional[str]]:
    """Splits text into (main content, signature text or None)."""
    start = find_signature_start(text)
    if start == -1:
        return text, None
    return text[:start].strip(), text[start:]


def extract_closing_text(text: str) -> Optional[str]:
    match = re.match(r"^[^。]+。", text.strip())
    return match.group(0) if match else None


def extract_date(text: str) -> Optional[str]:
    for pattern in DATE_PATTERNS:
        match = pattern.search(text)
        if match:
            return re.sub(r"\s+", "", match.group(0))
    return None


def _classify_party_line(party: Party, line: str) -> None:
    """Assigns one signature line to address, name or representative."""
    if "住所" in line or "所在地" in line or _PREFECTURE_PREFIX.match(line) or _POSTAL_CODE.match(line):
        party.address = _ADDRESS_LABEL.sub("", line)
    elif "名称" in line or "商号" in line or any(form in line for form in _CORPORATE_FORMS):
        party.name = _NAME_LABEL.sub("", line)
    elif "代表" in line or "取締役" in line:
        party.representative = _REP_LABEL.sub("", line)
    elif not party.address and _LOCALITY_CHARS.search(line):
        # Unlabelled continuation of an address
        party.address = line


def parse_parties_by_markers(text: str) -> List[Party]:
    """Line-by-line: a bare role marker (甲 / 乙： ...) opens a record, following lines fill it."""
    parties: List[Party] = []
    current: Optional[Party] = None

    for raw in text.split("\n"):
        line = raw.strip()
        if not line:
            continue

        marker = _ROLE_MARKER.match(line)
        if marker:
            if current:
                parties.append(current)
            current = Party(role=marker.group(1))
            remainder = (marker.group(2) or "").strip()
            if remainder:
                _classify_party_line(current, remainder)
            continue

        if current:
            _classify_party_line(current, line)

    if current:
        parties.append(current)
    return parties


def _first_group(pattern: re.Pattern, text: str) -> Optional[str]:
    match = pattern.search(text)
    return match.group(1).strip() if match else None


def parse_parties_by_pattern(text: str) -> List[Party]:
    """
    Whole-text fallback: each role character standing on its own owns the text up to
    the next one, and the address, company and representative are cut out of it.
    The address ends at a corporate form, a title or whitespace; the company name is
    the token run holding the corporate form; the representative starts at 代表/取締役.
    """
    tokens = list(_ROLE_TOKEN.finditer(text))
    parties = []
    for role in ROLES:
        idx = next((i for i, token in enumerate(tokens) if token.group(1) == role), None)
        if idx is None:
            continue
        end = tokens[idx + 1].start() if idx + 1 < len(tokens) else len(text)
        segment = text[tokens[idx].end() : end]

        address = _first_group(_ADDRESS_FIELD, segment)
        rest = segment.replace(address, " ", 1) if address else segment
        name = _first_group(_NAME_FIELD, rest)
        representative = _first_group(_REP_FIELD, rest)
        if representative:
            representative = _REP_LABEL.sub("", representative) or None
        if address or name or representative:
            parties.append(Party(role=role, address=address, name=name, representative=representative))
    return parties


def parse_signature_section(text: str) -> Tuple[SignatureSection, str]:
    """
    Reads closing sentence, date and parties out of a signature block.
    Returns the section and the tier the party extraction reached:
    role_markers, pattern_fallback or placeholder.
    """
    closing_text = extract_closing_text(text)
    date = extract_date(text)

    parties = parse_parties_by_markers(text)
    tier = "role_markers"

    if not parties:
        parties = parse_parties_by_pattern(text)
        tier = "pattern_fallback"

    if not parties:
        parties = [Party(role=role) for role in ROLES if role in text]
        tier = "placeholder"
        logger.debug(f"No party details found, emitted {len(parties)} placeholder(s)")

    return SignatureSection(closing_text=closing_text, date=date, parties=parties), tier
