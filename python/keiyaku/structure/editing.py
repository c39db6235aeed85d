"""
Pure operations on a ContractStructure. Every function returns a new tree; the
input is never modified.
"""

from typing import Optional

import structlog

from keiyaku.models import Article, ContractStructure, Paragraph
from keiyaku.structure.parser import _new_id, parse_paragraphs

logger = structlog.get_logger(__name__)


def find_article_by_number(structure: ContractStructure, number: int) -> Optional[Article]:
    return next((a for a in structure.articles if a.number == number), None)


def find_article_by_id(structure: ContractStructure, article_id: str) -> Optional[Article]:
    return next((a for a in structure.articles if a.id == article_id), None)


def _with_articles(structure: ContractStructure, articles) -> ContractStructure:
    return structure.model_copy(update={"articles": articles}, deep=True)


def update_article(structure: ContractStructure, article_id: str, **changes) -> ContractStructure:
    """Replaces fields (title, paragraphs, ...) of one article. Unknown ids leave the tree as is."""
    articles = [a.model_copy(update=changes) if a.id == article_id else a for a in structure.articles]
    return _with_articles(structure, articles)


def replace_article_content(structure: ContractStructure, article_id: str, content: str) -> ContractStructure:
    """Re-parses free text into the article's paragraphs and items."""
    return update_article(structure, article_id, paragraphs=parse_paragraphs(content))


def update_paragraph(
    structure: ContractStructure,
    article_id: str,
    paragraph_id: str,
    content: str,
) -> ContractStructure:
    def patch(article: Article) -> Article:
        if article.id != article_id:
            return article
        paragraphs = [
            p.model_copy(update={"content": content}) if p.id == paragraph_id else p for p in article.paragraphs
        ]
        return article.model_copy(update={"paragraphs": paragraphs})

    return _with_articles(structure, [patch(a) for a in structure.articles])


def renumber_articles(structure: ContractStructure) -> ContractStructure:
    """Numbers articles 1..n in their current order."""
    articles = [a.model_copy(update={"number": i}) for i, a in enumerate(structure.articles, start=1)]
    return _with_articles(structure, articles)


def insert_article(
    structure: ContractStructure,
    after_number: int,
    title: str,
    content: str = "",
) -> ContractStructure:
    """
    Inserts a new article after the article numbered `after_number` (0 inserts at the top)
    and renumbers. An unknown `after_number` appends at the end.
    """
    paragraphs = parse_paragraphs(content) or [Paragraph(id=_new_id(), content="")]
    new_article = Article(id=_new_id(), number=after_number + 1, title=title, paragraphs=paragraphs)

    articles = list(structure.articles)
    if after_number <= 0:
        index = 0
    else:
        index = next((i + 1 for i, a in enumerate(articles) if a.number == after_number), len(articles))
    articles.insert(index, new_article)

    logger.debug(f"Inserted article '{title}' at position {index + 1}")
    return renumber_articles(_with_articles(structure, articles))


def delete_article(structure: ContractStructure, article_id: str) -> ContractStructure:
    articles = [a for a in structure.articles if a.id != article_id]
    return renumber_articles(_with_articles(structure, articles))


def edit_article_by_number(
    structure: ContractStructure,
    number: int,
    operation: str,
    title: Optional[str] = None,
    content: Optional[str] = None,
) -> ContractStructure:
    """
    Number-addressed front end to the operations above, for callers that only see
    rendered text:
      - "replace": re-parses `content` into the article and/or retitles it
      - "delete": removes the article and renumbers
      - "insert": adds a new article after `number` (0 for the top)
    Raises ValueError for an unknown operation or article number.
    """
    if operation == "insert":
        return insert_article(structure, number, title or "", content or "")

    article = find_article_by_number(structure, number)
    if article is None:
        raise ValueError(f"No article numbered {number}")

    if operation == "delete":
        return delete_article(structure, article.id)
    if operation == "replace":
        updated = structure
        if content is not None:
            updated = replace_article_content(updated, article.id, content)
        if title is not None:
            updated = update_article(updated, article.id, title=title)
        return updated

    raise ValueError(f"Unknown operation: {operation}")
