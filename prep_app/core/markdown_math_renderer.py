"""Markdown + LaTeX rendering for question, option and explanation text.

Question text is authored (or generated) as markdown that may contain
``$...$`` math. The server renders it to HTML fragments once per request and
leaves the math delimiters untouched for MathJax on the client.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt

from prep_app.core.models import Question


@dataclass(slots=True)
class MarkdownMathRenderer:
    """Converts markdown-with-math into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str) -> str:
        """Render a markdown string into an HTML fragment."""

        sanitized = markdown_text.strip() or ""
        if not sanitized:
            return "<p><em>No content provided.</em></p>"
        return self._markdown.render(sanitized)

    def render_inline(self, markdown_text: str) -> str:
        """Render short text such as an option without a wrapping paragraph."""

        return self._markdown.renderInline(markdown_text.strip())

    def render_question(self, question: Question) -> dict[str, object]:
        return {
            "question_html": self.render_fragment(question.question_text),
            "options_html": [self.render_inline(option) for option in question.options],
        }


# MarkdownIt is safe to share for read-only renders across request threads.
renderer = MarkdownMathRenderer()
