"""Markdown + LaTeX rendering of question content for the student page.

The math itself is left as ``$...$`` text inside the HTML; the page loads
MathJax and typesets it in the browser.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt

from exam_app.core.models import Question


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

        sanitized = markdown_text.strip()
        if not sanitized:
            return "<p><em>No content provided.</em></p>"
        return self._markdown.render(sanitized)

    def render_inline(self, markdown_text: str) -> str:
        """Render a short markdown string (an option label) without a wrapping paragraph."""

        return self._markdown.renderInline(markdown_text.strip())

    def render_question(self, question: Question) -> tuple[str, list[str]]:
        """Return the question body and its option labels as HTML."""

        return (
            self.render_fragment(question.text),
            [self.render_inline(option) for option in question.options],
        )


# Shared instance; MarkdownIt is safe to reuse for read-only renders.
renderer = MarkdownMathRenderer()
