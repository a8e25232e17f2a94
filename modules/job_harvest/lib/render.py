from __future__ import annotations

from . import utils
from .models import JobRecord


def build_table(records: list[JobRecord]) -> str:
    """
    One HTML table of new postings, in export order:

      Title | Company | Location | Tech | Link
    """
    row_html: list[str] = []
    for r in records:
        title = r.title or "(no title)"
        # Escape only the URL pieces and the text, NOT the <a> wrapper
        link_html = f'<a href="{utils.esc(r.link)}">{utils.esc(r.link)}</a>'
        row_html.append(
            "<tr>"
            f"<td>{utils.esc(title)}</td>"
            f"<td>{utils.esc(r.company)}</td>"
            f"<td>{utils.esc(r.location)}</td>"
            f"<td>{utils.esc(', '.join(r.tech_stack))}</td>"
            f"<td>{link_html}</td>"
            "</tr>"
        )
    return (
        "<table border='1' cellspacing='0' cellpadding='6'>"
        "<tr><th>Title</th><th>Company</th><th>Location</th><th>Tech</th><th>Link</th></tr>"
        + "".join(row_html)
        + "</table>"
    )


def wrap_document(content_html: str, *, heading: str | None = None, intro: str | None = None) -> str:
    parts: list[str] = ["<div>"]
    if heading:
        parts.append(f"<h2>{utils.esc(heading)}</h2>")
    if intro:
        parts.append(f"<p>{utils.esc(intro)}</p>")
    parts.append(content_html)
    parts.append("</div>")
    return "\n".join(parts)

