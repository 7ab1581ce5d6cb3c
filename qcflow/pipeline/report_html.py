
from __future__ import annotations
from collections import Counter
from typing import List, Dict, Any, Optional, Sequence
from jinja2 import Template
from ..models.schemas import CodedUnit
from ..utils.file_io import write_text
from .resolution import Taxonomy
from .synthesis import LOST_CONTEXT_TEXT

HTML = """
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8"/>
<title>qcflow Coding Review</title>
<style>
body { font-family: -apple-system, BlinkMacSystemFont, Segoe UI, Roboto, Helvetica, Arial, sans-serif; padding: 24px; }
table { border-collapse: collapse; width: 100%; margin: 12px 0; }
th, td { border: 1px solid #ddd; padding: 8px; vertical-align: top; }
th { background: #f7f7f7; }
.badge { display: inline-block; padding: 2px 8px; border-radius: 12px; background: #eef; margin-right: 6px; }
.lost { color: #b00; font-weight: bold; }
</style>
</head>
<body>
<h1>qcflow Coding Review</h1>
<h2>Run Stats</h2>
<ul>
{% for k,v in stats.items() if k != "stage_usage" and k != "failed_unit_ids" %}
<li><b>{{k}}</b>: {{v}}</li>
{% endfor %}
</ul>
{% if stats.get("failed_unit_ids") %}
<p>Units missing because their batch failed: {{ stats["failed_unit_ids"] | join(", ") }}</p>
{% endif %}

<h2>Distribution</h2>
<table>
<tr><th>Theme</th><th>Sub-theme</th><th>Units</th><th>Peer validated</th></tr>
{% for row in distribution %}
<tr><td>{{row.theme}}</td><td>{{row.sub_theme}}</td><td>{{row.count}}</td><td>{{row.validated}}</td></tr>
{% endfor %}
</table>

<h2>Flagged for Review ({{ flagged | length }})</h2>
<table>
<tr><th>unit</th><th>text</th><th>coding</th><th>confidence</th><th>reasoning</th></tr>
{% for u in flagged %}
<tr>
<td>{{u.id}}</td>
<td{% if u.text == lost_text %} class="lost"{% endif %}>{{u.text}}</td>
<td><span class="badge">{{u.theme_id}}</span><span class="badge">{{u.sub_theme_id}}</span></td>
<td>{{ "%.2f" | format(u.confidence) }}</td>
<td>{{u.reasoning}}</td>
</tr>
{% endfor %}
</table>
</body>
</html>
"""

def needs_review(unit: CodedUnit) -> bool:
    return not unit.strict_fit or unit.text == LOST_CONTEXT_TEXT

def distribution(units: Sequence[CodedUnit], taxonomy: Taxonomy) -> List[Dict[str, Any]]:
    counts = Counter((u.theme_id, u.sub_theme_id) for u in units)
    validated = Counter((u.theme_id, u.sub_theme_id) for u in units if u.peer_validated)
    rows = []
    for theme in taxonomy.themes:
        for sub in theme.sub_themes:
            key = (theme.id, sub.id)
            rows.append({"theme": theme.name, "sub_theme": sub.name, "count": counts.get(key, 0), "validated": validated.get(key, 0)})
    return rows

def emit_review_html(out_path: str, units: Sequence[CodedUnit], taxonomy: Taxonomy, stats: Optional[Dict[str, Any]] = None):
    flagged = sorted((u for u in units if needs_review(u)), key=lambda u: u.confidence)
    html = Template(HTML, autoescape=True).render(
        stats=stats or {},
        distribution=distribution(units, taxonomy),
        flagged=flagged,
        lost_text=LOST_CONTEXT_TEXT,
    )
    write_text(out_path, html)
