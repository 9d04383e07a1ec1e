import base64
import html
import logging
import mimetypes
from typing import List

from core.models import NearDuplicate

logger = logging.getLogger(__name__)


class DuplicateReportGenerator:
    """
    Generate HTML reports so near-duplicates can be verified by eye
    """

    def generate_report(self,
                        project_id: str,
                        query_name: str,
                        query_data: bytes,
                        duplicates: List[NearDuplicate],
                        output_path: str = "duplicate_report.html") -> str:
        """
        Generate HTML report with the query image and each candidate
        """
        html_content = self._create_html_template()

        verified = sum(1 for d in duplicates if d.verified)

        # Add statistics
        stats_html = f"""
        <div class="statistics">
            <h2>Near-Duplicate Summary</h2>
            <p><strong>Project:</strong> {html.escape(project_id)}</p>
            <p><strong>Candidates:</strong> {len(duplicates)}</p>
            <p><strong>SSIM verified:</strong> {verified}</p>
        </div>
        """

        query_html = f"""
        <div class="representative">
            <h4>Query</h4>
            {self._img_tag(query_name, query_data)}
            <p>{html.escape(query_name)}</p>
        </div>
        """

        groups_html = "<div class='duplicates-list'>"
        for duplicate in duplicates:
            groups_html += self._create_item_html(duplicate)
        groups_html += "</div>"

        # Combine and save
        final_html = html_content.replace("{{STATS}}", stats_html)
        final_html = final_html.replace("{{QUERY}}", query_html)
        final_html = final_html.replace("{{GROUPS}}", groups_html)

        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(final_html)

        logger.info(f"Report generated: {output_path}")
        return output_path

    def _create_item_html(self, duplicate: NearDuplicate) -> str:
        """Create HTML for one candidate"""
        ssim_text = "n/a" if duplicate.ssim is None else f"{duplicate.ssim:.3f}"
        css_class = "duplicate-item verified" if duplicate.verified else "duplicate-item"

        return f"""
        <div class="{css_class}">
            {self._img_tag(duplicate.identifier, duplicate.image_data)}
            <p>#{duplicate.result.rank} {html.escape(duplicate.identifier)}</p>
            <p class="file-info">Distance: {duplicate.distance:.2f} | SSIM: {ssim_text}</p>
        </div>
        """

    @staticmethod
    def _img_tag(name: str, data: bytes) -> str:
        if not data:
            return "<p class='file-info'>(image not attached)</p>"
        mime = mimetypes.guess_type(name)[0] or 'application/octet-stream'
        encoded = base64.b64encode(data).decode('ascii')
        return f'<img src="data:{mime};base64,{encoded}" />'

    def _create_html_template(self) -> str:
        """HTML template for report"""
        return """
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <title>Near-Duplicate Report</title>
            <style>
                body { font-family: Arial, sans-serif; margin: 20px; }
                .statistics { background: #f0f0f0; padding: 20px; border-radius: 5px; }
                .representative { background: #e8f5e9; padding: 10px; margin: 20px 0; }
                .duplicates-list { display: grid; grid-template-columns: repeat(auto-fill, minmax(200px, 1fr)); gap: 10px; margin-top: 10px; }
                .duplicate-item { border: 1px solid #ddd; padding: 10px; text-align: center; }
                .verified { border-color: #4caf50; }
                img { max-width: 100%; height: auto; max-height: 200px; object-fit: contain; }
                .file-info { font-size: 0.9em; color: #666; }
            </style>
        </head>
        <body>
            <h1>Near-Duplicate Verification Report</h1>
            {{STATS}}
            {{QUERY}}
            {{GROUPS}}
        </body>
        </html>
        """
