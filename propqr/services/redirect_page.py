import html
import json

from propqr.services.redirect_service import RedirectPlan

_STYLE = """
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
               margin: 0; min-height: 100vh; display: flex; align-items: center; justify-content: center;
               background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; text-align: center; }
        .container { max-width: 480px; padding: 40px 20px; }
        .property-name { font-size: 1.4em; margin: 20px 0; }
        .links { display: flex; gap: 16px; justify-content: center; flex-wrap: wrap; margin-top: 24px; }
        .link-button { background: rgba(255,255,255,0.2); color: white; text-decoration: none;
                       padding: 12px 24px; border-radius: 8px; border: 1px solid rgba(255,255,255,0.3); }
        .countdown { margin-top: 20px; font-size: 0.9em; opacity: 0.8; }
"""


def _js_string(value: str) -> str:
    # <script> 안에서 안전하도록 '</' 이스케이프
    return json.dumps(value).replace("</", "<\\/")


def render_redirect_page(plan: RedirectPlan, delay_seconds: int = 3) -> str:
    """주 URL 로 delay_seconds 후 이동. dual 이면 보조 URL 을 새 창으로 연다."""
    name = html.escape(plan.display_name)
    primary = html.escape(plan.primary_url, quote=True)

    links = f'<a href="{primary}" class="link-button" target="_blank" rel="noopener">View Property Details</a>'
    secondary_script = ""
    if plan.secondary_url:
        secondary = html.escape(plan.secondary_url, quote=True)
        links += f'\n            <a href="{secondary}" class="link-button" target="_blank" rel="noopener">View on Blockchain</a>'
        secondary_script = f"setTimeout(function() {{ window.open({_js_string(plan.secondary_url)}, '_blank'); }}, 1000);"

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{name}</title>
    <style>{_STYLE}    </style>
</head>
<body>
    <div class="container" data-redirect-type="{plan.redirect_type}">
        <div class="property-name">{name}</div>
        <p>You're being redirected to view this property...</p>
        <div class="links">
            {links}
        </div>
        <div class="countdown" id="countdown">Redirecting in {delay_seconds} seconds...</div>
    </div>
    <script>
        setTimeout(function() {{
            window.location.href = {_js_string(plan.primary_url)};
        }}, {delay_seconds * 1000});
        {secondary_script}
    </script>
</body>
</html>"""


def render_error_page(title: str, message: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{html.escape(title)}</title>
    <style>{_STYLE}    </style>
</head>
<body>
    <div class="container">
        <div class="property-name">{html.escape(title)}</div>
        <p>{html.escape(message)}</p>
    </div>
</body>
</html>"""
