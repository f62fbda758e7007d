"""
Gemini-native tools. They are declared to the API and run server-side.
"""
from ...tools.tool import Tool


class GoogleSearchTool(Tool):
    """Gemini built-in Google search grounding."""
    name = "google_search"
    description = "Gemini built-in Google search capability"
    builtin = "google_search"
    provider = "gemini"


class UrlContextTool(Tool):
    """Lets Gemini fetch and read URLs mentioned in the prompt."""
    name = "url_context"
    description = "Gemini built-in URL context capability"
    builtin = "url_context"
    provider = "gemini"
