"""Client website summarization.

Fetches the intake website with httpx, reduces the HTML to labelled text
blocks and asks the LLM for a structured :class:`WebsiteContent`. Any
failure (network, HTML, LLM) yields ``None`` and the analysis proceeds
without website context.
"""

import logging
import re
from typing import Any, Optional

import httpx
from bs4 import BeautifulSoup

from va_advisor.config import get_settings
from va_advisor.models.intake import WebsiteContent
from va_advisor.services.llm import LLMClient
from va_advisor.services.llm.base_extractor import BaseLLMExtractor

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

_SECTION_HINTS = {
    "hero": ("hero", "banner", "masthead", "jumbotron"),
    "about": ("about", "story", "mission", "who-we-are"),
    "services": ("service", "offering", "solution", "product"),
    "team": ("team", "staff", "leadership", "people"),
    "values": ("value", "principle", "culture"),
    "contact": ("contact", "footer", "address"),
    "testimonials": ("testimonial", "review", "quote", "client-say"),
}

_SPA_MARKERS = ('id="root"', 'id="__next"', "ng-version", "ng-app")


def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def html_to_sections(html: str, max_chars: int = 20000) -> dict[str, Any]:
    """Reduce a page to ``{title, description, is_spa, sections, full_text}``."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "svg", "iframe"]):
        tag.decompose()

    title = _clean(soup.title.get_text()) if soup.title else ""
    description_tag = soup.find("meta", attrs={"name": "description"})
    description = _clean(description_tag.get("content", "")) if description_tag else ""

    sections: dict[str, str] = {}
    for name, hints in _SECTION_HINTS.items():
        chunks = []
        for element in soup.find_all(["section", "div", "header", "footer", "article"]):
            marker = " ".join(
                [element.get("id") or "", *(element.get("class") or [])]
            ).lower()
            if marker and any(hint in marker for hint in hints):
                text = _clean(element.get_text(" "))
                if text and text not in chunks:
                    chunks.append(text)
        if chunks:
            sections[name] = " ".join(chunks)[:3000]

    body = soup.body or soup
    return {
        "title": title,
        "description": description,
        "is_spa": any(marker in html for marker in _SPA_MARKERS),
        "sections": sections,
        "full_text": _clean(body.get_text(" "))[:max_chars],
    }


class WebsiteSummarizer(BaseLLMExtractor):
    """Turns a reduced page into a :class:`WebsiteContent`."""

    SYSTEM_PROMPT = (
        "You are a business analyst summarizing a company's website for a "
        "virtual-assistant agency.\n\n"
        "Extract ONLY what the page states. Return JSON:\n"
        "{\n"
        '    "hero": "main headline and value proposition or null",\n'
        '    "about": "2-3 sentence company description or null",\n'
        '    "services": ["service offered", ...],\n'
        '    "company_info": {"industry": "...", "location": "...", "size": "..."},\n'
        '    "team": ["Name - Role", ...],\n'
        '    "values": ["stated value", ...],\n'
        '    "contact": {"email": "...", "phone": "...", "address": "..."},\n'
        '    "testimonials": ["short quote", ...]\n'
        "}\n\n"
        "Use null or [] for anything not shown. NEVER invent contact details."
    )

    def _should_skip(self, page: dict, **kwargs: Any) -> bool:
        return not page or not page.get("full_text")

    def _prepare_content(self, page: dict, **kwargs: Any) -> str:
        blocks = [f"TITLE: {page['title']}", f"DESCRIPTION: {page['description']}"]
        for name, text in page["sections"].items():
            blocks.append(f"{name.upper()} SECTION:\n{text}")
        blocks.append(f"PAGE TEXT:\n{page['full_text'][:8000]}")
        return "Summarize this website:\n\n" + "\n\n".join(blocks)

    def _parse_result(self, data: Any, page: dict, **kwargs: Any) -> Optional[WebsiteContent]:
        if not isinstance(data, dict):
            raise ValueError("website summary is not an object")

        def strings(value: Any) -> list[str]:
            return [str(v) for v in value if v] if isinstance(value, list) else []

        def mapping(value: Any) -> dict:
            return {k: v for k, v in value.items() if v} if isinstance(value, dict) else {}

        return WebsiteContent(
            hero=data.get("hero") or None,
            about=data.get("about") or None,
            services=strings(data.get("services")),
            company_info=mapping(data.get("company_info")),
            team=strings(data.get("team")),
            values=strings(data.get("values")),
            contact=mapping(data.get("contact")),
            testimonials=strings(data.get("testimonials")),
            full_text=page["full_text"],
            metadata={
                "title": page["title"],
                "description": page["description"],
                "is_spa": page["is_spa"],
                "url": kwargs.get("url"),
            },
        )

    def _empty_result(self) -> None:
        return None

    def _max_tokens(self) -> int:
        return 1500


def normalize_url(url: str) -> Optional[str]:
    url = (url or "").strip()
    if not url:
        return None
    if not re.match(r"^https?://", url, re.IGNORECASE):
        url = f"https://{url}"
    return url


async def fetch_html(url: str, *, timeout: float) -> str:
    """GET ``url`` and return the body.

    Raises:
        httpx.HTTPError: On network failures or non-2xx responses.
    """
    async with httpx.AsyncClient(
        timeout=timeout, follow_redirects=True, headers={"User-Agent": USER_AGENT}
    ) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.text


async def summarize_website(url: Optional[str], llm: LLMClient) -> Optional[WebsiteContent]:
    """Fetch and summarize ``url``; ``None`` when anything fails."""
    target = normalize_url(url or "")
    if target is None:
        return None

    settings = get_settings()
    try:
        html = await fetch_html(target, timeout=settings.website_fetch_timeout)
    except httpx.HTTPError as e:
        logger.warning(f"Website fetch failed for {target}: {e}")
        return None

    page = html_to_sections(html, max_chars=settings.website_max_chars)
    if page["is_spa"]:
        logger.warning(f"{target} looks like a single-page app; content may be incomplete")

    summarizer = WebsiteSummarizer(llm, model=llm.extraction_model)
    content = await summarizer.extract(page, url=target)
    if content is None:
        logger.warning(f"Website summary unavailable for {target}")
    return content
