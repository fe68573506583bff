"""
Conversion between Confluence storage format and Markdown.

Pull direction uses BeautifulSoup to rewrite Confluence-specific elements and
markdownify for the rest. Push direction renders Markdown with markdown-it and
translates the HTML into storage markup with a small ``HTMLParser``.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Dict, List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag
from markdown_it import MarkdownIt
from markdownify import MarkdownConverter

from .links import (
    PageLookupMap,
    UNRESOLVED_LINK_PATTERN,
    is_external,
    relative_link,
    render_unresolved_marker,
    resolve_relative_link,
    split_fragment,
)

CDATA_PATTERN = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
PLACEHOLDER_PATTERN = re.compile(r"CFMIRRORPLACEHOLDER(\d+)END")
PANEL_MACROS = {"info", "note", "warning", "tip", "panel", "expand"}
DROPPED_TAGS = ["script", "style", "iframe", "object", "embed"]

BLOCK_TAGS = {
    "p",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "ul",
    "ol",
    "li",
    "table",
    "thead",
    "tbody",
    "tr",
    "th",
    "td",
    "blockquote",
}
VOID_TAGS = {"br", "hr"}


@dataclass
class LinkContext:
    """Where the document lives and which pages its links can reach."""

    current_path: str
    lookup: PageLookupMap
    space_key: Optional[str] = None


@dataclass
class ConversionResult:
    text: str
    warnings: List[str] = field(default_factory=list)


# Storage -> Markdown ---------------------------------------------------------------


def to_local(storage: str, link_context: Optional[LinkContext] = None, source: str = "") -> ConversionResult:
    """
    Convert a page's storage body to Markdown.

    Page links whose target title is in the lookup map become relative links;
    the rest are kept as unresolved-link markers with a warning naming the
    source document and the target title.
    """
    warnings: List[str] = []
    if not storage or not storage.strip():
        return ConversionResult(text="", warnings=warnings)

    label = source or (link_context.current_path if link_context else "page")
    # html.parser treats CDATA inconsistently across Python versions; inline it as text.
    storage = CDATA_PATTERN.sub(lambda m: html.escape(m.group(1), quote=False), storage)
    soup = BeautifulSoup(storage, "html.parser")
    stash = _Stash()

    for tag in soup.find_all(DROPPED_TAGS):
        tag.extract()

    for macro in soup.find_all(["ac:structured-macro", "ac:macro"]):
        _convert_macro(soup, macro, stash, warnings, label)

    for link in soup.find_all("ac:link"):
        _convert_page_link(soup, link, stash, warnings, label, link_context)

    for image in soup.find_all("ac:image"):
        _convert_image(soup, image)

    for leftover in soup.find_all(re.compile(r"^(ac|ri):")):
        if leftover.parent is not None:
            leftover.unwrap()

    markdown = MarkdownConverter(heading_style="atx", bullets="-", strong_em_symbol="*").convert(
        str(soup)
    )
    markdown = stash.restore(markdown)
    markdown = re.sub(r"\n{3,}", "\n\n", markdown).strip()
    return ConversionResult(text=markdown + "\n" if markdown else "", warnings=warnings)


class _Stash:
    """Hold converted fragments that markdownify must not touch."""

    def __init__(self) -> None:
        self._fragments: List[str] = []

    def put(self, fragment: str) -> str:
        self._fragments.append(fragment)
        return f"CFMIRRORPLACEHOLDER{len(self._fragments) - 1}END"

    def restore(self, text: str) -> str:
        return PLACEHOLDER_PATTERN.sub(lambda m: self._fragments[int(m.group(1))], text)


def _convert_macro(
    soup: BeautifulSoup, macro: Tag, stash: _Stash, warnings: List[str], label: str
) -> None:
    if macro.parent is None:
        return
    name = (macro.get("ac:name") or "").lower()
    if name in ("code", "noformat"):
        language = _macro_parameter(macro, "language") or ""
        body = macro.find("ac:plain-text-body")
        code = body.get_text() if body else ""
        block = soup.new_tag("p")
        block.string = stash.put(f"```{language}\n{code.strip(chr(10))}\n```")
        macro.replace_with(block)
        return
    if name in PANEL_MACROS:
        quote = soup.new_tag("blockquote")
        heading = _macro_parameter(macro, "title")
        if heading:
            strong = soup.new_tag("strong")
            strong.string = heading
            para = soup.new_tag("p")
            para.append(strong)
            quote.append(para)
        body = macro.find("ac:rich-text-body")
        if body is not None:
            for child in list(body.contents):
                quote.append(child.extract())
        macro.replace_with(quote)
        return
    warnings.append(f"Unsupported macro '{name or 'unknown'}' dropped from {label}")
    macro.extract()


def _convert_page_link(
    soup: BeautifulSoup,
    link: Tag,
    stash: _Stash,
    warnings: List[str],
    label: str,
    link_context: Optional[LinkContext],
) -> None:
    if link.parent is None:
        return
    page = link.find("ri:page")
    text = _link_text(link)
    if page is None:
        link.replace_with(NavigableString(text))
        return
    title = page.get("ri:content-title") or ""
    if not title:
        link.replace_with(NavigableString(text))
        return
    target = link_context.lookup.path_for_title(title) if link_context else None
    if target is not None and link_context is not None:
        anchor = soup.new_tag("a", href=relative_link(link_context.current_path, target))
        anchor.string = text or title
        link.replace_with(anchor)
        return
    warnings.append(f'Unresolved link in {label}: "{title}"')
    link.replace_with(NavigableString(stash.put(render_unresolved_marker(title, text or title))))


def _convert_image(soup: BeautifulSoup, image: Tag) -> None:
    if image.parent is None:
        return
    alt = image.get("ac:alt") or ""
    url = image.find("ri:url")
    attachment = image.find("ri:attachment")
    if url is not None:
        src = url.get("ri:value") or ""
    elif attachment is not None:
        src = attachment.get("ri:filename") or ""
    else:
        image.extract()
        return
    image.replace_with(soup.new_tag("img", src=src, alt=alt))


def _macro_parameter(macro: Tag, name: str) -> Optional[str]:
    for param in macro.find_all("ac:parameter", recursive=False):
        if (param.get("ac:name") or "").lower() == name:
            return param.get_text().strip()
    return None


def _link_text(link: Tag) -> str:
    for body_name in ("ac:plain-text-link-body", "ac:link-body"):
        body = link.find(body_name)
        if body is not None:
            return body.get_text().strip()
    return ""


# Markdown -> Storage ---------------------------------------------------------------


def to_remote(markdown: str, link_context: Optional[LinkContext] = None) -> ConversionResult:
    """
    Convert Markdown to Confluence storage format (XHTML subset).

    Relative ``.md`` links resolve to page links through the lookup map.
    Unresolved-link markers are passed through unchanged.
    """
    warnings: List[str] = []
    markers: Dict[str, str] = {}

    def keep_marker(match: re.Match[str]) -> str:
        token = f"CFMIRRORPLACEHOLDER{len(markers)}END"
        markers[token] = match.group(0)
        return token

    markdown = UNRESOLVED_LINK_PATTERN.sub(keep_marker, markdown)
    _detect_unsupported_features(markdown, warnings)

    md = MarkdownIt("commonmark", {"html": False}).enable("table").enable("strikethrough")
    rendered_html = md.render(markdown)
    translator = ConfluenceHTMLTranslator(link_context=link_context, warnings=warnings)
    translator.feed(rendered_html)
    translator.close()
    storage = translator.output()
    storage = PLACEHOLDER_PATTERN.sub(
        lambda m: markers.get(m.group(0), m.group(0)), storage
    )
    return ConversionResult(text=storage.strip(), warnings=warnings)


def _detect_unsupported_features(markdown: str, warnings: List[str]) -> None:
    if re.search(r"^\s*[-*]\s*\[[xX ]\]", markdown, re.MULTILINE):
        warnings.append("Task list checkboxes (- [x]) will be converted to regular list items.")
    if re.search(r"\[\^.+?\]", markdown):
        warnings.append("Footnotes are not supported and will render as plain text.")


class ConfluenceHTMLTranslator(HTMLParser):
    """Translate simple HTML emitted by markdown-it into Confluence storage markup."""

    def __init__(
        self, link_context: Optional[LinkContext] = None, warnings: Optional[List[str]] = None
    ) -> None:
        super().__init__(convert_charrefs=False)
        self.link_context = link_context
        self.warnings: List[str] = warnings if warnings is not None else []
        self._buffer: List[str] = []
        self._anchor_stack: List[AnchorContext] = []
        self._tag_stack: List[str] = []
        self._code_block: Optional[CodeBlockContext] = None

    # HTMLParser overrides ----------------------------------------------------------

    def handle_starttag(self, tag: str, attrs: List[tuple[str, Optional[str]]]) -> None:
        attrs_dict = dict(attrs)
        if tag == "a":
            self._anchor_stack.append(AnchorContext(href=attrs_dict.get("href") or ""))
            return
        if tag == "pre":
            self._tag_stack.append("pre")
            return
        if tag == "code":
            if self._is_inside_pre():
                self._code_block = CodeBlockContext(language=_extract_language(attrs_dict.get("class")))
                return
            self._tag_stack.append("code-inline")
            self._emit("<code>")
            return
        if tag == "img":
            self._handle_image(attrs_dict)
            return
        if tag in VOID_TAGS:
            self._emit(f"<{tag} />")
            return

        self._tag_stack.append(tag)
        if tag in BLOCK_TAGS:
            self._emit(f"<{tag}>")
        else:
            attrs_serialized = "".join(
                f' {name}="{html.escape(value)}"' for name, value in attrs if value is not None
            )
            self._emit(f"<{tag}{attrs_serialized}>")

    def handle_startendtag(self, tag: str, attrs: List[tuple[str, Optional[str]]]) -> None:
        if tag == "img":
            self._handle_image(dict(attrs))
        elif tag in VOID_TAGS:
            self._emit(f"<{tag} />")

    def handle_endtag(self, tag: str) -> None:
        if tag == "a":
            if self._anchor_stack:
                ctx = self._anchor_stack.pop()
                self._emit(ctx.render(self.link_context, self.warnings))
            return
        if tag == "pre":
            if self._tag_stack and self._tag_stack[-1] == "pre":
                self._tag_stack.pop()
            return
        if tag == "code":
            if self._code_block:
                self._emit(self._code_block.render())
                self._code_block = None
                return
            if self._tag_stack and self._tag_stack[-1] == "code-inline":
                self._emit("</code>")
                self._tag_stack.pop()
                return
        if tag in VOID_TAGS or not self._tag_stack:
            return
        last_tag = self._tag_stack.pop()
        self._emit(f"</{last_tag}>")

    def handle_data(self, data: str) -> None:
        if self._code_block:
            self._code_block.append(data)
            return
        self._emit(html.escape(data, quote=False))

    def handle_entityref(self, name: str) -> None:
        self.handle_data(html.unescape(f"&{name};"))

    def handle_charref(self, name: str) -> None:
        self.handle_data(html.unescape(f"&#{name};"))

    def output(self) -> str:
        return "".join(self._buffer)

    # Helpers ----------------------------------------------------------------------

    def _emit(self, text: str) -> None:
        if self._anchor_stack:
            self._anchor_stack[-1].append(text)
        else:
            self._buffer.append(text)

    def _is_inside_pre(self) -> bool:
        return any(tag == "pre" for tag in self._tag_stack)

    def _handle_image(self, attrs: Dict[str, Optional[str]]) -> None:
        src = attrs.get("src", "") or ""
        alt = attrs.get("alt", "") or ""
        if not is_external(src):
            self.warnings.append(f'Local image "{src}" will not display in Confluence. Use absolute URLs.')
        self._emit(
            "<ac:image>"
            f'<ri:url ri:value="{html.escape(src)}" />'
            f"{_render_alt_parameter(alt)}"
            "</ac:image>"
        )


class AnchorContext:
    """Track anchor metadata while parsing."""

    def __init__(self, href: str):
        self.href = href
        self._buffer: List[str] = []

    def append(self, text: str) -> None:
        self._buffer.append(text)

    def render(self, link_context: Optional[LinkContext], warnings: List[str]) -> str:
        body = "".join(self._buffer).strip()
        target_path, _ = split_fragment(self.href)
        if target_path.endswith(".md") and not is_external(target_path):
            title = self._resolve_title(link_context)
            if title:
                space = (
                    f' ri:space-key="{html.escape(link_context.space_key)}"'
                    if link_context and link_context.space_key
                    else ""
                )
                return (
                    "<ac:link>"
                    f'<ri:page ri:content-title="{html.escape(title)}"{space} />'
                    f"{_render_plain_text_body(html.unescape(body) or title)}"
                    "</ac:link>"
                )
            if link_context is not None:
                warnings.append(
                    f'Link to "{self.href}" could not be resolved - target page not found in sync state'
                )
        return f'<a href="{html.escape(self.href)}">{body}</a>'

    def _resolve_title(self, link_context: Optional[LinkContext]) -> Optional[str]:
        if link_context is None:
            return None
        target = resolve_relative_link(self.href, link_context.current_path)
        if target is None:
            return None
        entry = link_context.lookup.entry_for_path(target)
        return entry.title if entry and entry.title else None


class CodeBlockContext:
    """Collect fenced code content for later rendering as a Confluence macro."""

    def __init__(self, language: Optional[str]):
        self.language = language
        self._buffer: List[str] = []

    def append(self, text: str) -> None:
        self._buffer.append(text)

    def render(self) -> str:
        code_content = "".join(self._buffer).rstrip("\n")
        params = ""
        if self.language:
            params = (
                f'<ac:parameter ac:name="language">{html.escape(self.language)}</ac:parameter>'
            )
        return (
            '<ac:structured-macro ac:name="code">'
            f"{params}"
            f"<ac:plain-text-body><![CDATA[{_escape_cdata(code_content)}]]></ac:plain-text-body>"
            "</ac:structured-macro>"
        )


def _extract_language(class_attr: Optional[str]) -> Optional[str]:
    if not class_attr:
        return None
    for part in class_attr.split():
        if part.startswith("language-"):
            return part.replace("language-", "", 1)
    return None


def _escape_cdata(text: str) -> str:
    return text.replace("]]>", "]]]]><![CDATA[>")


def _render_plain_text_body(text: str) -> str:
    if not text:
        return ""
    return f"<ac:plain-text-link-body><![CDATA[{_escape_cdata(text)}]]></ac:plain-text-link-body>"


def _render_alt_parameter(alt: str) -> str:
    if not alt:
        return ""
    return f'<ac:parameter ac:name="alt-text">{html.escape(alt)}</ac:parameter>'
