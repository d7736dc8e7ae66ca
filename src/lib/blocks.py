"""
Block types and the block state machine

A block's state lives in its marker line. This module holds the pure parts
of block handling, independent of any document mutation:

- state_transition(): the total transition function over BlockState
- content_extract(): target and '-- key: value' options after a marker
- completedBlock_make() / errorBlock_make(): the replacement lines
- completedContent_transform(): what the parser keeps of an expanded block
- fetchedContent_transform(): web/reference messages through a fetcher
- blockTypes_builtin(): the built-in block type table

Example document fragment and its lifecycle:

    >>> crawl                       >>> crawling
    https://example.com      ->     https://example.com     ->
    -- limit: 3                     -- limit: 3

    >>> crawled [2024-05-01 09:30:00]
    https://example.com
    -- limit: 3

    ## Crawled 3 pages from https://example.com
    ...
"""

from typing import Any, Callable, Dict, List, Optional

from ..models.blocks import BlockEvent, BlockState, BlockType
from ..models.markers import OPTION_PATTERN, option_is
from ..models.parser import BlockContent
from .layering import value_coerce
from .log import LOG_error


_TRANSITIONS = {
    (BlockState.UNEXPANDED, BlockEvent.START): BlockState.IN_PROGRESS,
    (BlockState.IN_PROGRESS, BlockEvent.SUCCEED): BlockState.COMPLETED,
    (BlockState.IN_PROGRESS, BlockEvent.FAIL): BlockState.ERROR,
}


def state_transition(state: BlockState, event: BlockEvent) -> BlockState:
    """
    Next block state for ``event``.

    Total over every (state, event) pair: an event that has no legal
    transition from ``state`` leaves the state unchanged, so a block can
    never move backwards or skip IN_PROGRESS.

    Example:
        >>> state_transition(BlockState.UNEXPANDED, BlockEvent.START)
        <BlockState.IN_PROGRESS: 'in_progress'>
        >>> state_transition(BlockState.UNEXPANDED, BlockEvent.SUCCEED)
        <BlockState.UNEXPANDED: 'unexpanded'>
    """
    return _TRANSITIONS.get((state, event), state)


def lines_trim(lines: List[str]) -> str:
    """
    Join lines after dropping leading and trailing blank lines.

    Inner blank lines and indentation are kept.
    """
    start = 0
    end = len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return "\n".join(lines[start:end])


def content_extract(lines: List[str], defaults: Optional[Dict[str, Any]] = None) -> BlockContent:
    """
    Extract target and options from the lines following a block marker.

    The target is the run of non-blank, non-option lines after any leading
    blank lines. Options are the '-- key: value' lines that follow the
    target (blank lines in between are allowed); numbers and booleans are
    coerced and applied over ``defaults``.

    Args:
        lines: Span lines after the marker line
        defaults: Block type default options

    Returns:
        BlockContent with target, target_lines, options, option_lines

    Example:
        >>> content_extract(["", "https://a.io", "", "-- depth: 1"]).options
        {'depth': 1}
    """
    options: Dict[str, Any] = dict(defaults or {})
    target_lines: List[str] = []
    option_lines: List[str] = []
    pos = 0

    while pos < len(lines) and not lines[pos].strip():
        pos += 1

    while pos < len(lines) and lines[pos].strip() and not option_is(lines[pos]):
        target_lines.append(lines[pos].strip())
        pos += 1

    while pos < len(lines):
        line = lines[pos]
        if not line.strip():
            pos += 1
            continue
        if not option_is(line):
            break
        match = OPTION_PATTERN.match(line)
        if match:
            options[match.group(1)] = value_coerce(match.group(2))
            option_lines.append(line.strip())
        pos += 1

    return BlockContent(
        target="\n".join(target_lines),
        target_lines=target_lines,
        options=options,
        option_lines=option_lines,
    )


def result_lines(result: Any) -> List[str]:
    """Default result formatting: strings are split, lists are kept"""
    if result is None:
        return []
    if isinstance(result, (list, tuple)):
        return [str(line) for line in result]
    return str(result).split("\n")


def completedBlock_make(
    block_type: BlockType, content: BlockContent, result: Any, timestamp: str
) -> List[str]:
    """
    Replacement lines for a successfully expanded block.

    Layout: completed marker with timestamp, the target and option lines
    (no blank line in between), one blank line, then the formatted result.
    """
    if block_type.format_result:
        body = list(block_type.format_result(result, content.target, content.options))
    else:
        body = result_lines(result)
    header = [block_type.marker_forState(BlockState.COMPLETED, timestamp)]
    header.extend(content.target_lines)
    header.extend(content.option_lines)
    return header + [""] + body


def errorBlock_make(block_type: BlockType, content: BlockContent, message: str) -> List[str]:
    """Replacement lines for a failed expansion"""
    lines = [block_type.marker_forState(BlockState.ERROR)]
    lines.extend(content.target_lines)
    lines.extend(content.option_lines)
    return lines + ["", f"❌ Error: {message}"]


def completedContent_transform(lines: List[str]) -> str:
    """
    Content the parser keeps from an expanded block.

    Drops the target/option header (the non-blank lines directly after the
    completed marker) and returns the trimmed result body.
    """
    pos = 0
    while pos < len(lines) and lines[pos].strip():
        pos += 1
    return lines_trim(lines[pos:])


def fetchedContent_transform(lines: List[str], fetcher: Optional[Callable[[str], str]] = None) -> str:
    """
    Content of a '>>> web' or '>>> reference' message.

    The first non-blank lines are sources (URLs, file paths); the text after
    the first blank line that follows them is kept as written. Each source
    is replaced by ``fetcher(source)``, the results separated by blank
    lines. Without a fetcher the message keeps its trimmed text.

    Example:
        ["https://a.io", "", "Summarize this"], fetch
        -> fetch("https://a.io") + "\\n\\nSummarize this"
    """
    if fetcher is None:
        return lines_trim(lines)

    pos = 0
    while pos < len(lines) and not lines[pos].strip():
        pos += 1
    sources = []
    while pos < len(lines) and lines[pos].strip():
        sources.append(lines[pos].strip())
        pos += 1

    parts = []
    for source in sources:
        try:
            parts.append(str(fetcher(source)))
        except Exception as e:
            LOG_error(f"Fetching '{source}' failed: {e!r}")
            parts.append(f"Error: could not fetch {source}: {e}")
    text = lines_trim(lines[pos:])
    if text:
        parts.append(text)
    return "\n\n".join(parts)


# ---------------------------------------------------------------------------
# Built-in block types
# ---------------------------------------------------------------------------

def crawl_format(result: Any, url: str, options: Dict[str, Any]) -> List[str]:
    """Format a crawl result: {'pages': n, 'results': [{'url', 'content'}]}"""
    if not isinstance(result, dict):
        return result_lines(result)
    pages = result.get("results") or []
    lines = [f"## Crawled {result.get('pages', len(pages))} pages from {url}", ""]
    if not pages:
        return lines + ["No pages were crawled."]
    for index, page in enumerate(pages, start=1):
        lines.append(f"### Page {index}: {page.get('url', '')}")
        lines.append("")
        lines.extend(str(page.get("content", "")).split("\n"))
        lines.extend(["", "---", ""])
    return lines


def youtube_format(result: Any, url: str, options: Dict[str, Any]) -> List[str]:
    """Format a transcript result: {'transcript', 'language', 'url'}"""
    if not isinstance(result, dict):
        return result_lines(result)
    language = result.get("language", options.get("preferred_language", "en"))
    lines = [
        f"## YouTube Transcript ({language})",
        f"_Source: {result.get('url', url)}_",
        "",
    ]
    return lines + str(result.get("transcript", "")).split("\n")


def scrape_format(result: Any, url: str, options: Dict[str, Any]) -> List[str]:
    """Format a scrape result: {'title', 'content'}"""
    if not isinstance(result, dict):
        return result_lines(result)
    lines = [f"# {result.get('title') or 'No title'}", ""]
    return lines + str(result.get("content") or "No content").split("\n")


def youtube_validate(url: str) -> bool:
    return "youtube.com" in url or "youtu.be" in url


def blockTypes_builtin() -> List[BlockType]:
    """
    Built-in block types, in registration order.

    Each call returns fresh BlockType objects so sessions never share
    mutable defaults.
    """
    return [
        BlockType(
            name="crawl",
            marker=">>> crawl",
            progress_marker=">>> crawling",
            completed_marker=">>> crawled",
            error_marker=">>> crawl-error",
            description="Crawl a website and insert page contents",
            default_options={"limit": 5, "depth": 2, "format": "markdown"},
            format_result=crawl_format,
        ),
        BlockType(
            name="youtube",
            marker=">>> youtube",
            progress_marker=">>> transcribing",
            completed_marker=">>> transcript",
            error_marker=">>> youtube-error",
            description="Insert a YouTube video transcript",
            default_options={
                "include_timestamps": True,
                "timestamps_to_combine": 5,
                "preferred_language": "en",
            },
            validate_target=youtube_validate,
            format_result=youtube_format,
        ),
        BlockType(
            name="scrape",
            marker=">>> scrape",
            progress_marker=">>> scraping",
            completed_marker=">>> scraped",
            error_marker=">>> scrape-error",
            description="Scrape a single web page",
            format_result=scrape_format,
        ),
        BlockType(
            name="snapshot",
            marker=">>> snapshot",
            progress_marker=">>> snapshotting",
            completed_marker=">>> snapshotted",
            error_marker=">>> snapshot-error",
            description="Insert the contents of files",
        ),
        BlockType(
            name="tree",
            marker=">>> tree",
            progress_marker=">>> generating-tree",
            completed_marker=">>> tree",
            error_marker=">>> tree-error",
            description="Insert a directory listing",
        ),
    ]
