"""Extraction of user prompts from org-mode files with gptel annotations."""

import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path

from rich.console import Console

console = Console()

# Prompts shorter than this are chat noise ("thanks", "go on")
MIN_PROMPT_LENGTH = 20


@dataclass
class PromptOccurrence:
    """One user turn found in a chat file."""

    content: str
    executed_at: datetime
    topic: str | None = None


@dataclass
class CollectedPrompt:
    """Occurrences of identical prompt text merged together."""

    content: str
    name: str
    execution_count: int
    last_executed_at: datetime


def parse_gptel_bounds(bounds_str: str) -> list[tuple[int, int]]:
    """Parse GPTEL_BOUNDS into (start, end) assistant regions.

    Accepts both ((1807 . 3547)) and ((response (1116 2260) ...)).
    """
    if not bounds_str:
        return []
    if "response" in bounds_str:
        pairs = re.findall(r"\((\d+)\s+(\d+)\)", bounds_str)
    else:
        pairs = re.findall(r"\((\d+)\s*\.\s*(\d+)\)", bounds_str)
    return sorted((int(start), int(end)) for start, end in pairs)


def read_property(content: str, name: str) -> str | None:
    """Value of a :NAME: property in the first :PROPERTIES: drawer."""
    drawer = re.search(r":PROPERTIES:\s*\n(.*?):END:", content, re.DOTALL)
    if not drawer:
        return None
    match = re.search(rf"^\s*:{name}:\s*(.*)$", drawer.group(1), re.MULTILINE)
    return match.group(1).strip() if match else None


def strip_org_formatting(text: str) -> str:
    """Reduce an org-mode fragment to the plain prompt text."""
    text = re.sub(r"^:PROPERTIES:.*?:END:\s*", "", text, flags=re.DOTALL | re.MULTILINE)
    text = re.sub(r"^\*+\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"\[\[.*?\]\[?(.*?)\]?\]", r"\1", text)
    text = re.sub(r"^#\+.*$", "", text, flags=re.MULTILINE)
    text = re.sub(r"@(user|assistant)\s*", "", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_user_turns(content: str, bounds: list[tuple[int, int]]) -> list[str]:
    """Text between assistant regions, which is what the user typed."""
    turns = []
    position = 0
    for start, end in bounds:
        if start > position:
            turns.append(strip_org_formatting(content[position:start]))
        position = max(position, end)
    if bounds and position < len(content):
        turns.append(strip_org_formatting(content[position:]))
    return [t for t in turns if len(t) >= MIN_PROMPT_LENGTH]


def parse_date_from_filename(filepath: Path) -> date | None:
    """Date of an org-roam daily file named YYYY-MM-DD.org."""
    match = re.match(r"(\d{4})-(\d{2})-(\d{2})\.org$", filepath.name)
    if match:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    return None


def parse_org_file(filepath: Path) -> list[PromptOccurrence]:
    """User prompts of one chat file. Files without gptel bounds yield nothing."""
    content = filepath.read_text(encoding="utf-8")
    bounds = parse_gptel_bounds(read_property(content, "GPTEL_BOUNDS") or "")
    if not bounds:
        return []

    file_date = parse_date_from_filename(filepath)
    if file_date:
        executed_at = datetime.combine(file_date, time(12, 0))
    else:
        executed_at = datetime.fromtimestamp(filepath.stat().st_mtime)
    topic = read_property(content, "GPTEL_TOPIC")

    return [PromptOccurrence(content=turn, executed_at=executed_at, topic=topic) for turn in extract_user_turns(content, bounds)]


def parse_directory(directory: Path) -> list[PromptOccurrence]:
    """Parse all org files in a directory."""
    occurrences = []
    for filepath in sorted(directory.glob("*.org")):
        try:
            occurrences.extend(parse_org_file(filepath))
        except (OSError, UnicodeDecodeError) as e:
            console.print(f"[yellow]Error parsing {filepath}: {e}[/yellow]")
    return occurrences


def collect_prompts(occurrences: list[PromptOccurrence]) -> list[CollectedPrompt]:
    """Merge identical prompts, counting executions and keeping the latest date."""
    grouped: dict[str, list[PromptOccurrence]] = defaultdict(list)
    for occurrence in occurrences:
        grouped[occurrence.content].append(occurrence)

    collected = []
    for content, items in grouped.items():
        latest = max(items, key=lambda o: o.executed_at)
        collected.append(
            CollectedPrompt(
                content=content,
                name=latest.topic or content.splitlines()[0][:40],
                execution_count=len(items),
                last_executed_at=latest.executed_at,
            )
        )
    return sorted(collected, key=lambda p: p.execution_count, reverse=True)
