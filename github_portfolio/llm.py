from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import List, Optional, Protocol

from tenacity import Retrying, stop_after_attempt, wait_exponential

from .config import AppConfig, LLMConfig
from .metrics import activity_totals, language_share, topic_frequency
from .models import Snapshot

logger = logging.getLogger(__name__)

_MAX_REPOS_IN_PROMPT = 3
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_SYSTEM_PROMPT = (
    "You are a professional resume writer for software developers. "
    "You write factual portfolio summaries from GitHub activity without hype."
)


class SummaryGenerator(Protocol):
    def generate(self, snapshot: Snapshot) -> str:
        ...


@dataclass(frozen=True, slots=True)
class SummaryResult:
    text: str
    source: str  # "llm" or "local"


class OpenAISummaryGenerator:
    """Summary generator backed by the OpenAI Responses API."""

    def __init__(self, config: LLMConfig, api_key: str, client: Optional[object] = None) -> None:
        if client is None:
            from openai import OpenAI

            client = OpenAI(api_key=api_key, organization=config.organization)
        self._client = client
        self._config = config

    def generate(self, snapshot: Snapshot) -> str:
        retrying = Retrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            reraise=True,
        )
        response = retrying(
            self._client.responses.create,
            model=self._config.model,
            input=[
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(snapshot)},
            ],
            max_output_tokens=self._config.max_output_tokens,
            temperature=self._config.temperature,
        )
        if not response.output:
            return ""
        return _post_process_spotlight(response.output[0].content[0].text.strip())


def generate_summary(
    snapshot: Snapshot,
    config: AppConfig,
    generator: Optional[SummaryGenerator] = None,
) -> SummaryResult:
    """Summary text for the snapshot. Falls back to ``local_summary``; never raises."""
    try:
        if generator is None:
            generator = _configured_generator(config.llm)
        if generator is None:
            return SummaryResult(text=local_summary(snapshot), source="local")
        text = (generator.generate(snapshot) or "").strip()
    except Exception as exc:
        logger.warning("Summary generator failed, using local summary: %s", exc)
        return SummaryResult(text=local_summary(snapshot), source="local")
    if not text:
        logger.info("Summary generator returned no text, using local summary")
        return SummaryResult(text=local_summary(snapshot), source="local")
    return SummaryResult(text=text, source="llm")


def _configured_generator(config: LLMConfig) -> Optional[SummaryGenerator]:
    if config.provider.lower() != "openai":
        logger.info("Unsupported summary provider %r, using local summary", config.provider)
        return None
    api_key = os.getenv(config.api_key_env)
    if not api_key:
        logger.debug("%s not set, using local summary", config.api_key_env)
        return None
    return OpenAISummaryGenerator(config, api_key)


def build_prompt(snapshot: Snapshot) -> str:
    profile = snapshot.profile
    totals = activity_totals(snapshot)
    languages = [share.name for share in language_share(snapshot.repositories)]
    notable = sorted(
        (repo for repo in snapshot.repositories if not repo.fork),
        key=lambda repo: repo.stars,
        reverse=True,
    )[:_MAX_REPOS_IN_PROMPT]
    topics = topic_frequency(snapshot.repositories, 8)

    lines: List[str] = [
        "Generate a professional summary for a software developer based on their GitHub activity.",
        "",
        "GitHub data:",
        f"- Username: {profile.login}",
        f"- Name: {profile.name or 'Not provided'}",
        f"- Bio: {profile.bio or 'Not provided'}",
        f"- Repositories: {totals.repositories}",
        f"- Commits in the past year: {totals.commits}",
        f"- Pull requests opened: {totals.pull_requests}",
        f"- Issues opened: {totals.issues}",
        f"- Stars received: {totals.stars}",
        f"- Top languages: {', '.join(languages[:5]) or 'Not provided'}",
        f"- Notable projects: {', '.join(repo.name for repo in notable) or 'Not provided'}",
    ]
    if topics:
        lines.append(f"- Topics: {', '.join(topics)}")
    lines.append("")
    lines.append(
        "Write a single concise paragraph that highlights their coding activity, skills, and technical focus areas. "
        "Do not mention specific numbers unless they are notable. Avoid greetings, emojis, and bullet lists."
    )
    return "\n".join(lines)


def local_summary(snapshot: Snapshot) -> str:
    """Rule-based summary used when no external generator is available.

    Always returns at least the opening sentence, which names the repository
    count even when it is zero.
    """
    profile = snapshot.profile
    totals = activity_totals(snapshot)
    handle = profile.login or "This developer"
    who = f"{profile.name} ({handle})" if profile.name and profile.name != handle else handle

    parts: List[str] = [f"{who} maintains {_plural(totals.repositories, 'repository', 'repositories')} on GitHub."]

    languages = [share.name for share in language_share(snapshot.repositories)[:3]]
    if languages:
        parts.append(f"Most of their work is written in {_join_words(languages)}.")
    if totals.stars:
        parts.append(f"Their repositories have earned {_plural(totals.stars, 'star', 'stars')}.")
    if totals.commits:
        parts.append(f"They authored {_plural(totals.commits, 'commit', 'commits')} over the past year.")

    opened: List[str] = []
    if totals.pull_requests:
        opened.append(_plural(totals.pull_requests, "pull request", "pull requests"))
    if totals.issues:
        opened.append(_plural(totals.issues, "issue", "issues"))
    if opened:
        parts.append(f"They opened {_join_words(opened)}.")

    if totals.organizations:
        parts.append(f"They belong to {_plural(totals.organizations, 'organization', 'organizations')}.")

    topics = topic_frequency(snapshot.repositories, 5)
    if topics:
        parts.append(f"Recurring topics include {_join_words(topics)}.")
    return " ".join(parts)


def _plural(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


def _join_words(words: List[str]) -> str:
    if len(words) <= 1:
        return "".join(words)
    return ", ".join(words[:-1]) + " and " + words[-1]


def _normalise_whitespace(text: str) -> str:
    return " ".join(text.strip().split())


def _post_process_spotlight(text: str) -> str:
    if not text:
        return ""
    stripped_lines: List[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith(("#", "-", "*", "+")):
            continue
        line = line.replace("**", "")
        stripped_lines.append(line)
    combined = _normalise_whitespace(" ".join(stripped_lines))
    if not combined:
        return ""
    sentences = _SENTENCE_SPLIT.split(combined)
    filtered: List[str] = []
    banned_phrases = (
        "meet ",
        "making waves",
        "developer to watch",
        "passionate developer",
        "thrilling",
        "exciting",
        "keep an eye",
        "great things",
        "on the horizon",
        "pushing the boundaries",
    )
    for sentence in sentences:
        candidate = sentence.strip()
        if not candidate:
            continue
        lower = candidate.lower()
        if any(phrase in lower for phrase in banned_phrases):
            continue
        if candidate.endswith("!"):
            candidate = candidate.rstrip("!").rstrip() + "."
        filtered.append(candidate)
    if not filtered:
        filtered = [combined]
    return " ".join(filtered[:5])
