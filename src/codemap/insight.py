"""Optional AI collaborator for onboarding briefs and ranking adjustment.

The collaborator is never required. It gets a bounded request built from
the heuristic top-K: changed files carry a source snippet, unchanged files
only their content hash, so nothing already seen is resent. The call runs
in a worker future with a bounded wait; any failure, including a timeout,
surfaces as ``InsightUnavailable`` and the heuristic ranking stands.

Example:
    >>> provider = OpenAIInsightProvider(model='gpt-4o-mini', api_key='sk-...')
    >>> response = request_insight(provider, request, timeout=30.0)
    >>> entry_points = apply_ranking_adjustment(entry_points, response)
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from openai import OpenAI

from .config import AISettings
from .errors import InsightUnavailable
from .models import DiffStatus, EntryPointCandidate, FileRecord

logger = logging.getLogger(__name__)

SNIPPET_BYTES = 40_000

SYSTEM_PROMPT = "You help developers quickly onboard to codebases."

PROMPT_HEADER = """You are onboarding a developer to this repository.
Return STRICT JSON with <={limit} UNIQUE entries by path.
Format: {{"entries":[{{"path":"...","rank":1-10,"reason":"..."}}],"project_brief":"..."}}

Rules:
- Do not repeat a path.
- Use higher rank for more important files.
- Keep the brief to 3-5 sentences.
- Only use paths listed below.

"""


class InsightKind(str, Enum):
    BRIEF = "brief"
    EXPLANATION = "explanation"
    RANKING_ADJUSTMENT = "ranking-adjustment"


@dataclass(frozen=True)
class InsightCandidate:
    """One file offered to the collaborator.

    Attributes:
        path: Relative path.
        file_hash: Content hash; the only payload for unchanged files.
        status: Diff status of the file this run.
        snippet: Source excerpt, set only for changed files.
    """

    path: str
    file_hash: str
    status: DiffStatus
    snippet: Optional[str] = None


@dataclass(frozen=True)
class InsightRequest:
    candidates: Tuple[InsightCandidate, ...]
    desired_output: InsightKind = InsightKind.RANKING_ADJUSTMENT
    max_tokens: int = 800
    max_prompt_chars: int = 4000


@dataclass(frozen=True)
class InsightResponse:
    """Collaborator answer.

    Attributes:
        text: Project brief or explanation.
        ranking: Paths in the collaborator's preferred order.
        reasons: ``(path, reason)`` pairs.
    """

    text: str = ""
    ranking: Tuple[str, ...] = ()
    reasons: Tuple[Tuple[str, str], ...] = ()


class InsightProvider(Protocol):
    def request(self, request: InsightRequest) -> InsightResponse:
        ...


def truncate_to_bytes(text: str, limit: int) -> str:
    """Cut ``text`` to at most ``limit`` UTF-8 bytes on a character boundary."""
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text
    return encoded[:limit].decode("utf-8", errors="ignore")


def build_request(
    root: Path,
    entry_points: Sequence[EntryPointCandidate],
    files: Mapping[str, FileRecord],
    file_statuses: Mapping[str, DiffStatus],
    eligible: Sequence[str],
    settings: AISettings,
    desired_output: InsightKind = InsightKind.RANKING_ADJUSTMENT,
) -> InsightRequest:
    """Build a request for the heuristic top-K.

    Args:
        root: Project root, for reading snippets.
        entry_points: Heuristic top-K.
        files: Snapshot files.
        file_statuses: Diff status per path.
        eligible: Paths whose content changed this run.
        settings: AI settings (token and prompt limits).
        desired_output: What to ask for.

    Returns:
        InsightRequest where only eligible candidates carry snippets.
    """
    eligible_set = set(eligible)
    candidates = []
    for entry in entry_points:
        record = files.get(entry.target)
        if record is None:
            continue
        snippet = None
        if entry.target in eligible_set:
            try:
                text = (Path(root) / entry.target).read_text(encoding="utf-8", errors="replace")
                snippet = truncate_to_bytes(text, SNIPPET_BYTES)
            except OSError as e:
                logger.warning("Cannot read snippet for %s: %s", entry.target, e)
        candidates.append(
            InsightCandidate(
                path=entry.target,
                file_hash=record.file_hash,
                status=file_statuses.get(entry.target, DiffStatus.UNCHANGED),
                snippet=snippet,
            )
        )
    return InsightRequest(
        candidates=tuple(candidates),
        desired_output=desired_output,
        max_tokens=settings.max_tokens,
        max_prompt_chars=settings.max_prompt_chars,
    )


def render_prompt(request: InsightRequest) -> str:
    """Render the onboarding prompt, capped at ``max_prompt_chars``."""
    limit = request.max_prompt_chars
    prompt = PROMPT_HEADER.format(limit=max(1, len(request.candidates)))
    for candidate in request.candidates:
        if len(prompt) >= limit:
            break
        if candidate.snippet is None:
            body = f"(unchanged since last run, sha256 {candidate.file_hash[:12]})"
        else:
            body = candidate.snippet
        prompt += f"{candidate.path}\n---\n"
        prompt += body[: max(0, limit - len(prompt))] + "\n\n"
    return prompt[:limit]


def parse_response(content: str) -> InsightResponse:
    """Parse the collaborator's JSON answer.

    Raises:
        ValueError: If the content is not the expected JSON shape.
    """
    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError("response is not a JSON object")
    entries = data.get("entries") or []
    if not isinstance(entries, list):
        raise ValueError("'entries' is not a list")

    ranked: List[Tuple[float, int, str, str]] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or not isinstance(entry.get("path"), str):
            continue
        rank = entry.get("rank", 0)
        rank = float(rank) if isinstance(rank, (int, float)) else 0.0
        ranked.append((-rank, index, entry["path"], str(entry.get("reason", ""))))
    ranked.sort()

    seen = set()
    ranking = []
    reasons = []
    for _, _, path, reason in ranked:
        if path in seen:
            continue
        seen.add(path)
        ranking.append(path)
        if reason:
            reasons.append((path, reason))
    brief = data.get("project_brief")
    return InsightResponse(
        text=brief if isinstance(brief, str) else "",
        ranking=tuple(ranking),
        reasons=tuple(reasons),
    )


class OpenAIInsightProvider:
    """Insight provider backed by the OpenAI chat-completions API.

    Attributes:
        model: Model name.
        max_tokens: Completion token limit.
    """

    def __init__(self, model: str, api_key: str, max_tokens: int = 800, timeout: float = 30.0):
        self.model = model
        self.max_tokens = max_tokens
        self.client = OpenAI(api_key=api_key.strip().strip('"').strip("'"), timeout=timeout, max_retries=0)

    def request(self, request: InsightRequest) -> InsightResponse:
        prompt = render_prompt(request)
        logger.debug("Calling %s with a %d-char prompt", self.model, len(prompt))
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
            max_tokens=min(self.max_tokens, request.max_tokens),
        )
        if not response.choices:
            raise ValueError("empty completion")
        return parse_response(response.choices[0].message.content or "")


def create_provider(settings: AISettings) -> OpenAIInsightProvider:
    """Build the configured provider.

    Raises:
        InsightUnavailable: If no API key is configured.
    """
    api_key = settings.resolve_api_key()
    if not api_key:
        raise InsightUnavailable("no API key (set OPENAI_API_KEY or run `codemap auth`)")
    return OpenAIInsightProvider(
        model=settings.model,
        api_key=api_key,
        max_tokens=settings.max_tokens,
        timeout=settings.timeout,
    )


def request_insight(provider: InsightProvider, request: InsightRequest, timeout: float) -> InsightResponse:
    """Call the provider with a bounded wait.

    On timeout the future is cancelled and abandoned; the caller does not
    wait for the worker thread to finish.

    Raises:
        InsightUnavailable: On timeout or any provider failure.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="codemap-insight")
    future = executor.submit(provider.request, request)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout as e:
        future.cancel()
        raise InsightUnavailable(f"insight provider timed out after {timeout}s") from e
    except InsightUnavailable:
        raise
    except Exception as e:
        raise InsightUnavailable(f"insight provider failed: {e}") from e
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def apply_ranking_adjustment(
    heuristic: Sequence[EntryPointCandidate], response: InsightResponse
) -> Tuple[EntryPointCandidate, ...]:
    """Reorder the heuristic top-K by the collaborator's ranking.

    Paths the collaborator names that are not in the top-K are ignored;
    top-K entries it leaves out keep their heuristic order after the ones
    it ranked. The result has the same entries with ranks 1..K.
    """
    by_path = {entry.target: entry for entry in heuristic}
    reasons: Dict[str, str] = dict(response.reasons)

    ordered: List[EntryPointCandidate] = []
    for path in response.ranking:
        entry = by_path.pop(path, None)
        if entry is not None:
            ordered.append(replace(entry, source="ai", rationale=reasons.get(path) or entry.rationale))
    ordered.extend(entry for entry in heuristic if entry.target in by_path)

    return tuple(replace(entry, rank=rank) for rank, entry in enumerate(ordered, start=1))
