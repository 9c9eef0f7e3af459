"""
patchgate — intent mapping stage

File: src/patchgate/pipeline/intent_mapping.py
Last updated: 2026-10-18

Purpose
- Rank workspace targets against a free-text intent and select one, several, or none.

Functional requirements
- `.ls` documents contribute one candidate per goal/capability/check declaration.
- Other text files (and `.ls` files without declarations) contribute one whole-file candidate.
- Files with no shared tokens and no substring hits are excluded.
- Decision order: no candidates, low confidence, ambiguity, single selection.

Non-functional requirements
- Candidate order is total and deterministic; confidences round half-up to 4 places.
"""

from __future__ import annotations

import math
import posixpath
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

import structlog

from patchgate.constants import INTENT_MAPPING_ARTIFACT_TYPE, WORKSPACE_SNAPSHOT_ARTIFACT_TYPE
from patchgate.domain import decisions
from patchgate.domain.decisions import Outcome
from patchgate.domain.envelope import Artifact, artifact_ref, build_artifact
from patchgate.domain.errors import IntentMappingError
from patchgate.domain.hooks import Clock, RunIdFactory, resolve_produced_at, resolve_run_id
from patchgate.domain.validation import FieldValidator
from patchgate.parsing.ls_document import DocumentParser, LsDocumentParser, SourceRange
from patchgate.pipeline.workspace_snapshot import DEFAULT_IGNORED_PATHS
from patchgate.pipeline.workspace_walk import iter_workspace_files, resolve_workspace_root
from patchgate.utils.hashing import sha256_text
from patchgate.utils.paths import normalize_separators

DEFAULT_INTENT_SOURCE: Final[str] = "user_prompt"
DEFAULT_MIN_CONFIDENCE: Final[float] = 0.75
DEFAULT_AMBIGUITY_GAP: Final[float] = 0.05
DEFAULT_MAX_ALTERNATIVES: Final[int] = 5
MAX_ALTERNATIVES_LIMIT: Final[int] = 50
MAX_TEXT_SCAN_BYTES: Final[int] = 256_000

AST_SYMBOL_LOOKUP: Final[str] = "ast_symbol_lookup"
TEXT_MATCH: Final[str] = "text_match"
EXTRACTION_METHODS: Final[tuple[str, ...]] = (AST_SYMBOL_LOOKUP, TEXT_MATCH)

TEXT_MATCHABLE_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {
        ".cjs",
        ".js",
        ".json",
        ".jsx",
        ".ls",
        ".md",
        ".mdx",
        ".mjs",
        ".sh",
        ".ts",
        ".tsx",
        ".txt",
        ".yaml",
        ".yml",
    }
)

STOP_WORDS: Final[frozenset[str]] = frozenset(
    {"a", "an", "and", "as", "at", "by", "for", "from", "in", "into", "of", "on", "or", "the", "to", "with"}
)

_SEPARATOR_RE = re.compile(r"[_-]+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]+")
_WHITESPACE_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"[a-z0-9]+")
_LINE_SPLIT_RE = re.compile(r"\r?\n")
_TARGET_ID_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._/#+:-]")
_UNDERSCORE_RUN_RE = re.compile(r"_+")

_snapshot_validator = FieldValidator(IntentMappingError, "INVALID_WORKSPACE_SNAPSHOT")
_options_validator = FieldValidator(IntentMappingError, "INVALID_OPTIONS")


def normalize_for_search(value: str) -> str:
    lowered = value.lower()
    lowered = _SEPARATOR_RE.sub(" ", lowered)
    lowered = _NON_ALNUM_RE.sub(" ", lowered)
    return _WHITESPACE_RE.sub(" ", lowered).strip()


def tokenize_for_search(value: str) -> list[str]:
    tokens = {token for token in _TOKEN_RE.findall(normalize_for_search(value)) if token not in STOP_WORDS}
    return sorted(tokens)


def round_confidence(value: float) -> float:
    return math.floor(value * 10000 + 0.5) / 10000


def create_target_id(path: str, symbol_path: str | None) -> str:
    raw = f"{path}#{symbol_path or 'file'}"
    readable = _TARGET_ID_UNSAFE_RE.sub("_", raw)
    readable = _UNDERSCORE_RUN_RE.sub("_", readable).strip("_")[:96]
    return f"{readable or 'target'}_{sha256_text(raw)[:12]}"


@dataclass(frozen=True, slots=True)
class IntentQuery:
    summary: str
    normalized: str
    tokens: tuple[str, ...]

    @classmethod
    def from_summary(cls, summary: str) -> IntentQuery:
        return cls(summary, normalize_for_search(summary), tuple(tokenize_for_search(summary)))


@dataclass(frozen=True, slots=True)
class CandidateInput:
    path: str
    symbol_path: str | None
    symbol_kind: str
    target_texts: tuple[str, ...]
    method: str
    symbol_name: str | None = None
    range: dict[str, int] | None = None


@dataclass(slots=True)
class _Collection:
    candidates: list[dict[str, Any]] = field(default_factory=list)
    methods_used: set[str] = field(default_factory=set)


def score_candidate(query: IntentQuery, target: CandidateInput) -> tuple[float, str] | None:
    """Return ``(confidence, rationale)`` or ``None`` when nothing about the target matches."""

    combined = " ".join((target.path, *target.target_texts))
    target_tokens = set(tokenize_for_search(combined))
    intent_tokens = set(query.tokens)
    shared = len(intent_tokens & target_tokens)
    overlap = shared / len(intent_tokens) if intent_tokens else 0.0
    coverage = shared / len(target_tokens) if target_tokens else 0.0

    target_normalized = normalize_for_search(combined)
    phrase_hit = (
        len(query.normalized) >= 4
        and target_normalized != ""
        and (query.normalized in target_normalized or target_normalized in query.normalized)
    )
    symbol_normalized = normalize_for_search(target.symbol_name) if target.symbol_name else ""
    symbol_hit = symbol_normalized != "" and symbol_normalized in query.normalized
    base_normalized = normalize_for_search(posixpath.basename(target.path))
    path_base_hit = base_normalized != "" and (
        base_normalized in query.normalized or query.normalized in base_normalized
    )

    if shared == 0 and not (phrase_hit or symbol_hit or path_base_hit):
        return None

    is_ast = target.method == AST_SYMBOL_LOOKUP
    score = 0.38 if is_ast else 0.18
    score += overlap * 0.4
    score += coverage * 0.08
    if phrase_hit:
        score += 0.1 if is_ast else 0.12
    if symbol_hit:
        score += 0.24
    if is_ast and target.symbol_kind != "file" and target.symbol_kind in query.normalized:
        score += 0.05
    if path_base_hit:
        score += 0.05

    confidence = round_confidence(min(0.99, max(0.01, score)))
    parts = [
        "AST symbol lookup" if is_ast else "Text match",
        f"token overlap {shared}/{max(1, len(intent_tokens))}",
    ]
    if symbol_hit:
        parts.append("exact symbol-name hit")
    if phrase_hit:
        parts.append("exact phrase/path substring hit")
    return confidence, f"{'; '.join(parts)}."


def build_candidate(query: IntentQuery, target: CandidateInput) -> dict[str, Any] | None:
    scored = score_candidate(query, target)
    if scored is None:
        return None
    confidence, rationale = scored
    provenance: dict[str, Any] = {"source_path": target.path, "method": target.method}
    if target.range is not None:
        provenance["range"] = target.range
    return {
        "target_id": create_target_id(target.path, target.symbol_path),
        "path": target.path,
        "symbol_path": target.symbol_path,
        "confidence": confidence,
        "rationale": rationale,
        "provenance": provenance,
    }


def _candidate_range(source_range: SourceRange) -> dict[str, int]:
    return {
        "start_line": source_range.start.line,
        "start_column": source_range.start.column,
        "end_line": source_range.end.line,
        "end_column": source_range.end.column,
    }


def collect_ast_candidates(
    query: IntentQuery,
    path: str,
    source: str,
    parser: DocumentParser,
) -> list[dict[str, Any]]:
    document = parser.parse(source).ast
    if document is None:
        return []

    targets = [
        CandidateInput(
            path=path,
            symbol_path="goal",
            symbol_kind="goal",
            symbol_name=document.goal.value,
            target_texts=(document.goal.value,),
            method=AST_SYMBOL_LOOKUP,
            range=_candidate_range(document.goal.range),
        )
    ]
    for kind, declarations in (("capability", document.capabilities), ("check", document.checks)):
        for declaration in declarations:
            targets.append(
                CandidateInput(
                    path=path,
                    symbol_path=f"{kind}:{declaration.name}",
                    symbol_kind=kind,
                    symbol_name=declaration.name,
                    target_texts=(declaration.name, declaration.description),
                    method=AST_SYMBOL_LOOKUP,
                    range=_candidate_range(declaration.range),
                )
            )

    candidates = [build_candidate(query, target) for target in targets]
    return [candidate for candidate in candidates if candidate is not None]


def find_best_matching_line(source: str, query: IntentQuery) -> dict[str, int] | None:
    """Locate the first line with the highest token overlap; ``None`` if no line matches."""

    lines = _LINE_SPLIT_RE.split(source)
    best_index = -1
    best_score = -1
    for index, line in enumerate(lines):
        line_tokens = set(tokenize_for_search(line))
        score = sum(1 for token in query.tokens if token in line_tokens)
        if query.normalized and query.normalized in normalize_for_search(line):
            score += len(query.tokens) if query.tokens else 1
        if score > best_score:
            best_score = score
            best_index = index
    if best_index < 0 or best_score <= 0:
        return None
    line_number = best_index + 1
    return {
        "start_line": line_number,
        "start_column": 1,
        "end_line": line_number,
        "end_column": max(1, len(lines[best_index]) + 1),
    }


def build_text_candidate(query: IntentQuery, path: str, source: str) -> dict[str, Any] | None:
    return build_candidate(
        query,
        CandidateInput(
            path=path,
            symbol_path=None,
            symbol_kind="file",
            target_texts=(source[:MAX_TEXT_SCAN_BYTES],),
            method=TEXT_MATCH,
            range=find_best_matching_line(source, query),
        ),
    )


def _candidate_sort_key(candidate: dict[str, Any]) -> tuple[float, int, str, str]:
    method_rank = 0 if candidate["provenance"]["method"] == AST_SYMBOL_LOOKUP else 1
    return (-candidate["confidence"], method_rank, candidate["path"], candidate["symbol_path"] or "")


def _read_text(path: Path, root: Path) -> str:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise IntentMappingError(
            "WORKSPACE_ENTRY_UNREADABLE",
            f"unreadable file entry: {path.relative_to(root).as_posix()}",
            workspace_root=root.as_posix(),
        ) from exc
    # Invalid UTF-8 sequences become U+FFFD; the file is still scored.
    return data.decode("utf-8", errors="replace")


def collect_candidates(
    root: Path,
    ignored_paths: list[str],
    query: IntentQuery,
    parser: DocumentParser,
) -> tuple[list[dict[str, Any]], list[str]]:
    collection = _Collection()
    for workspace_file in iter_workspace_files(root, ignored_paths, error_type=IntentMappingError):
        extension = posixpath.splitext(workspace_file.relative_path)[1].lower()
        if extension not in TEXT_MATCHABLE_EXTENSIONS or workspace_file.size_bytes > MAX_TEXT_SCAN_BYTES:
            continue
        source = _read_text(workspace_file.absolute_path, root)
        if extension == ".ls":
            ast_candidates = collect_ast_candidates(query, workspace_file.relative_path, source, parser)
            if ast_candidates:
                collection.methods_used.add(AST_SYMBOL_LOOKUP)
                collection.candidates.extend(ast_candidates)
                continue
        text_candidate = build_text_candidate(query, workspace_file.relative_path, source)
        if text_candidate is not None:
            collection.methods_used.add(TEXT_MATCH)
            collection.candidates.append(text_candidate)

    collection.candidates.sort(key=_candidate_sort_key)
    methods = sorted(collection.methods_used) if collection.methods_used else list(EXTRACTION_METHODS)
    return collection.candidates, methods


def select_candidates(
    ranked: list[dict[str, Any]],
    *,
    min_confidence: float,
    ambiguity_gap: float,
    max_alternatives: int,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]], Outcome]:
    """Apply the mapping decision policy to an already-ranked candidate list."""

    if not ranked:
        return [], [], decisions.stop(
            "unsupported_input", "No supported repository targets matched the requested intent."
        )

    top = ranked[0]
    if top["confidence"] < min_confidence:
        return (
            [top],
            ranked[1 : 1 + max_alternatives],
            decisions.escalate(
                "mapping_low_confidence",
                f"Top mapping candidate scored {top['confidence']:.4f} below minimum confidence "
                f"{min_confidence:.4f}.",
            ),
        )

    tied = [
        candidate
        for candidate in ranked
        if candidate["confidence"] >= min_confidence
        and top["confidence"] - candidate["confidence"] <= ambiguity_gap
    ]
    if len(tied) > 1:
        keys = ", ".join(
            candidate["path"] + (f"#{candidate['symbol_path']}" if candidate["symbol_path"] else "")
            for candidate in tied
        )
        tied_ids = {id(candidate) for candidate in tied}
        others = [candidate for candidate in ranked if id(candidate) not in tied_ids]
        return (
            tied,
            others[:max_alternatives],
            decisions.escalate(
                "mapping_ambiguous",
                f"Multiple high-confidence targets remain within ambiguity gap {ambiguity_gap:.4f}: {keys}.",
            ),
        )

    return [top], ranked[1 : 1 + max_alternatives], decisions.ok("Single high-confidence target selected")


@dataclass(frozen=True, slots=True)
class _SnapshotInput:
    ref: dict[str, str]
    run_id: str
    root: Path
    ignored_paths: list[str]


def _normalize_snapshot(value: object) -> _SnapshotInput:
    snapshot = _snapshot_validator.expect_envelope(
        value, "workspace_snapshot", artifact_type=WORKSPACE_SNAPSHOT_ARTIFACT_TYPE
    )
    trace = _snapshot_validator.expect_object(snapshot["trace"], "workspace_snapshot.trace")
    payload = _snapshot_validator.expect_object(snapshot["payload"], "workspace_snapshot.payload")
    root = resolve_workspace_root(
        trace.get("workspace_root"),
        error_type=IntentMappingError,
        label="workspace_snapshot.trace.workspace_root",
        invalid_code="INVALID_WORKSPACE_SNAPSHOT",
    )

    filters = payload.get("filters")
    raw_ignored = filters.get("ignored_paths") if isinstance(filters, dict) else None
    if raw_ignored is None:
        ignored = list(DEFAULT_IGNORED_PATHS)
    else:
        patterns = _snapshot_validator.as_str_list(
            raw_ignored, "workspace_snapshot.payload.filters.ignored_paths"
        )
        ignored = sorted({normalize_separators(pattern.strip()) for pattern in patterns})

    return _SnapshotInput(
        ref=artifact_ref(snapshot),
        run_id=str(snapshot["run_id"]).strip(),
        root=root,
        ignored_paths=ignored,
    )


def create_intent_mapping(
    workspace_snapshot: object,
    intent: object,
    *,
    intent_source: object = None,
    min_confidence: object = None,
    ambiguity_gap: object = None,
    max_alternatives: object = None,
    document_parser: DocumentParser | None = None,
    now: Clock | None = None,
    run_id_factory: RunIdFactory | None = None,
    tool_version: str | None = None,
    logger: Any | None = None,
) -> Artifact:
    """Map ``intent`` onto targets of the workspace recorded by ``workspace_snapshot``."""

    log = logger if logger is not None else structlog.get_logger(__name__)
    snapshot = _normalize_snapshot(workspace_snapshot)

    if not isinstance(intent, str) or not intent.strip():
        raise IntentMappingError("INVALID_INTENT", "intent must be a non-empty string")
    summary = intent.strip()

    if intent_source is None:
        source = DEFAULT_INTENT_SOURCE
    elif isinstance(intent_source, str) and intent_source.strip():
        source = intent_source.strip()
    else:
        raise IntentMappingError(
            "INVALID_INTENT_SOURCE", "intent_source must be a non-empty string when provided"
        )

    threshold = (
        DEFAULT_MIN_CONFIDENCE
        if min_confidence is None
        else _options_validator.as_unit_interval(min_confidence, "min_confidence")
    )
    gap = (
        DEFAULT_AMBIGUITY_GAP
        if ambiguity_gap is None
        else _options_validator.as_unit_interval(ambiguity_gap, "ambiguity_gap")
    )
    alternatives_limit = (
        DEFAULT_MAX_ALTERNATIVES
        if max_alternatives is None
        else _options_validator.as_int(
            max_alternatives, "max_alternatives", minimum=0, maximum=MAX_ALTERNATIVES_LIMIT
        )
    )

    query = IntentQuery.from_summary(summary)
    ranked, methods = collect_candidates(
        snapshot.root,
        snapshot.ignored_paths,
        query,
        document_parser if document_parser is not None else LsDocumentParser(),
    )
    selected, alternatives, outcome = select_candidates(
        ranked,
        min_confidence=threshold,
        ambiguity_gap=gap,
        max_alternatives=alternatives_limit,
    )

    artifact = build_artifact(
        artifact_type=INTENT_MAPPING_ARTIFACT_TYPE,
        run_id=resolve_run_id(
            run_id_factory, stage="intent_mapping", upstream_run_id=snapshot.run_id, logger=log
        ),
        produced_at=resolve_produced_at(now, stage="intent_mapping", logger=log),
        tool_version=tool_version,
        inputs=[snapshot.ref],
        trace={"intent_source": source, "extraction_methods": methods},
        payload={
            "intent": {"summary": summary},
            "candidates": selected,
            "alternatives": alternatives,
            **outcome.to_dict(),
        },
    )
    log.info(
        "intent_mapping_decision",
        artifact_id=artifact["artifact_id"],
        decision=outcome.decision.value,
        reason_code=outcome.reason_code,
        candidates=len(selected),
        alternatives=len(alternatives),
    )
    return artifact


__all__ = [
    "DEFAULT_AMBIGUITY_GAP",
    "DEFAULT_INTENT_SOURCE",
    "DEFAULT_MAX_ALTERNATIVES",
    "DEFAULT_MIN_CONFIDENCE",
    "EXTRACTION_METHODS",
    "IntentQuery",
    "collect_candidates",
    "create_intent_mapping",
    "create_target_id",
    "find_best_matching_line",
    "normalize_for_search",
    "round_confidence",
    "score_candidate",
    "select_candidates",
    "tokenize_for_search",
]
