"""
Content Safety Gate — nothing reaches a child without passing here.

Layers, in escalation order:
  Fast path:  deterministic word-boundary matcher + substitution sanitizer
  Slow path:  contextual review through the inference client

Behavioral Contract:
- The slow path runs only when the fast path finds nothing
- Any slow-path failure counts as unsafe (fail-safe)
- Whatever text the gate hands back as `sanitized_text` passes the fast path
- fast_check() never touches a dependency
- filter_for_parent() is a separate adult-facing filter: it only looks for
  sensitive personal data and redacts wholesale
"""

import logging
import random
import re
from typing import Dict, List, Optional, Tuple

from scaffold_kernel.errors import InferenceError
from scaffold_kernel.inference.client import (
    CompletionClient,
    guarded_complete,
    parse_json_payload,
)
from scaffold_kernel.models.safety import (
    ChildContext,
    ParentFilterResult,
    SafetyLayer,
    SafetyVerdict,
    SafetyViolation,
    ViolationCategory,
)

logger = logging.getLogger(__name__)

_APOS = r"['’]"


def _term(pattern: str) -> re.Pattern:
    return re.compile(rf"\b{pattern}\b", re.IGNORECASE)


FORBIDDEN_PATTERNS: Dict[ViolationCategory, List[re.Pattern]] = {
    ViolationCategory.INTERNAL_PROCESS: [
        _term(r"reasoning"),
        _term(r"analy(?:sis|ses|zing|zed)"),
        _term(r"internal(?:ly)?"),
        _term(r"covert"),
        _term(r"engines?"),
        _term(r"algorithms?"),
        _term(r"confidence\s+score"),
        _term(r"engagement\s+score"),
        _term(r"interventions?"),
    ],
    ViolationCategory.NEGATIVE_FRAMING: [
        _term(r"struggling"),
        _term(r"wrong"),
        _term(r"you\s+failed"),
        _term(rf"you\s+can(?:{_APOS}t|not)"),
        _term(rf"you\s+shouldn{_APOS}t"),
        _term(r"bad\s+at"),
    ],
    ViolationCategory.PRIVATE_INFORMATION: [
        _term(r"home\s+address"),
        _term(r"phone\s+number"),
        _term(r"passwords?"),
        _term(r"credit\s+card"),
        _term(r"social\s+security"),
        _term(r"where\s+do\s+you\s+live"),
    ],
    ViolationCategory.UNSAFE_TOPIC: [
        _term(r"violen(?:ce|t)"),
        _term(r"weapons?"),
        _term(r"guns?"),
        _term(r"drugs?"),
        _term(r"alcohol"),
        _term(r"kill(?:ing|ed)?"),
    ],
}

# Ordered: longer phrases before the single words they contain.
SUBSTITUTIONS: List[Tuple[re.Pattern, str]] = [
    (_term(rf"you(?:{_APOS}re|\s+are)\s+struggling"), "let's think about this together"),
    (_term(r"struggling"), "learning"),
    (_term(rf"that(?:{_APOS}s|\s+is)\s+wrong"), "let's try another way"),
    (_term(r"wrong"), "let's try another way"),
    (_term(r"you\s+failed"), "let's keep learning"),
    (_term(rf"you\s+can(?:{_APOS}t|not)"), "let's work on this"),
    (_term(rf"you\s+shouldn{_APOS}t"), "let's try"),
    (_term(r"bad\s+at"), "still learning"),
]

SAFE_FALLBACK_MESSAGES = [
    "Let's take a moment to think!",
    "What do you notice?",
    "I wonder what happens next?",
    "Tell me what you're thinking!",
    "Let's explore this together!",
]

PARENT_SENSITIVE_PATTERNS: Dict[str, re.Pattern] = {
    "password": re.compile(r"\b(?:password|passcode|pin)\s*(?:is|:|=)\s*\S+", re.IGNORECASE),
    "payment_card": re.compile(r"\b(?:\d[ -]?){12,15}\d\b"),
    "government_id": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    "phone": re.compile(r"(?:\+?\d{1,2}[\s.-]?)?\(?\b\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b"),
    "email": re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.-]+\b"),
}

REDACTED_TEXT = "[redacted: sensitive information]"

_REVIEW_SYSTEM = (
    "You are a child safety expert reviewing content for an educational "
    "platform. Be strict about child safety and age-appropriateness."
)

_REVIEW_PROMPT = """Review this content that will be spoken to a child (age {age}, vocabulary level {level}) in an educational context.

CONTENT TO REVIEW:
"{content}"

CHECK FOR:
1. Age-appropriateness
2. Positive, encouraging tone
3. No mentions, direct or indirect, of internal analysis, reasoning, scoring, or AI processes
4. No negative framing (e.g., "you're struggling", "that's wrong")
5. No requests for private information
6. No inappropriate topics

Respond with JSON only:
{{
  "is_safe": boolean,
  "reason": "brief explanation if unsafe",
  "suggested_revision": "short positive alternative if unsafe"
}}"""


def find_violations(text: str) -> List[SafetyViolation]:
    """Run the fast-path matcher. Deterministic, dependency-free."""
    violations = []
    for category, patterns in FORBIDDEN_PATTERNS.items():
        for pattern in patterns:
            for match in pattern.finditer(text):
                violations.append(SafetyViolation(
                    category=category,
                    term=match.group(0).lower(),
                    layer=SafetyLayer.FAST,
                ))
    return violations


def _match_case(replacement: str, original: str) -> str:
    if original[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def substitute_terms(text: str) -> str:
    """Apply the fixed substitution table. Unmatched text is left unchanged."""
    for pattern, replacement in SUBSTITUTIONS:
        text = pattern.sub(lambda m, r=replacement: _match_case(r, m.group(0)), text)
    return text


class ContentSafetyGate:
    """
    Classifies and sanitizes child-facing text.

    The slow path needs a completion client; without one the gate still
    works, it just treats every fast-path pass as needing the fallback.
    """

    def __init__(
        self,
        client: Optional[CompletionClient] = None,
        review_timeout: float = 5.0,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.review_timeout = review_timeout
        self._rng = rng or random.Random()

    def safe_fallback_message(self) -> str:
        return self._rng.choice(SAFE_FALLBACK_MESSAGES)

    def sanitize(self, text: str) -> str:
        """
        Deterministic sanitizer. Returns substituted text when that clears
        every forbidden term, otherwise a fixed fallback phrase.
        """
        substituted = substitute_terms(text)
        if substituted.strip() and not find_violations(substituted):
            return substituted
        return self.safe_fallback_message()

    def fast_check(self, text: str) -> SafetyVerdict:
        """Fast path only. Safe for latency-critical call sites."""
        violations = find_violations(text)
        if not violations:
            return SafetyVerdict(
                is_safe=True,
                sanitized_text=text,
                layer=SafetyLayer.FAST,
            )
        logger.info(
            "Fast path blocked %d term(s): %s",
            len(violations),
            sorted({v.term for v in violations}),
        )
        return SafetyVerdict(
            is_safe=False,
            violations=violations,
            sanitized_text=self.sanitize(text),
            layer=SafetyLayer.FAST,
        )

    async def evaluate(
        self,
        text: str,
        child_context: Optional[ChildContext] = None,
    ) -> SafetyVerdict:
        """
        Full gate: fast path, then (only if clean) the contextual review.
        """
        fast = self.fast_check(text)
        if not fast.is_safe:
            return fast

        context = child_context or ChildContext()
        try:
            review = await self._review(text, context)
        except InferenceError as exc:
            logger.warning("Slow-path review unavailable, failing safe: %s", exc)
            return SafetyVerdict(
                is_safe=False,
                violations=[SafetyViolation(
                    category=ViolationCategory.REVIEW_UNAVAILABLE,
                    term="review_unavailable",
                    layer=SafetyLayer.FALLBACK,
                )],
                sanitized_text=self.safe_fallback_message(),
                layer=SafetyLayer.FALLBACK,
            )

        if review["is_safe"]:
            return SafetyVerdict(
                is_safe=True,
                sanitized_text=text,
                layer=SafetyLayer.SLOW,
            )

        revision = review.get("suggested_revision")
        if not isinstance(revision, str) or not revision.strip() or find_violations(revision):
            revision = self.safe_fallback_message()
        reason = review.get("reason")
        return SafetyVerdict(
            is_safe=False,
            violations=[SafetyViolation(
                category=ViolationCategory.CONTEXTUAL,
                term=str(reason)[:80] if reason else "contextual",
                layer=SafetyLayer.SLOW,
            )],
            sanitized_text=revision.strip(),
            layer=SafetyLayer.SLOW,
        )

    async def _review(self, text: str, context: ChildContext) -> dict:
        if self.client is None:
            raise InferenceError("no reviewer configured")
        raw = await guarded_complete(
            self.client,
            _REVIEW_SYSTEM,
            _REVIEW_PROMPT.format(
                age=context.age,
                level=context.vocabulary_level.value,
                content=text,
            ),
            json_mode=True,
            timeout=self.review_timeout,
            temperature=0.2,
            max_tokens=200,
        )
        data = parse_json_payload(raw)
        if not isinstance(data.get("is_safe"), bool):
            raise InferenceError("review verdict missing is_safe")
        return data

    def filter_for_parent(self, text: str) -> ParentFilterResult:
        """Adult-facing filter. Any sensitive match redacts the whole text."""
        categories = [
            name for name, pattern in PARENT_SENSITIVE_PATTERNS.items()
            if pattern.search(text)
        ]
        if categories:
            return ParentFilterResult(redacted=True, text=REDACTED_TEXT, categories=categories)
        return ParentFilterResult(redacted=False, text=text)
