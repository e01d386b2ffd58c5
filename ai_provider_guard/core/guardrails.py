"""
Guardrail validators and the pipeline that runs them.

Validator Order:
1. Prompt injection detection - BLOCK aborts before any provider call
2. PII redaction - never blocks, only redacts what is sent onward
3. Token limit - BLOCK skips the current candidate only
4. Output moderation - BLOCK counts as a provider failure

Validators are stateless; the pipeline holds only their thresholds.
"""

import dataclasses
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Pattern, Tuple

from .models import Attachment, GenerationRequest
from .registry import ProviderConfig
from .token_counter import estimate_tokens

logger = logging.getLogger(__name__)

# Phrases typical of instruction-override attempts
HIGH_RISK_KEYWORDS = (
    "ignore previous instructions",
    "disregard",
    "forget all previous",
    "new instructions",
    "system:",
    "admin mode",
    "developer mode",
    "jailbreak",
    "bypass",
)

MODERATE_RISK_KEYWORDS = (
    "confidential",
    "secret",
    "password",
    "token",
    "api key",
    "private key",
)

LONG_PROMPT_CHARS = 10000
MAX_RISK_SCORE = 10.0

# Applied in order; earlier replacements hide digits from later patterns
PII_PATTERNS: Tuple[Tuple[str, Pattern], ...] = (
    ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    ("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    ("credit_card", re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")),
    ("phone", re.compile(r"(?:\+\d{1,2}\s?)?(?:\(\d{3}\)|\b\d{3})[\s.-]?\d{3}[\s.-]?\d{4}\b")),
    ("ip_address", re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")),
)

# (category, pattern, weight)
OUTPUT_RISK_RULES: Tuple[Tuple[str, Pattern, float], ...] = (
    ("discriminatory", re.compile(r"discriminat", re.IGNORECASE), 3.0),
    ("credential_disclosure",
     re.compile(r"\b(password|secret|token|api[_\s]key)\s*[:=]", re.IGNORECASE), 3.0),
    ("violent_language", re.compile(r"\b(kill|harm|hurt|attack)\b", re.IGNORECASE), 1.0),
    ("self_harm", re.compile(r"\b(suicide|self-harm)\b", re.IGNORECASE), 5.0),
)
OUTPUT_PII_WEIGHT = 2.0


class GuardrailSeverity(Enum):
    """Outcome of a single validator run, in order of severity."""
    PASS = "pass"
    WARN = "warn"
    BLOCK = "block"


@dataclass(frozen=True)
class GuardrailFinding:
    """Result of one validator run.

    Lives only for the request; disclosures keep just the count.
    """
    validator: str
    severity: GuardrailSeverity
    detail: str
    redacted_text: Optional[str] = None

    @property
    def blocked(self) -> bool:
        return self.severity == GuardrailSeverity.BLOCK


@dataclass(frozen=True)
class GuardrailSettings:
    """Thresholds for the scoring validators."""
    injection_block_threshold: float = 8.0
    injection_warn_threshold: float = 5.0
    output_block_threshold: float = 5.0

    def __post_init__(self):
        """Validate threshold ordering."""
        if self.injection_warn_threshold > self.injection_block_threshold:
            raise ValueError("injection_warn_threshold cannot exceed injection_block_threshold")
        if self.output_block_threshold <= 0:
            raise ValueError("output_block_threshold must be > 0")


@dataclass(frozen=True)
class InputCheck:
    """Findings for a request plus the sanitized request to send onward."""
    findings: Tuple[GuardrailFinding, ...]
    request: GenerationRequest

    @property
    def blocking_finding(self) -> Optional[GuardrailFinding]:
        return next((f for f in self.findings if f.blocked), None)


@dataclass(frozen=True)
class OutputCheck:
    """Findings for a provider response plus the sanitized content."""
    findings: Tuple[GuardrailFinding, ...]
    content: str

    @property
    def blocking_finding(self) -> Optional[GuardrailFinding]:
        return next((f for f in self.findings if f.blocked), None)


class PromptInjectionDetector:
    """Keyword scoring of the user prompt on a 0-10 scale."""

    name = "prompt_injection"

    def __init__(self, block_threshold: float = 8.0, warn_threshold: float = 5.0):
        self.block_threshold = block_threshold
        self.warn_threshold = warn_threshold

    def score(self, prompt: str) -> Tuple[float, List[str]]:
        """Return the risk score and the risk factors that produced it."""
        lower_prompt = prompt.lower()
        factors = []

        for keyword in HIGH_RISK_KEYWORDS:
            if keyword in lower_prompt:
                factors.append(f"injection_attempt_{keyword.replace(' ', '_')}")

        if "ignore" in lower_prompt and ("instructions" in lower_prompt or "prompts" in lower_prompt):
            factors.append("prompt_injection")

        for keyword in MODERATE_RISK_KEYWORDS:
            if keyword in lower_prompt:
                factors.append(f"sensitive_{keyword.replace(' ', '_')}")

        score = 0.0
        if "prompt_injection" in factors:
            score += 8
        attempts = sum(1 for f in factors if f.startswith("injection_attempt"))
        score += attempts * 4
        if attempts:
            score += 4
        score += sum(0.5 for f in factors if f.startswith("sensitive_"))
        if len(prompt) > LONG_PROMPT_CHARS:
            score += 1

        return min(score, MAX_RISK_SCORE), factors

    def check(self, prompt: str) -> GuardrailFinding:
        score, factors = self.score(prompt)
        if score >= self.block_threshold:
            severity = GuardrailSeverity.BLOCK
        elif score > self.warn_threshold:
            severity = GuardrailSeverity.WARN
        else:
            severity = GuardrailSeverity.PASS
        detail = f"risk score {score:.1f}"
        if factors:
            detail += f" ({', '.join(factors)})"
        return GuardrailFinding(self.name, severity, detail)


class PIIRedactor:
    """Replaces emails, SSNs, card numbers, phone numbers and IPs with placeholders."""

    name = "pii_redactor"

    def redact(self, text: str) -> Tuple[str, List[str]]:
        """Return the redacted text and the PII types found."""
        detected = []
        sanitized = text
        for pii_type, pattern in PII_PATTERNS:
            sanitized, count = pattern.subn(f"[REDACTED_{pii_type.upper()}]", sanitized)
            if count:
                detected.append(pii_type)
        return sanitized, detected

    def check(self, text: str) -> GuardrailFinding:
        sanitized, detected = self.redact(text)
        if not detected:
            return GuardrailFinding(self.name, GuardrailSeverity.PASS, "no PII detected")
        return GuardrailFinding(
            self.name,
            GuardrailSeverity.WARN,
            f"redacted: {', '.join(detected)}",
            redacted_text=sanitized,
        )


class TokenLimitEnforcer:
    """Compares the estimated prompt size against a provider's limit."""

    name = "token_limit"

    def check(self, text: str, max_tokens: int) -> GuardrailFinding:
        estimated = estimate_tokens(text)
        if estimated > max_tokens:
            return GuardrailFinding(
                self.name,
                GuardrailSeverity.BLOCK,
                f"estimated {estimated} tokens exceeds limit of {max_tokens}",
            )
        return GuardrailFinding(
            self.name, GuardrailSeverity.PASS, f"estimated {estimated} of {max_tokens} tokens"
        )


class OutputModerator:
    """Risk scoring of raw provider output."""

    name = "output_moderator"

    def __init__(self, block_threshold: float = 5.0):
        self.block_threshold = block_threshold
        self._pii = PIIRedactor()

    def score(self, text: str) -> Tuple[float, List[str]]:
        score = 0.0
        categories = []
        if self._pii.redact(text)[1]:
            score += OUTPUT_PII_WEIGHT
            categories.append("contains_pii")
        for category, pattern, weight in OUTPUT_RISK_RULES:
            if pattern.search(text):
                score += weight
                categories.append(category)
        return min(score, MAX_RISK_SCORE), categories

    def check(self, text: str) -> GuardrailFinding:
        score, categories = self.score(text)
        if score >= self.block_threshold:
            severity = GuardrailSeverity.BLOCK
        elif categories:
            severity = GuardrailSeverity.WARN
        else:
            severity = GuardrailSeverity.PASS
        detail = f"risk score {score:.1f}"
        if categories:
            detail += f" ({', '.join(categories)})"
        return GuardrailFinding(self.name, severity, detail)


class GuardrailsPipeline:
    """Runs the validators in their fixed order on requests and responses."""

    def __init__(self, settings: Optional[GuardrailSettings] = None):
        self.settings = settings or GuardrailSettings()
        self.injection_detector = PromptInjectionDetector(
            block_threshold=self.settings.injection_block_threshold,
            warn_threshold=self.settings.injection_warn_threshold,
        )
        self.pii_redactor = PIIRedactor()
        self.token_limit = TokenLimitEnforcer()
        self.output_moderator = OutputModerator(
            block_threshold=self.settings.output_block_threshold
        )

    def check_input(self, request: GenerationRequest) -> InputCheck:
        """Run injection detection and PII redaction on a request.

        Stops after an injection BLOCK; the returned request carries the
        redacted prompt and attachments.
        """
        injection = self.injection_detector.check(request.prompt)
        if injection.blocked:
            logger.warning(
                "Input blocked by %s for request %s", injection.validator, request.id
            )
            return InputCheck(findings=(injection,), request=request)

        findings = [injection]
        pii = self.pii_redactor.check(request.prompt)
        findings.append(pii)
        prompt = pii.redacted_text if pii.redacted_text is not None else request.prompt

        attachments = []
        for attachment in request.attachments:
            attachment_pii = self.pii_redactor.check(attachment.text)
            if attachment_pii.redacted_text is None:
                attachments.append(attachment)
                continue
            findings.append(attachment_pii)
            attachments.append(Attachment(
                name=attachment.name,
                mime_type=attachment.mime_type,
                text=attachment_pii.redacted_text,
            ))

        sanitized = dataclasses.replace(request, prompt=prompt, attachments=tuple(attachments))
        return InputCheck(findings=tuple(findings), request=sanitized)

    def check_token_limit(self, text: str, provider: ProviderConfig) -> GuardrailFinding:
        """Check the outgoing payload against one candidate's token limit."""
        return self.token_limit.check(text, provider.max_tokens)

    def check_output(self, text: str) -> OutputCheck:
        """Redact PII from a provider response, then moderate the raw text."""
        pii = self.pii_redactor.check(text)
        moderation = self.output_moderator.check(text)
        content = pii.redacted_text if pii.redacted_text is not None else text
        return OutputCheck(findings=(pii, moderation), content=content)
