"""
Chat endpoint contract.

Translates the UI's chat payload into a GenerationRequest and a
GenerationResponse back into the payload the UI renders.
"""

from typing import Any, Dict, List, Mapping, Optional

from .errors import ValidationError
from .models import Attachment, CancelSignal, GenerationRequest, GenerationResponse

MAX_MESSAGE_CHARS = 50000

BASE_QUESTIONS = [
    "What are the key requirements for my industry?",
    "How do I start implementing security controls?",
    "What documentation do I need for compliance?",
    "How can I assess my current security posture?",
]

FRAMEWORK_QUESTIONS = {
    "iso27001": [
        "What are the mandatory ISO 27001 controls?",
        "How do I conduct a risk assessment?",
        "What is required for the Statement of Applicability?",
    ],
    "soc2": [
        "What are the SOC 2 Trust Service Criteria?",
        "How do I prepare for a SOC 2 audit?",
        "What evidence do auditors need to see?",
    ],
    "fedramp": [
        "What are FedRAMP security control baselines?",
        "How do I achieve FedRAMP authorization?",
        "What documentation is required for FedRAMP?",
    ],
    "nist": [
        "How do I implement NIST Cybersecurity Framework?",
        "What are the NIST 800-53 control families?",
        "How do I conduct a NIST compliance assessment?",
    ],
}

SUGGESTIONS = [
    "Review your current compliance documentation",
    "Implement recommended controls",
]

CACHED_SUGGESTIONS = [
    "This answer was served from a recent response while AI providers recover",
    "Verify the guidance before relying on it",
]


def suggested_questions(framework: Optional[str] = None) -> List[str]:
    """Starter questions for a framework, or general ones."""
    if not framework:
        return list(BASE_QUESTIONS)
    return list(FRAMEWORK_QUESTIONS.get(framework, BASE_QUESTIONS))


def parse_chat_request(
    payload: Mapping[str, Any],
    cancel_signal: Optional[CancelSignal] = None,
) -> GenerationRequest:
    """Build a GenerationRequest from `{message, framework?, sessionId?, attachments?}`.

    Raises:
        ValidationError: If the payload is malformed
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("request body must be an object")

    message = payload.get("message")
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("message is required and cannot be empty")
    if len(message) > MAX_MESSAGE_CHARS:
        raise ValidationError(f"message cannot exceed {MAX_MESSAGE_CHARS} characters")

    framework = payload.get("framework")
    if framework is not None:
        if not isinstance(framework, str):
            raise ValidationError("framework must be a string")
        if framework not in FRAMEWORK_QUESTIONS:
            raise ValidationError(f"framework must be one of: {sorted(FRAMEWORK_QUESTIONS)}")

    session_id = payload.get("sessionId")
    if session_id is not None and not isinstance(session_id, str):
        raise ValidationError("sessionId must be a string")

    raw_attachments = payload.get("attachments") or []
    if not isinstance(raw_attachments, list):
        raise ValidationError("attachments must be a list")

    attachments = []
    for index, item in enumerate(raw_attachments):
        if not isinstance(item, Mapping):
            raise ValidationError(f"attachments[{index}] must be an object")
        for key in ("name", "type", "content"):
            if not isinstance(item.get(key), str):
                raise ValidationError(f"attachments[{index}].{key} must be a string")
        attachments.append(Attachment(name=item["name"], mime_type=item["type"],
                                      text=item["content"]))

    return GenerationRequest(
        prompt=message,
        framework=framework,
        session_id=session_id,
        attachments=tuple(attachments),
        cancel_signal=cancel_signal or CancelSignal(),
    )


def to_chat_response(
    response: GenerationResponse,
    framework: Optional[str] = None,
) -> Dict[str, Any]:
    """Render a response as `{content, confidence, sources, suggestions, followUpQuestions}`."""
    return {
        "content": response.content,
        "confidence": response.confidence,
        "sources": list(response.sources),
        "suggestions": list(CACHED_SUGGESTIONS if response.from_cache else SUGGESTIONS),
        "followUpQuestions": suggested_questions(framework)[:3],
    }
