import re
from typing import Dict, List, Optional, Tuple

from ..core.quality_gates import GateCheck, GateReport
from .base import BaseValidator


def extract_section(content: str, section_name: str) -> str:
    """Body of the first ``## section_name`` heading, up to the next level-2 heading"""
    heading = re.compile(rf'^##\s+{re.escape(section_name)}.*$', re.IGNORECASE | re.MULTILINE)
    match = heading.search(content)
    if not match:
        return ""
    rest = content[match.end():]
    next_heading = re.search(r'^##\s+', rest, re.MULTILINE)
    return rest[:next_heading.start() if next_heading else len(rest)].strip()


def count_words(content: str) -> int:
    """Word count with code blocks and markdown symbols removed"""
    cleaned = re.sub(r'```[\s\S]*?```', '', content or "")
    cleaned = re.sub(r'`[^`]+`', '', cleaned)
    cleaned = re.sub(r'[#*_~\[\]()]', '', cleaned)
    return len(cleaned.split())


def has_keywords(content: str, keywords: List[str]) -> bool:
    lowered = content.lower()
    return any(keyword.lower() in lowered for keyword in keywords)


# (category, requirement, keywords, recommendation)
SECURITY_CHECKS: List[Tuple[str, str, List[str], str]] = [
    ("authentication", "Authentication strategy defined",
     ["authentication", "OAuth", "JWT", "SAML", "SSO", "login"],
     "Add authentication strategy to Non-Functional Requirements > Security section"),
    ("authentication", "Authorization mechanism specified",
     ["authorization", "RBAC", "ABAC", "permissions", "access control"],
     "Add authorization mechanism to NFR > Security section"),
    ("authentication", "Session management approach documented",
     ["session", "token", "cookie", "bearer"],
     "Add session management approach to NFR > Security section"),
    ("authentication", "Token/credential handling specified",
     ["token", "credential", "API key", "bearer"],
     "Add token/credential handling to NFR > Security section"),
    ("secrets", "Secrets storage strategy defined",
     ["secrets", "environment variable", "key vault", "secrets manager", "KMS"],
     "Add secrets storage strategy to NFR > Security section"),
    ("secrets", "API key handling approach documented",
     ["API key", "credentials", "secrets"],
     "Add API key handling to NFR > Security section"),
    ("secrets", "Credential rotation policy specified",
     ["rotation", "rotate", "expiry", "credential"],
     "Add credential rotation policy to NFR > Security section"),
    ("input-validation", "Input validation strategy defined",
     ["input validation", "sanitization", "whitelist", "blacklist", "validation"],
     "Add input validation strategy to NFR > Security section"),
    ("input-validation", "SQL injection prevention documented",
     ["SQL injection", "parameterized", "prepared statement", "ORM"],
     "Add SQL injection prevention to NFR > Security section"),
    ("input-validation", "XSS prevention measures specified",
     ["XSS", "cross-site scripting", "HTML encoding", "CSP", "content security policy"],
     "Add XSS prevention to NFR > Security section"),
    ("api-security", "CORS policy defined",
     ["CORS", "cross-origin", "origin"],
     "Add CORS policy to API Specifications > Security section"),
    ("api-security", "Rate limiting strategy specified",
     ["rate limit", "throttling", "rate limiting"],
     "Add rate limiting strategy to NFR > Security section"),
    ("api-security", "API authentication mechanism documented",
     ["API authentication", "API key", "bearer token"],
     "Add API authentication to API Specifications > Security section"),
    ("encryption", "Data-at-rest encryption specified",
     ["data at rest", "encryption", "AES", "encrypted"],
     "Add data-at-rest encryption to NFR > Security section"),
    ("encryption", "Data-in-transit encryption specified",
     ["TLS", "SSL", "HTTPS", "data in transit", "transport encryption"],
     "Add data-in-transit encryption (TLS/SSL) to NFR > Security section"),
    ("encryption", "Encryption key management documented",
     ["key management", "KMS", "key vault", "key rotation"],
     "Add encryption key management to NFR > Security section"),
    ("threat-model", "OWASP Top 10 threats assessed",
     ["OWASP", "threat model", "security threat"],
     "Add OWASP Top 10 threat assessment to NFR > Security section"),
    ("threat-model", "Threat mitigation strategies defined",
     ["mitigation", "threat", "security measure"],
     "Add threat mitigation strategies to NFR > Security section"),
    ("threat-model", "Security testing approach documented",
     ["security testing", "penetration test", "vulnerability scan"],
     "Add security testing approach to Test Strategy section"),
    ("threat-model", "Incident response plan outlined",
     ["incident response", "security incident", "breach response"],
     "Add incident response plan to NFR > Security section"),
]


class SecurityGateValidator(BaseValidator):
    """Keyword checks for security completeness of an architecture document."""

    def validate(self, document: str, reference: Optional[str] = None) -> GateReport:
        checks = []
        for category, requirement, keywords, recommendation in SECURITY_CHECKS:
            satisfied = has_keywords(document, keywords)
            checks.append(GateCheck(
                category=category,
                requirement=requirement,
                satisfied=satisfied,
                recommendation=None if satisfied else recommendation,
            ))
        satisfied_count = sum(1 for c in checks if c.satisfied)
        score = round(satisfied_count / len(checks) * 100) if checks else 0
        return GateReport(score=score, checks=checks,
                          details={"satisfied": satisfied_count, "total": len(checks)})


# (section, minimum words)
REQUIRED_SECTIONS: List[Tuple[str, int]] = [
    ("System Overview", 200),
    ("Component Architecture", 300),
    ("Data Models", 200),
    ("API Specifications", 200),
    ("Non-Functional Requirements", 400),
    ("Test Strategy", 300),
    ("Technical Decisions", 200),
]

TEST_STRATEGY_ELEMENTS: Dict[str, List[str]] = {
    "Test Frameworks": ["test framework", "pytest", "Vitest", "Jest", "Playwright", "Cypress",
                        "testing library"],
    "Test Pyramid": ["test pyramid", "unit test", "integration test", "E2E", "ratio"],
    "CI/CD Pipeline": ["CI/CD", "GitHub Actions", "Jenkins", "pipeline", "trigger", "stage",
                       "continuous"],
    "Quality Gates": ["quality gate", "coverage", "failure", "threshold", "standard", "minimum"],
    "ATDD Approach": ["ATDD", "acceptance test", "test-driven", "BDD", "acceptance criteria"],
}

TEST_STRATEGY_RECOMMENDATIONS: Dict[str, str] = {
    "Test Frameworks": 'Specify test frameworks per test type (e.g. "pytest for unit/integration, Playwright for E2E")',
    "Test Pyramid": 'Specify test distribution ratios (e.g. "60% unit, 30% integration, 10% E2E")',
    "CI/CD Pipeline": "Document CI/CD tools, triggers and pipeline stages",
    "Quality Gates": 'Define quality standards and failure conditions (e.g. "80% coverage minimum")',
    "ATDD Approach": "Document the acceptance-test-driven development approach",
}

# pattern -> opposites that contradict it when both appear
CONTRADICTION_PATTERNS: Dict[str, List[str]] = {
    "monolith": ["microservice", "micro-service", "distributed", "independently scalable"],
    "stateless": ["session state", "state management", "stateful"],
    "synchronous": ["asynchronous", "message queue", "event-driven", "async"],
    "sql": ["nosql", "document store", "mongodb", "dynamodb"],
}

REQUIREMENT_SECTIONS = ["Functional Requirements", "Non-Functional Requirements", "Features"]

COMMON_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "from", "as", "is", "was", "are", "were", "be", "been", "being", "have", "has", "had",
    "do", "does", "did", "will", "would", "could", "should", "may", "might", "must", "can",
    "shall", "that", "this", "their", "users", "user", "system",
}


class ArchitectureValidator(BaseValidator):
    """
    Overall architecture quality, scored 0-100.

    Four equally weighted dimensions: completeness of the required sections,
    traceability of PRD requirements, test strategy elements and consistency
    of technical decisions.
    """

    def validate(self, document: str, reference: Optional[str] = None) -> GateReport:
        completeness, completeness_checks = self.check_completeness(document)
        traceability, traceability_checks = self.check_traceability(document, reference or "")
        test_strategy, strategy_checks = self.check_test_strategy(document)
        consistency, consistency_checks = self.check_consistency(document)

        score = round((completeness + traceability + test_strategy + consistency) / 4)
        checks = completeness_checks + traceability_checks + strategy_checks + consistency_checks
        return GateReport(score=score, checks=checks, details={
            "completeness": completeness,
            "traceability": traceability,
            "test_strategy": test_strategy,
            "consistency": consistency,
        })

    def check_completeness(self, document: str) -> Tuple[int, List[GateCheck]]:
        checks = []
        for section, minimum in REQUIRED_SECTIONS:
            words = count_words(extract_section(document, section))
            satisfied = words >= minimum
            recommendation = None
            if not satisfied:
                recommendation = (f"Add a '## {section}' section" if words == 0 else
                                  f"Expand {section} to at least {minimum} words (currently {words})")
            checks.append(GateCheck("completeness", f"{section} has at least {minimum} words",
                                    satisfied, recommendation))
        return self._score(checks), checks

    def check_traceability(self, document: str, prd: str) -> Tuple[int, List[GateCheck]]:
        requirements = self.extract_requirements(prd)
        if not requirements:
            return 100, []
        sections = [extract_section(document, name).lower() for name, _ in REQUIRED_SECTIONS]
        checks = []
        for requirement in requirements:
            terms = self.key_terms(requirement)
            covered = any(term in body for term in terms for body in sections)
            checks.append(GateCheck(
                "traceability", f"PRD requirement addressed: {requirement}", covered,
                None if covered else "Reference this requirement in Component Architecture, "
                                     "System Overview or Non-Functional Requirements",
            ))
        return self._score(checks), checks

    def check_test_strategy(self, document: str) -> Tuple[int, List[GateCheck]]:
        section = extract_section(document, "Test Strategy")
        checks = []
        for element, keywords in TEST_STRATEGY_ELEMENTS.items():
            present = has_keywords(section, keywords)
            checks.append(GateCheck("test-strategy", f"{element} documented", present,
                                    None if present else TEST_STRATEGY_RECOMMENDATIONS[element]))
        return self._score(checks), checks

    def check_consistency(self, document: str) -> Tuple[int, List[GateCheck]]:
        """Binary: any contradiction scores 0"""
        lowered = document.lower()
        checks = []
        for pattern, opposites in CONTRADICTION_PATTERNS.items():
            if not re.search(rf'\b{re.escape(pattern)}\b', lowered):
                continue
            for opposite in opposites:
                if opposite in lowered:
                    checks.append(GateCheck(
                        "consistency", f"No contradiction between '{pattern}' and '{opposite}'", False,
                        "Clarify the architectural decision or remove the contradiction",
                    ))
        return (0 if checks else 100), checks

    @staticmethod
    def extract_requirements(prd: str) -> List[str]:
        requirements = []
        for section in REQUIREMENT_SECTIONS:
            for line in extract_section(prd, section).splitlines():
                match = re.match(r'^\s*(?:[-*•]|\d+\.)\s+(.+)$', line)
                if match and len(match.group(1).strip()) > 10:
                    requirements.append(match.group(1).strip())
        return requirements

    @staticmethod
    def key_terms(text: str) -> List[str]:
        words = re.sub(r'[^a-z0-9\s-]', ' ', text.lower()).split()
        return sorted({w for w in words if len(w) > 3 and w not in COMMON_WORDS})

    @staticmethod
    def _score(checks: List[GateCheck]) -> int:
        if not checks:
            return 100
        return round(sum(1 for c in checks if c.satisfied) / len(checks) * 100)
