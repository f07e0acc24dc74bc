from __future__ import annotations

import re
from enum import Enum

from ..core.models import Severity
from .base import PatternCatalog, PatternDefinition


class SecretType(str, Enum):
    PRIVATE_KEY = "Private Key"
    STRIPE_ACCESS_TOKEN = "Stripe Access Token"
    SLACK_BOT_TOKEN = "Slack Bot Token"
    AWS_ACCESS_KEY = "AWS Access Key"
    GOOGLE_API_KEY = "Google API Key"
    ANTHROPIC_API_KEY = "Anthropic API Key"
    OPENAI_API_KEY = "OpenAI API Key"
    GITHUB_TOKEN = "GitHub Token"
    GITHUB_FINE_GRAINED_PAT = "GitHub Fine-Grained PAT"
    API_KEY = "API Key"
    PASSWORD = "Password"


# String concatenation idiom, e.g. apiKey: "".concat(prefix, value)
CONCAT_IDIOM = r"""['"](?:\))?\.concat\("""

# Ordered from specific to generic so vendor tokens are
# labelled by vendor instead of being claimed by the generic assignment rules.
DEFAULT_PATTERNS = [
    PatternDefinition.build(
        SecretType.PRIVATE_KEY.value,
        r"-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----",
    ),
    PatternDefinition.build(
        SecretType.STRIPE_ACCESS_TOKEN.value,
        r"(?:sk|rk)_(?:test|live|prod)_[a-zA-Z0-9]{24}",
    ),
    PatternDefinition.build(
        SecretType.SLACK_BOT_TOKEN.value,
        r"xoxb-[0-9]{11}-[0-9]{11}-[a-zA-Z0-9]{24}",
    ),
    PatternDefinition.build(
        SecretType.AWS_ACCESS_KEY.value,
        r"(?:A3T[A-Z0-9]|AKIA|ASIA|ABIA|ACCA)[A-Z2-7]{16}",
    ),
    PatternDefinition.build(
        SecretType.GOOGLE_API_KEY.value,
        r"AIza[0-9A-Za-z\-_]{35}",
    ),
    PatternDefinition.build(
        SecretType.ANTHROPIC_API_KEY.value,
        r"sk-ant-api[0-9]{2}-[a-zA-Z0-9_-]{94}",
    ),
    PatternDefinition.build(
        SecretType.OPENAI_API_KEY.value,
        r"sk-[a-zA-Z0-9]{20}T3BlbkFJ[a-zA-Z0-9]{20}",
    ),
    PatternDefinition.build(
        SecretType.GITHUB_TOKEN.value,
        r"(?:ghu|ghs|ghp|gho)_[0-9a-zA-Z]{36}",
    ),
    PatternDefinition.build(
        SecretType.GITHUB_FINE_GRAINED_PAT.value,
        r"github_pat_[A-Za-z0-9_]{82}",
    ),
    # very generic patterns below
    PatternDefinition.build(
        SecretType.API_KEY.value,
        r"""api[_-]?key\s*[:=]\s*['"][^'"]{6,}['"]""",
        severity=Severity.MEDIUM,
        ignore=[CONCAT_IDIOM, r"""['"].*api[_-]?key"""],
        flags=re.IGNORECASE,
    ),
    PatternDefinition.build(
        SecretType.PASSWORD.value,
        r"""passw(?:or)?d\s*[:=]\s*['"][^'"\n]{4,60}['"]""",
        severity=Severity.MEDIUM,
        # a field whose value is literally the word "password" is a placeholder
        ignore=[r"""['"][^'"]*password['"]""", CONCAT_IDIOM],
        flags=re.IGNORECASE,
    ),
]

DEFAULT_CATALOG = PatternCatalog(DEFAULT_PATTERNS)
