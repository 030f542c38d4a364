#!/usr/bin/env python3
# MIT License
#
# Copyright (c) 2025 Descope Store MCP Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Security utilities for sanitizing credentials from logs and error messages.
"""

import re
from typing import Any


class CredentialSanitizer:
    """Sanitizer for OAuth credentials, session JWTs and other secrets."""

    # Patterns for credential formats issued or handled by this server
    PATTERNS = {
        "jwt": re.compile(r"eyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]*"),
        "mcp_token": re.compile(r"mcp_(?:at|rt|sk)_[A-Za-z0-9_\-]+"),
        "authorization_header": re.compile(
            r"(?:Authorization)[\s:]+[\"\']?(?:Bearer|Basic)?\s*([^\s\"\']+)[\"\']?",
            re.IGNORECASE,
        ),
        "bearer": re.compile(r"(?:Bearer)\s+([A-Za-z0-9_\-\.=+/]{8,})", re.IGNORECASE),
        "oauth_param": re.compile(
            r"\b(?:client_secret|code_verifier|refresh_token|access_token|code)=([^&\s\"\']+)",
            re.IGNORECASE,
        ),
        "generic_api_key": re.compile(
            r"(?:api[_-]?key|apikey|management[_-]?key)[\s=:]+[\"\']?([A-Za-z0-9_\-]+)[\"\']?",
            re.IGNORECASE,
        ),
    }

    # Sensitive field names to redact in structured data
    SENSITIVE_FIELDS = {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "client_secret",
        "code",
        "authorization",
        "session_jwt",
        "sessionjwt",
        "refreshjwt",
        "linked_session",
        "management_key",
    }

    @classmethod
    def sanitize_string(cls, text: str) -> str:
        """
        Sanitize sensitive information from a string.

        Args:
            text: String to sanitize

        Returns:
            Sanitized string
        """
        if not text:
            return text

        sanitized = text

        for pattern_name, pattern in cls.PATTERNS.items():
            if pattern_name in ["jwt", "mcp_token"]:
                sanitized = pattern.sub(f"[REDACTED_{pattern_name.upper()}]", sanitized)
            else:
                sanitized = pattern.sub(
                    lambda m, name=pattern_name: m.group(0).replace(
                        m.group(1) if m.lastindex else m.group(0),
                        f"[REDACTED_{name.upper()}]",
                    ),
                    sanitized,
                )

        return sanitized

    @classmethod
    def sanitize_dict(cls, data: dict[str, Any], max_depth: int = 10) -> dict[str, Any]:
        """
        Recursively sanitize sensitive fields in a dictionary.

        Args:
            data: Dictionary to sanitize
            max_depth: Maximum recursion depth

        Returns:
            Sanitized dictionary
        """
        if max_depth <= 0:
            return {"error": "Max recursion depth reached"}

        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            if any(sensitive in key.lower() for sensitive in cls.SENSITIVE_FIELDS):
                if isinstance(value, dict):
                    sanitized[key] = cls.sanitize_dict(value, max_depth - 1)
                else:
                    sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = cls.sanitize_dict(value, max_depth - 1)
            elif isinstance(value, list):
                sanitized[key] = [
                    cls.sanitize_dict(item, max_depth - 1)
                    if isinstance(item, dict)
                    else cls.sanitize_string(item) if isinstance(item, str) else item
                    for item in value
                ]
            elif isinstance(value, str):
                sanitized[key] = cls.sanitize_string(value)
            else:
                sanitized[key] = value

        return sanitized

    @classmethod
    def sanitize_error(cls, error: BaseException) -> str:
        """
        Sanitize an exception for logging.

        Args:
            error: Exception to sanitize

        Returns:
            Sanitized "<Type>: <message>" string
        """
        return f"{type(error).__name__}: {cls.sanitize_string(str(error))}"
